import pytest

from kube_cli.config import DeployConfig, RuntimeSettings, load_env_files
from kube_cli.errors import ConfigError


_ENV_KEYS = [
    "KUBECLI_BUILD_POLL_INITIAL",
    "KUBECLI_BUILD_POLL_MAX",
    "KUBECLI_ROLLBACK_POLL_INITIAL",
    "KUBECLI_ROLLBACK_POLL_MAX",
    "KUBECLI_CONFLICT_RETRIES",
    "KUBECLI_CONFLICT_BACKOFF",
    "KUBECLI_RELEASE_URL",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_load_reads_nested_yaml(project_dir) -> None:
    cfg = DeployConfig.load(str(project_dir))

    assert cfg.gke_project == "test-project"
    assert cfg.gke_zone == "europe-west1-b"
    assert cfg.gke_cluster == "main-cluster"
    assert cfg.docker_name == "web-app"
    assert cfg.container_name == "web"
    assert cfg.bucket_name == "test-project-cloudbuild"
    assert cfg.image_url("123") == "gcr.io/test-project/web-app:123"
    assert cfg.validate() == []


def test_yml_extension_is_accepted(project_dir) -> None:
    (project_dir / "kubecli.yaml").rename(project_dir / "kubecli.yml")

    assert DeployConfig.load(str(project_dir)).deployment_name == "web-app"


def test_namespace_defaults_to_default() -> None:
    cfg = DeployConfig.from_dict(
        {
            "gke": {"project": "proj", "zone": "us-east1-b", "cluster": "c-1"},
            "docker": {"name": "app"},
            "deployment": {"name": "app", "container": {"name": "app"}},
        }
    )

    assert cfg.deployment_namespace == "default"


def test_missing_config_file_raises_config_error(tmp_path) -> None:
    with pytest.raises(ConfigError):
        DeployConfig.load(str(tmp_path))


def test_invalid_yaml_raises_config_error(tmp_path) -> None:
    (tmp_path / "kubecli.yaml").write_text("gke: [unclosed\n", encoding="utf-8")

    with pytest.raises(ConfigError):
        DeployConfig.load(str(tmp_path))


def test_missing_required_value_is_reported(tmp_path) -> None:
    (tmp_path / "kubecli.yaml").write_text(
        "gke:\n  project: proj\n  zone: us-east1-b\n  cluster: c-1\n"
        "docker:\n  name: app\n"
        "deployment:\n  name: app\n",
        encoding="utf-8",
    )

    with pytest.raises(ConfigError) as excinfo:
        DeployConfig.load(str(tmp_path))

    assert "deployment.container.name" in str(excinfo.value)


def test_validate_reports_malformed_names(project_dir) -> None:
    cfg = DeployConfig.load(str(project_dir))
    cfg.docker_name = "web_app"
    cfg.gke_zone = "europe"
    cfg.container_name = "ab"

    problems = cfg.validate()

    assert any(p.startswith("docker.name") for p in problems)
    assert any(p.startswith("gke.zone") for p in problems)
    assert any(p.startswith("deployment.container.name") for p in problems)
    assert len(problems) == 3


def test_runtime_settings_defaults() -> None:
    settings = RuntimeSettings.from_env()

    assert settings.build_poll_initial == 1.0
    assert settings.build_poll_max is None
    assert settings.rollback_poll_max == 60.0
    assert settings.conflict_retries == 5
    assert settings.release_url.endswith("/releases/latest")


def test_runtime_settings_from_env_file(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / ".env").write_text(
        "KUBECLI_BUILD_POLL_MAX=30\n"
        "KUBECLI_ROLLBACK_POLL_MAX=off\n"
        "KUBECLI_CONFLICT_RETRIES=2\n",
        encoding="utf-8",
    )
    # load_dotenv 가 os.environ 을 직접 바꾸므로 테스트 종료 시 복원되도록 등록
    for key in _ENV_KEYS:
        monkeypatch.setenv(key, "")

    load_env_files(str(tmp_path))
    settings = RuntimeSettings.from_env()

    assert settings.build_poll_max == 30.0
    assert settings.rollback_poll_max is None
    assert settings.conflict_retries == 2


@pytest.mark.parametrize(
    "key,value",
    [
        ("KUBECLI_CONFLICT_RETRIES", "0"),
        ("KUBECLI_CONFLICT_RETRIES", "many"),
        ("KUBECLI_BUILD_POLL_MAX", "soon"),
        ("KUBECLI_BUILD_POLL_INITIAL", "0"),
        ("KUBECLI_BUILD_POLL_INITIAL", "off"),
        ("KUBECLI_ROLLBACK_POLL_INITIAL", "-1"),
        ("KUBECLI_ROLLBACK_POLL_MAX", "0.5"),
        ("KUBECLI_CONFLICT_BACKOFF", "-0.1"),
    ],
)
def test_runtime_settings_rejects_bad_values(monkeypatch: pytest.MonkeyPatch, key: str, value: str) -> None:
    monkeypatch.setenv(key, value)

    with pytest.raises(ConfigError):
        RuntimeSettings.from_env()


def test_runtime_settings_max_below_initial_names_both_keys(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("KUBECLI_BUILD_POLL_INITIAL", "10")
    monkeypatch.setenv("KUBECLI_BUILD_POLL_MAX", "5")

    with pytest.raises(ConfigError) as excinfo:
        RuntimeSettings.from_env()

    assert "KUBECLI_BUILD_POLL_MAX" in str(excinfo.value)
    assert "KUBECLI_BUILD_POLL_INITIAL" in str(excinfo.value)


def test_runtime_settings_backoff_off_means_no_wait(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("KUBECLI_CONFLICT_BACKOFF", "off")

    assert RuntimeSettings.from_env().conflict_backoff == 0.0
