import os
import tarfile
from typing import Dict, List

import pytest

from kube_cli import orchestrator
from kube_cli.config import RuntimeSettings
from kube_cli.errors import (
    ConfigError,
    MissingInputError,
    NetworkError,
    OperationCancelledError,
    RemoteOperationFailedError,
)
from kube_cli.gcp_cloud_build import BuildRecord, BuildStatus
from kube_cli.gcp_gke import ClusterCredential


class RecordingReporter:
    def __init__(self) -> None:
        self.events: List[tuple] = []

    def start(self, step: int, message: str) -> None:
        self.events.append(("start", step))

    def succeed(self, step: int, message: str) -> None:
        self.events.append(("succeed", step))

    def fail(self, step: int, message: str) -> None:
        self.events.append(("fail", step))


class _Flag:
    def __init__(self, value: bool = False) -> None:
        self.value = value

    def is_set(self) -> bool:
        return self.value


def _patch_remote(monkeypatch: pytest.MonkeyPatch, statuses: List[BuildStatus]) -> Dict[str, list]:
    """GCS / Cloud Build / GKE 호출을 모두 가짜로 바꾸고 호출 기록을 돌려준다."""
    calls: Dict[str, list] = {"bucket": [], "upload": [], "create": [], "get": [], "update": [], "archive": []}

    def fake_upload(artifact, project):
        # 업로드 시점에는 임시 아카이브가 존재해야 한다
        assert os.path.exists(artifact.local_path)
        with tarfile.open(artifact.local_path, "r:gz") as tar:
            calls["archive"] = tar.getnames()
        calls["upload"].append((artifact, project))
        return 1234

    def fake_create(project, image_name, bucket, obj, tags):
        calls["create"].append((project, image_name, bucket, obj, list(tags)))
        return BuildRecord(id="build-1", status=BuildStatus.QUEUED, log_url="https://console/build-1")

    remaining = list(statuses)

    def fake_get(project, build_id):
        calls["get"].append(build_id)
        return BuildRecord(id=build_id, status=remaining.pop(0), log_url="https://console/build-1")

    def fake_update(apps, namespace, name, container, image, **kwargs):
        calls["update"].append((namespace, name, container, image, kwargs["budget"]))
        return 1

    monkeypatch.setattr(orchestrator.gcp_gcs, "ensure_bucket", lambda b, p: calls["bucket"].append(b) or True)
    monkeypatch.setattr(orchestrator.gcp_gcs, "upload", fake_upload)
    monkeypatch.setattr(orchestrator.gcp_cloud_build, "create_build", fake_create)
    monkeypatch.setattr(orchestrator.gcp_cloud_build, "get_build", fake_get)
    monkeypatch.setattr(
        orchestrator.gcp_gke, "get_cluster_credentials", lambda p, z, c: ClusterCredential(endpoint="10.0.0.1")
    )
    monkeypatch.setattr(orchestrator.k8s_deployment, "update_image", fake_update)
    return calls


def _pipeline(project_dir, reporter=None, **kwargs) -> orchestrator.DeploymentPipeline:
    return orchestrator.DeploymentPipeline(
        str(project_dir),
        reporter=reporter,
        settings=RuntimeSettings(),
        sleep=lambda _s: None,
        clock=lambda: 1700000000.5,
        **kwargs,
    )


def test_deploy_runs_all_stages(project_dir, monkeypatch: pytest.MonkeyPatch) -> None:
    (project_dir / ".kubecliignore").write_text("*.log\n", encoding="utf-8")
    (project_dir / "debug.log").write_text("noise", encoding="utf-8")
    calls = _patch_remote(monkeypatch, [BuildStatus.WORKING, BuildStatus.SUCCESS])
    reporter = RecordingReporter()

    result = _pipeline(project_dir, reporter).run()

    assert result.completed_stages == orchestrator.ALL_STAGES
    assert result.image == "gcr.io/test-project/web-app:1700000000"
    assert result.bucket == "test-project-cloudbuild"
    assert result.object_name == "web-app-1700000000.tar.gz"
    assert result.build_id == "build-1"
    assert result.uploaded_bytes == 1234
    assert calls["bucket"] == ["test-project-cloudbuild"]
    assert calls["create"] == [
        ("test-project", "web-app", "test-project-cloudbuild", "web-app-1700000000.tar.gz", ["latest", "1700000000"])
    ]
    assert calls["get"] == ["build-1", "build-1"]
    assert calls["update"] == [("default", "web-app", "web", "gcr.io/test-project/web-app:1700000000", 5)]
    assert sorted(calls["archive"]) == ["Dockerfile", "kubecli.yaml", "src/main.go"]
    assert [e for e in reporter.events if e[0] == "start"] == [("start", n) for n in range(1, 6)]
    assert [e for e in reporter.events if e[0] == "succeed"] == [("succeed", n) for n in range(1, 6)]

    # 임시 아카이브는 실행이 끝나면 지워진다
    artifact = calls["upload"][0][0]
    assert not os.path.exists(artifact.local_path)


def test_missing_dockerfile_stops_before_upload(project_dir, monkeypatch: pytest.MonkeyPatch) -> None:
    (project_dir / "Dockerfile").unlink()
    calls = _patch_remote(monkeypatch, [])
    reporter = RecordingReporter()

    with pytest.raises(MissingInputError) as excinfo:
        _pipeline(project_dir, reporter).run()

    assert excinfo.value.stage == "package"
    assert calls["upload"] == []
    assert calls["create"] == []
    assert ("fail", 2) in reporter.events


def test_upload_failure_is_tagged_and_cleans_temp_file(project_dir, monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _patch_remote(monkeypatch, [])
    seen: List[str] = []

    def failing_upload(artifact, project):
        seen.append(artifact.local_path)
        raise NetworkError("403 Forbidden")

    monkeypatch.setattr(orchestrator.gcp_gcs, "upload", failing_upload)

    with pytest.raises(NetworkError) as excinfo:
        _pipeline(project_dir).run()

    assert excinfo.value.stage == "upload"
    assert calls["create"] == []
    assert seen and not os.path.exists(seen[0])


def test_build_failure_carries_log_url(project_dir, monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _patch_remote(monkeypatch, [BuildStatus.WORKING, BuildStatus.FAILURE])

    with pytest.raises(RemoteOperationFailedError) as excinfo:
        _pipeline(project_dir).run()

    assert excinfo.value.stage == "build"
    assert excinfo.value.log_url == "https://console/build-1"
    assert calls["update"] == []


def test_build_wait_can_be_cancelled(project_dir, monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _patch_remote(monkeypatch, [BuildStatus.WORKING, BuildStatus.WORKING])
    flag = _Flag()
    pipeline = orchestrator.DeploymentPipeline(
        str(project_dir),
        settings=RuntimeSettings(),
        cancel=flag,
        sleep=lambda _s: setattr(flag, "value", True),
        clock=lambda: 1700000000,
    )

    with pytest.raises(OperationCancelledError):
        pipeline.run()

    assert calls["get"] == ["build-1"]
    assert calls["update"] == []


def _patch_rollback(monkeypatch: pytest.MonkeyPatch, unavailable: List[int]) -> Dict[str, list]:
    calls: Dict[str, list] = {"rollback": [], "status": []}
    remaining = list(unavailable)

    def fake_rollback(apps, namespace, name, **kwargs):
        calls["rollback"].append((namespace, name))
        return 4

    def fake_status(apps, namespace, name):
        calls["status"].append(name)
        return remaining.pop(0)

    monkeypatch.setattr(
        orchestrator.gcp_gke, "get_cluster_credentials", lambda p, z, c: ClusterCredential(endpoint="10.0.0.1")
    )
    monkeypatch.setattr(orchestrator.k8s_deployment, "rollback", fake_rollback)
    monkeypatch.setattr(orchestrator.k8s_deployment, "unavailable_replicas", fake_status)
    return calls


def test_rollback_waits_until_replicas_available(project_dir, monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _patch_rollback(monkeypatch, [3, 1, 0])
    slept: List[float] = []

    result = orchestrator.Rollback(str(project_dir), settings=RuntimeSettings(), sleep=slept.append).run()

    assert result.revision == 4
    assert result.waited
    assert result.poll_attempts == 3
    assert result.completed_stages == orchestrator.ROLLBACK_STAGES
    assert calls["rollback"] == [("default", "web-app")]
    assert slept == [1.0, 2.0]


def test_async_rollback_does_not_poll(project_dir, monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _patch_rollback(monkeypatch, [])
    reporter = RecordingReporter()

    result = orchestrator.Rollback(str(project_dir), reporter=reporter, settings=RuntimeSettings()).run(wait=False)

    assert result.revision == 4
    assert not result.waited
    assert calls["status"] == []
    assert result.completed_stages == orchestrator.ROLLBACK_STAGES
    assert ("succeed", 2) in reporter.events


def test_rollback_failure_is_tagged_with_stage(project_dir, monkeypatch: pytest.MonkeyPatch) -> None:
    _patch_rollback(monkeypatch, [])

    def failing_rollback(apps, namespace, name, **kwargs):
        raise NetworkError("connection reset")

    monkeypatch.setattr(orchestrator.k8s_deployment, "rollback", failing_rollback)
    workflow = orchestrator.Rollback(str(project_dir), settings=RuntimeSettings())

    with pytest.raises(NetworkError) as excinfo:
        workflow.run()

    assert excinfo.value.stage == "rollback"


def test_bad_ignore_pattern_fails_in_package_stage(project_dir, monkeypatch: pytest.MonkeyPatch) -> None:
    (project_dir / ".kubecliignore").write_text("!\n", encoding="utf-8")
    calls = _patch_remote(monkeypatch, [])

    with pytest.raises(ConfigError) as excinfo:
        _pipeline(project_dir).run()

    assert excinfo.value.stage == "package"
    assert calls["upload"] == []
