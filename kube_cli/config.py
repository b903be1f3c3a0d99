from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from .errors import ConfigError


ENV_FILES_DEFAULT_ORDER = [".env"]
CONFIG_FILE_NAMES = ["kubecli.yaml", "kubecli.yml"]

DEFAULT_RELEASE_URL = "https://api.github.com/repos/ajdnik/kube-cli/releases/latest"

_DASH_NAME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9]*(-[a-zA-Z0-9]+)*$")
_ZONE_RE = re.compile(r"^[a-z]+-[a-z]+[0-9]+-[a-z]$")


def load_env_files(base_dir: str = ".",
                   files: Optional[List[str]] = None) -> None:
    """
    주어진 디렉토리에서 .env 계열 파일을 순서대로 로드한다.
    (GOOGLE_APPLICATION_CREDENTIALS, KUBECLI_* 튜닝 값 등)
    """
    order = files or ENV_FILES_DEFAULT_ORDER
    for name in order:
        path = os.path.join(base_dir, name)
        if os.path.exists(path):
            load_dotenv(path, override=True)


def _get_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    if raw.strip().lower() in {"none", "off"}:
        return None
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} 값이 숫자가 아닙니다: {raw!r}") from e


def _get_interval(name: str, default: float) -> float:
    value = _get_float(name, default)
    if value is None or value <= 0:
        raise ConfigError(f"{name} 는 0보다 큰 초 단위 값이어야 합니다.")
    return value


def _check_poll_range(prefix: str, initial: float, maximum: Optional[float]) -> None:
    # 폴러를 만들기 전에 (원격 작업 시작 전에) 범위를 확인한다
    if maximum is not None and maximum < initial:
        raise ConfigError(
            f"{prefix}_MAX ({maximum}) 는 {prefix}_INITIAL ({initial}) 이상이어야 합니다."
        )


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} 값이 정수가 아닙니다: {raw!r}") from e


def find_config_path(base_dir: str) -> str:
    """프로젝트 루트의 kubecli.yaml (또는 kubecli.yml) 경로"""
    for name in CONFIG_FILE_NAMES:
        path = os.path.join(base_dir, name)
        if os.path.isfile(path):
            return path
    raise ConfigError(
        "프로젝트 루트에서 kubecli.yaml 파일을 찾을 수 없습니다: " + os.path.abspath(base_dir)
    )


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{key}' 항목은 mapping 이어야 합니다.")
    return value


def _str(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


@dataclass
class DeployConfig:
    gke_project: str
    gke_zone: str
    gke_cluster: str
    docker_name: str
    deployment_name: str
    deployment_namespace: str
    container_name: str

    @property
    def bucket_name(self) -> str:
        return f"{self.gke_project}-cloudbuild"

    def image_url(self, tag: str) -> str:
        return f"gcr.io/{self.gke_project}/{self.docker_name}:{tag}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeployConfig":
        if not isinstance(data, dict):
            raise ConfigError("kubecli.yaml 최상위는 mapping 이어야 합니다.")

        gke = _section(data, "gke")
        docker = _section(data, "docker")
        deployment = _section(data, "deployment")
        container = _section(deployment, "container")

        cfg = cls(
            gke_project=_str(gke.get("project")),
            gke_zone=_str(gke.get("zone")),
            gke_cluster=_str(gke.get("cluster")),
            docker_name=_str(docker.get("name")),
            deployment_name=_str(deployment.get("name")),
            deployment_namespace=_str(deployment.get("namespace")) or "default",
            container_name=_str(container.get("name")),
        )

        missing = [k for k, v in cfg.as_flat_dict().items() if not v]
        if missing:
            raise ConfigError("kubecli.yaml 에 필수 값이 누락되었습니다: " + ", ".join(missing))
        return cfg

    @classmethod
    def load(cls, base_dir: str = ".") -> "DeployConfig":
        path = find_config_path(base_dir)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"kubecli.yaml 문법이 잘못되었습니다: {e}") from e
        except OSError as e:
            raise ConfigError(f"kubecli.yaml 을 읽을 수 없습니다: {e}") from e
        return cls.from_dict(data or {})

    def as_flat_dict(self) -> Dict[str, str]:
        return {
            "gke.project": self.gke_project,
            "gke.zone": self.gke_zone,
            "gke.cluster": self.gke_cluster,
            "docker.name": self.docker_name,
            "deployment.name": self.deployment_name,
            "deployment.namespace": self.deployment_namespace,
            "deployment.container.name": self.container_name,
        }

    def validate(self) -> List[str]:
        """
        각 값의 형식을 점검하고 문제 목록을 반환한다. (비어 있으면 유효)
        """
        problems: List[str] = []
        for key, value in self.as_flat_dict().items():
            if key == "gke.zone":
                if not _ZONE_RE.match(value):
                    problems.append(f"{key}: 올바른 GCP zone 형식이 아닙니다 (예: europe-west1-b)")
                continue
            if len(value) < 3 or not _DASH_NAME_RE.match(value):
                problems.append(
                    f"{key}: 영문자로 시작하고 '-' 로 구분된 3자 이상의 영숫자여야 합니다 (예: value-1)"
                )
        return problems


@dataclass
class RuntimeSettings:
    # 빌드 폴링은 상한 없음, 롤백 폴링은 60초 상한
    build_poll_initial: float = 1.0
    build_poll_max: Optional[float] = None
    rollback_poll_initial: float = 1.0
    rollback_poll_max: Optional[float] = 60.0

    conflict_retries: int = 5
    conflict_backoff: float = 0.1

    release_url: str = DEFAULT_RELEASE_URL

    @classmethod
    def from_env(cls) -> "RuntimeSettings":
        base = cls()
        backoff = _get_float("KUBECLI_CONFLICT_BACKOFF", base.conflict_backoff)
        settings = cls(
            build_poll_initial=_get_interval("KUBECLI_BUILD_POLL_INITIAL", base.build_poll_initial),
            build_poll_max=_get_float("KUBECLI_BUILD_POLL_MAX", base.build_poll_max),
            rollback_poll_initial=_get_interval("KUBECLI_ROLLBACK_POLL_INITIAL", base.rollback_poll_initial),
            rollback_poll_max=_get_float("KUBECLI_ROLLBACK_POLL_MAX", base.rollback_poll_max),
            conflict_retries=_get_int("KUBECLI_CONFLICT_RETRIES", base.conflict_retries),
            conflict_backoff=0.0 if backoff is None else backoff,
            release_url=os.getenv("KUBECLI_RELEASE_URL") or base.release_url,
        )
        if settings.conflict_retries < 1:
            raise ConfigError("KUBECLI_CONFLICT_RETRIES 는 1 이상이어야 합니다.")
        if settings.conflict_backoff < 0:
            raise ConfigError("KUBECLI_CONFLICT_BACKOFF 는 0 이상이어야 합니다.")
        _check_poll_range("KUBECLI_BUILD_POLL", settings.build_poll_initial, settings.build_poll_max)
        _check_poll_range("KUBECLI_ROLLBACK_POLL", settings.rollback_poll_initial, settings.rollback_poll_max)
        return settings
