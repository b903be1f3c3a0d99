"""
orchestrator
------------

deploy / rollback 워크플로우.

deploy 는 Configure -> Package -> Upload -> Build -> Rollout 순서로 실행하며,
한 단계가 실패하면 이후 단계는 실행하지 않는다. 이전 단계의 부수효과
(업로드한 아카이브, 빌드한 이미지)는 되돌리지 않는다. 매 실행마다 새 오브젝트
이름/태그를 쓰므로 다음 실행에 영향을 주지 않는다.
"""

from __future__ import annotations

import contextlib
import os
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, List, Optional

from . import (
    archive,
    filesystem,
    gcp_cloud_build,
    gcp_gcs,
    gcp_gke,
    ignore_filter,
    k8s_deployment,
)
from .config import DeployConfig, RuntimeSettings
from .errors import (
    MissingInputError,
    OperationCancelledError,
    RemoteOperationFailedError,
)
from .gcp_cloud_build import FAILED_STATUSES, PENDING_STATUSES, BuildRecord, BuildStatus
from .logging_utils import get_logger
from .poller import CancellationSignal, PollOutcome, RemoteOperationPoller
from .progress import NullReporter, Reporter
from .retry import LinearBackoff


logger = get_logger(__name__)

DOCKERFILE_NAME = "Dockerfile"

# CLI 등에서 사용할 수 있도록 단계 이름을 상수로 노출
ALL_STAGES: List[str] = ["configure", "package", "upload", "build", "rollout"]
ROLLBACK_STAGES: List[str] = ["configure", "rollback"]


@dataclass
class _Step:
    success_message: str = ""


@dataclass
class DeployResult:
    image: str = ""
    bucket: str = ""
    object_name: str = ""
    file_count: int = 0
    uploaded_bytes: int = 0
    build_id: str = ""
    log_url: str = ""
    conflict_cycles: int = 0
    completed_stages: List[str] = field(default_factory=list)


@dataclass
class RollbackResult:
    revision: int = 0
    waited: bool = False
    poll_attempts: int = 0
    completed_stages: List[str] = field(default_factory=list)


def build_poller(settings: RuntimeSettings, sleep: Callable[[float], Any] = time.sleep) -> RemoteOperationPoller:
    return RemoteOperationPoller(settings.build_poll_initial, settings.build_poll_max, sleep=sleep)


def rollback_poller(settings: RuntimeSettings, sleep: Callable[[float], Any] = time.sleep) -> RemoteOperationPoller:
    return RemoteOperationPoller(settings.rollback_poll_initial, settings.rollback_poll_max, sleep=sleep)


def _build_succeeded(record: BuildRecord) -> bool:
    return record.status is BuildStatus.SUCCESS


def _build_failed(record: BuildRecord) -> bool:
    return record.status in FAILED_STATUSES


def _build_pending(record: BuildRecord) -> bool:
    # UNKNOWN 은 어디에도 속하지 않으므로 poller 가 UnrecognizedStatusError 로 처리한다.
    return record.status in PENDING_STATUSES


class _Workflow:
    def __init__(
        self,
        project_root: str,
        *,
        reporter: Optional[Reporter] = None,
        settings: Optional[RuntimeSettings] = None,
        cancel: Optional[CancellationSignal] = None,
        sleep: Callable[[float], Any] = time.sleep,
    ) -> None:
        self.project_root = os.path.abspath(project_root)
        self.reporter = reporter or NullReporter()
        self.settings = settings or RuntimeSettings()
        self.cancel = cancel
        self.sleep = sleep

    @contextlib.contextmanager
    def _stage(self, step: int, name: str, message: str, fail_message: str) -> Iterator[_Step]:
        """
        한 단계를 실행한다. 실패 시 예외에 stage 를 붙여 그대로 올린다.
        """
        logger.info("단계 실행: %s", name)
        self.reporter.start(step, message)
        state = _Step()
        try:
            yield state
        except Exception as e:
            if getattr(e, "stage", None) is None:
                e.stage = name  # type: ignore[attr-defined]
            logger.debug("단계 실패: %s (%s)", name, type(e).__name__)
            self.reporter.fail(step, fail_message)
            raise
        self.reporter.succeed(step, state.success_message or message)

    def _configure(self) -> DeployConfig:
        with self._stage(1, "configure", "설정을 읽는 중...", "설정을 읽지 못했습니다.") as step:
            cfg = DeployConfig.load(self.project_root)
            step.success_message = "프로젝트 설정을 읽었습니다."
        return cfg

    def _conflict_options(self) -> dict:
        return {
            "budget": self.settings.conflict_retries,
            "backoff": LinearBackoff(self.settings.conflict_backoff),
            "sleep": self.sleep,
        }


class DeploymentPipeline(_Workflow):
    def __init__(self, project_root: str, *, clock: Callable[[], float] = time.time, **kwargs: Any) -> None:
        super().__init__(project_root, **kwargs)
        self.clock = clock

    def run(self) -> DeployResult:
        result = DeployResult()
        cfg = self._configure()
        result.completed_stages.append("configure")

        timestamp = str(int(self.clock()))
        bucket = cfg.bucket_name
        object_name = f"{cfg.docker_name}-{timestamp}.tar.gz"

        with filesystem.temp_file(suffix=".tar.gz") as tmp:
            result.file_count = self._package(tmp)
            result.completed_stages.append("package")

            artifact = gcp_gcs.Artifact(bucket=bucket, object_name=object_name, local_path=tmp)
            result.uploaded_bytes = self._upload(cfg, artifact)
            result.bucket, result.object_name = bucket, object_name
            result.completed_stages.append("upload")

        record = self._build(cfg, bucket, object_name, ["latest", timestamp])
        result.build_id, result.log_url = record.id, record.log_url
        result.completed_stages.append("build")

        result.image = cfg.image_url(timestamp)
        result.conflict_cycles = self._rollout(cfg, result.image)
        result.completed_stages.append("rollout")
        return result

    def _package(self, destination: str) -> int:
        with self._stage(
            2, "package", "프로젝트를 아카이브로 묶는 중...", "프로젝트를 아카이브로 묶지 못했습니다."
        ) as step:
            if not filesystem.file_exists(os.path.join(self.project_root, DOCKERFILE_NAME)):
                raise MissingInputError("프로젝트 루트에 Dockerfile 이 없습니다.")
            files = filesystem.list_files(self.project_root)
            files = ignore_filter.filter_manifest(files, self.project_root)
            count = archive.archive(files, destination, base_dir=self.project_root)
            step.success_message = f"프로젝트 파일 {count}개를 묶었습니다."
        return count

    def _upload(self, cfg: DeployConfig, artifact: gcp_gcs.Artifact) -> int:
        with self._stage(3, "upload", "아카이브를 업로드하는 중...", "아카이브를 업로드하지 못했습니다.") as step:
            gcp_gcs.ensure_bucket(artifact.bucket, cfg.gke_project)
            size = gcp_gcs.upload(artifact, cfg.gke_project)
            step.success_message = f"아카이브를 업로드했습니다 ({size} bytes)."
        return size

    def _build(self, cfg: DeployConfig, bucket: str, object_name: str, tags: List[str]) -> BuildRecord:
        with self._stage(4, "build", "프로젝트를 빌드하는 중...", "프로젝트 빌드에 실패했습니다.") as step:
            record = gcp_cloud_build.create_build(cfg.gke_project, cfg.docker_name, bucket, object_name, tags)
            build_id = record.id

            outcome = build_poller(self.settings, self.sleep).poll(
                lambda: gcp_cloud_build.get_build(cfg.gke_project, build_id),
                is_success=_build_succeeded,
                is_failure=_build_failed,
                is_pending=_build_pending,
                cancel=self.cancel,
            )
            if outcome.outcome is PollOutcome.CANCELLED:
                raise OperationCancelledError(f"빌드 대기가 취소되었습니다 (build id={build_id}).")
            final = outcome.status
            if outcome.outcome is PollOutcome.FAILED:
                raise RemoteOperationFailedError(
                    f"Cloud Build 가 {final.status.name} 상태로 끝났습니다. 자세한 내용: {final.log_url}",
                    log_url=final.log_url,
                )
            step.success_message = "프로젝트 빌드에 성공했습니다."
        return final

    def _rollout(self, cfg: DeployConfig, image: str) -> int:
        with self._stage(5, "rollout", "프로젝트를 배포하는 중...", "프로젝트 배포에 실패했습니다.") as step:
            cred = gcp_gke.get_cluster_credentials(cfg.gke_project, cfg.gke_zone, cfg.gke_cluster)
            with k8s_deployment.apps_api(cred) as apps:
                cycles = k8s_deployment.update_image(
                    apps,
                    cfg.deployment_namespace,
                    cfg.deployment_name,
                    cfg.container_name,
                    image,
                    **self._conflict_options(),
                )
            step.success_message = f"{image} 배포에 성공했습니다."
        return cycles


class Rollback(_Workflow):
    def run(self, *, wait: bool = True) -> RollbackResult:
        result = RollbackResult()
        cfg = self._configure()
        result.completed_stages.append("configure")

        with self._stage(2, "rollback", "Deployment 를 롤백하는 중...", "Deployment 롤백에 실패했습니다.") as step:
            cred = gcp_gke.get_cluster_credentials(cfg.gke_project, cfg.gke_zone, cfg.gke_cluster)
            with k8s_deployment.apps_api(cred) as apps:
                result.revision = k8s_deployment.rollback(
                    apps, cfg.deployment_namespace, cfg.deployment_name, **self._conflict_options()
                )
                if wait:
                    outcome = rollback_poller(self.settings, self.sleep).poll(
                        lambda: k8s_deployment.unavailable_replicas(
                            apps, cfg.deployment_namespace, cfg.deployment_name
                        ),
                        is_success=lambda n: n == 0,
                        is_failure=lambda n: False,
                        is_pending=lambda n: n > 0,
                        cancel=self.cancel,
                    )
            if wait:
                result.waited = True
                result.poll_attempts = outcome.attempts
                if outcome.outcome is PollOutcome.CANCELLED:
                    raise OperationCancelledError("롤백 완료 대기가 취소되었습니다.")
                step.success_message = f"revision {result.revision} 으로 롤백했습니다."
            else:
                step.success_message = (
                    "롤백을 시작했습니다. 진행 상황은 "
                    "https://console.cloud.google.com/kubernetes/workload 에서 확인하세요."
                )
        result.completed_stages.append("rollback")
        return result
