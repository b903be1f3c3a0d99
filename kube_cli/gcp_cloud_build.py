"""
gcp_cloud_build
---------------

GCS 에 올린 소스 아카이브로 Cloud Build 를 생성하고 상태를 조회하는 모듈.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional, Sequence

from google.cloud.devtools import cloudbuild_v1

from .errors import FormatError
from .gcp_auth import google_api_errors
from .logging_utils import get_logger


logger = get_logger(__name__)

DOCKER_BUILDER = "gcr.io/cloud-builders/docker"
BUILD_TIMEOUT = timedelta(seconds=1200)


class BuildStatus(enum.Enum):
    UNKNOWN = "STATUS_UNKNOWN"
    QUEUED = "QUEUED"
    WORKING = "WORKING"
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"

    @classmethod
    def from_api(cls, name: Optional[str]) -> "BuildStatus":
        """
        Cloud Build API 의 상태 이름을 변환한다.
        PENDING 은 QUEUED, EXPIRED 는 TIMEOUT 으로 보고, 나머지는 UNKNOWN.
        """
        if name == "PENDING":
            return cls.QUEUED
        if name == "EXPIRED":
            return cls.TIMEOUT
        try:
            return cls(name)
        except ValueError:
            return cls.UNKNOWN


PENDING_STATUSES = frozenset({BuildStatus.QUEUED, BuildStatus.WORKING})
FAILED_STATUSES = frozenset(
    {BuildStatus.FAILURE, BuildStatus.INTERNAL_ERROR, BuildStatus.TIMEOUT, BuildStatus.CANCELLED}
)


@dataclass(frozen=True)
class BuildRecord:
    id: str
    status: BuildStatus
    log_url: str = ""

    @classmethod
    def from_build(cls, build) -> "BuildRecord":  # noqa: ANN001
        status = getattr(build.status, "name", build.status)
        return cls(id=build.id, status=BuildStatus.from_api(status), log_url=build.log_url or "")


def image_names(project: str, name: str, tags: Sequence[str]) -> List[str]:
    return [f"gcr.io/{project}/{name}:{tag}" for tag in tags]


def build_steps(images: Sequence[str]) -> List[str]:
    args = ["build", "-f", "Dockerfile"]
    for image in images:
        args += ["-t", image]
    args.append(".")
    return args


def create_build(project: str, image_name: str, bucket: str, obj: str, tags: Sequence[str]) -> BuildRecord:
    """
    gs://bucket/obj 소스로 docker 이미지를 빌드하는 Cloud Build 를 시작한다.
    """
    images = image_names(project, image_name, tags)
    build = cloudbuild_v1.Build(
        images=images,
        source=cloudbuild_v1.Source(
            storage_source=cloudbuild_v1.StorageSource(bucket=bucket, object_=obj),
        ),
        steps=[cloudbuild_v1.BuildStep(name=DOCKER_BUILDER, args=build_steps(images))],
        timeout=BUILD_TIMEOUT,
    )

    logger.info("Cloud Build 생성: project=%s images=%s", project, images)
    with google_api_errors("Cloud Build 생성"):
        client = cloudbuild_v1.CloudBuildClient()
        operation = client.create_build(project_id=project, build=build)
        metadata = operation.metadata

    if metadata is None or not metadata.build.id:
        raise FormatError("Cloud Build 응답에 빌드 정보가 없습니다.")
    record = BuildRecord.from_build(metadata.build)
    logger.info("Cloud Build 시작됨: id=%s status=%s log=%s", record.id, record.status.name, record.log_url)
    return record


def get_build(project: str, build_id: str) -> BuildRecord:
    with google_api_errors("Cloud Build 상태 조회"):
        client = cloudbuild_v1.CloudBuildClient()
        build = client.get_build(project_id=project, id=build_id)
    return BuildRecord.from_build(build)
