"""
gcp_gcs
-------

Cloud Build 소스 아카이브를 올릴 GCS 버킷 준비 및 업로드를 담당하는 모듈.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from google.api_core.exceptions import Conflict
from google.cloud import storage

from .gcp_auth import google_api_errors
from .logging_utils import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class Artifact:
    bucket: str
    object_name: str
    local_path: str


def ensure_bucket(bucket_name: str, project: str) -> bool:
    """
    버킷이 없으면 생성한다. 이미 있으면 그대로 사용한다.
    새로 만들었으면 True.
    """
    with google_api_errors(f"GCS 버킷 생성 ({bucket_name})"):
        client = storage.Client(project=project)
        try:
            client.create_bucket(bucket_name, project=project)
        except Conflict:
            logger.info("기존 GCS 버킷을 사용합니다: %s", bucket_name)
            return False
    logger.info("GCS 버킷을 생성했습니다: %s", bucket_name)
    return True


def upload(artifact: Artifact, project: str) -> int:
    """
    로컬 파일을 gs://bucket/object 로 업로드하고 전송한 바이트 수를 반환한다.
    """
    size = os.path.getsize(artifact.local_path)
    logger.info(
        "GCS 업로드: %s -> gs://%s/%s (%d bytes)",
        artifact.local_path,
        artifact.bucket,
        artifact.object_name,
        size,
    )
    with google_api_errors(f"GCS 업로드 (gs://{artifact.bucket}/{artifact.object_name})"):
        client = storage.Client(project=project)
        blob = client.bucket(artifact.bucket).blob(artifact.object_name)
        blob.upload_from_filename(artifact.local_path, content_type="application/gzip")
    return size
