"""
gcp_gke
-------

GKE 클러스터 접속 정보(엔드포인트, 인증서, 토큰)를 조회하는 모듈.
조회한 값은 메모리에만 보관한다.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from typing import Optional

from google.cloud import container_v1

from . import gcp_auth
from .errors import FormatError
from .gcp_auth import google_api_errors
from .logging_utils import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class ClusterCredential:
    endpoint: str
    username: str = ""
    password: str = field(default="", repr=False)
    ca_cert: bytes = field(default=b"", repr=False)
    client_cert: bytes = field(default=b"", repr=False)
    client_key: bytes = field(default=b"", repr=False)
    token: Optional[str] = field(default=None, repr=False)

    @property
    def host(self) -> str:
        return f"https://{self.endpoint}"


def _decode(name: str, value: str) -> bytes:
    if not value:
        return b""
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise FormatError(f"클러스터 {name} 값을 base64 로 해석할 수 없습니다.") from e


def cluster_resource_name(project: str, zone: str, cluster: str) -> str:
    return f"projects/{project}/locations/{zone}/clusters/{cluster}"


def get_cluster_credentials(project: str, zone: str, cluster: str) -> ClusterCredential:
    """
    GKE 클러스터를 조회하여 Kubernetes API 접속 정보를 만든다.
    """
    name = cluster_resource_name(project, zone, cluster)
    logger.info("GKE 클러스터 조회: %s", name)
    with google_api_errors(f"GKE 클러스터 조회 ({cluster})"):
        client = container_v1.ClusterManagerClient()
        res = client.get_cluster(name=name)

    if not res.endpoint:
        raise FormatError(f"클러스터 {cluster} 의 엔드포인트가 비어 있습니다.")

    auth = res.master_auth
    return ClusterCredential(
        endpoint=res.endpoint,
        username=auth.username,
        password=auth.password,
        ca_cert=_decode("ca_certificate", auth.cluster_ca_certificate),
        client_cert=_decode("client_certificate", auth.client_certificate),
        client_key=_decode("client_key", auth.client_key),
        token=gcp_auth.access_token(),
    )
