"""
gcp_auth
--------

GOOGLE_APPLICATION_CREDENTIALS / ADC 기반 인증과,
Google API 클라이언트 예외를 kube-cli 예외로 바꾸는 공통 유틸.
"""

from __future__ import annotations

import contextlib
from typing import Iterator

import google.auth
from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import DefaultCredentialsError, GoogleAuthError
from google.auth.transport.requests import Request

from .errors import ConfigError, NetworkError
from .logging_utils import get_logger


logger = get_logger(__name__)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"


@contextlib.contextmanager
def google_api_errors(action: str) -> Iterator[None]:
    """
    블록 안에서 발생한 Google API/인증 예외를 ConfigError / NetworkError 로 감싼다.
    """
    try:
        yield
    except DefaultCredentialsError as e:
        raise ConfigError(
            f"{action}: GCP 인증 정보를 찾을 수 없습니다. "
            "GOOGLE_APPLICATION_CREDENTIALS 를 설정하세요."
        ) from e
    except (GoogleAPIError, GoogleAuthError) as e:
        raise NetworkError(f"{action} 실패: {e}") from e


def access_token() -> str:
    """
    ADC 로 cloud-platform 스코프 액세스 토큰을 발급받는다. (GKE API 서버 인증용)
    """
    with google_api_errors("GCP 액세스 토큰 발급"):
        credentials, project = google.auth.default(scopes=[CLOUD_PLATFORM_SCOPE])
        credentials.refresh(Request())
    logger.debug("GCP 액세스 토큰 발급 완료 (ADC project=%s)", project)
    return credentials.token
