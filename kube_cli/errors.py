"""
errors
------

kube-cli 전체에서 사용하는 예외 계층.

코어 모듈은 항상 여기 정의된 타입으로 실패를 알리고,
사용자에게 보여줄 안내 문구(hint)는 CLI 쪽에서 예외 종류별로 매핑한다.
"""

from __future__ import annotations

from typing import Optional


class KubeCliError(Exception):
    """모든 kube-cli 예외의 베이스. stage 는 파이프라인이 채운다."""

    stage: Optional[str] = None


class ConfigError(KubeCliError):
    """kubecli.yaml / .kubecliignore 가 없거나 형식이 잘못된 경우"""


class MissingInputError(KubeCliError):
    """Dockerfile 등 필수 프로젝트 파일이 없는 경우"""


class NetworkError(KubeCliError):
    """원격 서비스 호출 실패 (연결/권한/전송 오류)"""


class FormatError(KubeCliError):
    """원격 메타데이터나 다운로드한 파일의 형식이 잘못된 경우"""


class ChecksumMismatchError(KubeCliError):
    """무결성 검증 실패. 절대 무시하지 않는다."""


class NotFoundError(KubeCliError):
    """이름으로 찾는 리소스(컨테이너, 릴리스 asset 등)가 없는 경우"""


class RemoteOperationFailedError(KubeCliError):
    """원격 장기 작업이 실패 상태로 끝난 경우. log_url 로 원인 추적."""

    def __init__(self, message: str, log_url: Optional[str] = None) -> None:
        super().__init__(message)
        self.log_url = log_url


class UnrecognizedStatusError(RemoteOperationFailedError):
    """폴링 중 알 수 없는 상태를 받은 경우 (무한 대기 대신 실패 처리)"""


class OperationCancelledError(KubeCliError):
    """폴링 도중 사용자가 취소한 경우"""


class ConflictError(KubeCliError):
    """낙관적 동시성 충돌 신호. retry_on_conflict 가 소비한다."""


class ConflictExhaustedError(KubeCliError):
    """충돌 재시도 횟수를 모두 소진한 경우"""

    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


class ArchiveError(KubeCliError, OSError):
    """tar.gz 아카이브가 손상되었거나 잘려 있는 경우"""


class UnsafeArchiveError(ArchiveError):
    """대상 디렉토리 밖으로 빠져나가는 엔트리가 포함된 경우"""
