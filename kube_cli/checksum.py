"""
checksum
--------

다운로드한 아티팩트의 SHA-512 검증.
"""

from __future__ import annotations

import hashlib

from .errors import ChecksumMismatchError, FormatError
from .logging_utils import get_logger


logger = get_logger(__name__)

CHUNK_SIZE = 64 * 1024


def sum_file(path: str, chunk_size: int = CHUNK_SIZE) -> str:
    """파일 내용을 스트리밍으로 해시하여 소문자 hex digest 를 반환한다."""
    h = hashlib.sha512()
    with open(path, "rb") as f:
        while chunk := f.read(chunk_size):
            h.update(chunk)
    return h.hexdigest()


def extract_reference_digest(sumfile_path: str) -> str:
    """
    `<digest>  <filename>` 형식의 한 줄짜리 파일에서 digest 를 꺼낸다.
    토큰이 정확히 2개가 아니면 FormatError.
    """
    with open(sumfile_path, "r", encoding="utf-8", errors="replace") as f:
        fields = f.read().split()
    if len(fields) != 2:
        raise FormatError(
            f"체크섬 파일 형식이 잘못되었습니다 (토큰 {len(fields)}개): {sumfile_path}"
        )
    return fields[0].lower()


def verify(path: str, sumfile_path: str) -> str:
    """
    path 의 digest 가 sumfile 의 값과 정확히 같은지 확인한다.
    일치하면 digest 를 반환하고, 다르면 ChecksumMismatchError.
    """
    expected = extract_reference_digest(sumfile_path)
    actual = sum_file(path)
    if actual != expected:
        logger.error("SHA-512 불일치: expected=%s actual=%s", expected, actual)
        raise ChecksumMismatchError("다운로드한 파일의 SHA-512 체크섬이 일치하지 않습니다.")
    logger.debug("SHA-512 검증 완료: %s", actual)
    return actual
