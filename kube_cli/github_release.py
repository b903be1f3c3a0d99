"""
github_release
--------------

GitHub releases API 에서 최신 릴리스 정보를 조회하고 asset 을 내려받는 모듈.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from .errors import FormatError, NetworkError, NotFoundError
from .logging_utils import get_logger


logger = get_logger(__name__)

# 연결 5초, 전체 10초 (다운로드는 읽기 타임아웃만 길게)
API_TIMEOUT = httpx.Timeout(10.0, connect=5.0)
DOWNLOAD_TIMEOUT = httpx.Timeout(60.0, connect=5.0)
_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class ReleaseDescriptor:
    version_tag: str
    checksum_url: str
    payload_url: str


class GitHubReleaseSource:
    def __init__(self, latest_url: str, *, transport: Optional[httpx.BaseTransport] = None) -> None:
        self.latest_url = latest_url
        self._transport = transport

    def _client(self, timeout: httpx.Timeout) -> httpx.Client:
        return httpx.Client(
            timeout=timeout,
            follow_redirects=True,
            transport=self._transport,
            headers={"Accept": "application/vnd.github+json"},
        )

    def _fetch_latest(self) -> Dict[str, Any]:
        try:
            with self._client(API_TIMEOUT) as client:
                resp = client.get(self.latest_url)
                resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                raise NotFoundError(f"릴리스를 찾을 수 없습니다: {self.latest_url}") from e
            raise NetworkError(f"릴리스 정보 조회 실패 (status={e.response.status_code})") from e
        except httpx.HTTPError as e:
            raise NetworkError(f"릴리스 정보 조회 실패: {e}") from e

        try:
            raw = resp.json()
        except ValueError as e:
            raise FormatError("릴리스 응답이 JSON 이 아닙니다.") from e
        if not isinstance(raw, dict):
            raise FormatError("릴리스 응답 형식이 잘못되었습니다.")
        return raw

    def get_latest_release(self, checksum_asset: str, payload_asset: str) -> ReleaseDescriptor:
        """
        최신 릴리스에서 두 asset 의 다운로드 URL 을 찾는다.
        """
        raw = self._fetch_latest()

        tag = raw.get("tag_name")
        if not isinstance(tag, str) or not tag:
            raise FormatError("릴리스 응답에 tag_name 이 없습니다.")
        assets = raw.get("assets")
        if not isinstance(assets, list):
            raise FormatError("릴리스 응답에 assets 가 없습니다.")

        urls: Dict[str, str] = {}
        for asset in assets:
            if not isinstance(asset, dict):
                continue
            name = asset.get("name")
            url = asset.get("browser_download_url")
            if isinstance(name, str) and isinstance(url, str):
                urls[name] = url

        missing = [n for n in (checksum_asset, payload_asset) if n not in urls]
        if missing:
            raise NotFoundError(
                f"릴리스 {tag} 에 현재 플랫폼용 asset 이 없습니다: " + ", ".join(missing)
            )

        return ReleaseDescriptor(
            version_tag=tag,
            checksum_url=urls[checksum_asset],
            payload_url=urls[payload_asset],
        )

    def download(self, url: str, dest_path: str) -> int:
        """
        url 을 dest_path 로 내려받고 바이트 수를 반환한다.

        dest_path + '.tmp' 에 먼저 쓰고, 전송이 끝난 뒤에만 rename 한다.
        """
        tmp_path = dest_path + ".tmp"
        total = 0
        logger.info("다운로드: %s", url)
        try:
            with self._client(DOWNLOAD_TIMEOUT) as client:
                with client.stream("GET", url) as resp:
                    resp.raise_for_status()
                    with open(tmp_path, "wb") as out:
                        for chunk in resp.iter_bytes(_CHUNK_SIZE):
                            out.write(chunk)
                            total += len(chunk)
            os.replace(tmp_path, dest_path)
        except httpx.HTTPError as e:
            raise NetworkError(f"다운로드 실패: {url}: {e}") from e
        finally:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
        logger.debug("다운로드 완료: %s (%d bytes)", dest_path, total)
        return total
