"""
updater
-------

kube-cli 자체 업데이트.

IDLE -> RESOLVE_RELEASE -> DOWNLOAD -> VERIFY -> REPLACE -> DONE 순서로 진행하며,
어느 단계에서든 실패하면 FAILED 로 끝난다. 체크섬이 정확히 일치하지 않으면
교체 단계는 절대 실행하지 않는다. 임시 파일은 DONE/FAILED 모두에서 지운다.
"""

from __future__ import annotations

import enum
import os
import platform
import shutil
import stat
import sys
import tempfile
from dataclasses import dataclass
from typing import List, Optional, Protocol

from . import archive, checksum
from .errors import KubeCliError
from .github_release import ReleaseDescriptor
from .logging_utils import get_logger
from .progress import NullReporter, Reporter


logger = get_logger(__name__)

TOOL_NAME = "kube-cli"
EXECUTABLE_MODE = 0o755

_ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
}


class ReleaseSource(Protocol):
    def get_latest_release(self, checksum_asset: str, payload_asset: str) -> ReleaseDescriptor: ...

    def download(self, url: str, dest_path: str) -> int: ...


class UpdateState(enum.Enum):
    IDLE = "idle"
    RESOLVE_RELEASE = "resolve_release"
    DOWNLOAD = "download"
    VERIFY = "verify"
    REPLACE = "replace"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class PlatformInfo:
    name: str
    os: str
    arch: str

    @classmethod
    def current(cls, name: str = TOOL_NAME) -> "PlatformInfo":
        machine = platform.machine().lower()
        return cls(name=name, os=platform.system().lower(), arch=_ARCH_ALIASES.get(machine, machine))

    @property
    def checksum_asset(self) -> str:
        return f"{self.name}_{self.os}_{self.arch}.sha512"

    @property
    def payload_asset(self) -> str:
        return f"{self.name}_{self.os}_{self.arch}.tar.gz"


@dataclass
class UpdateResult:
    updated: bool
    current_version: str
    latest_version: str
    downloaded_bytes: int = 0
    installed: Optional[List[str]] = None


def _normalize_version(version: str) -> str:
    """릴리스 태그의 선행 'v' 는 무시한다. (v0.4.0 == 0.4.0)"""
    version = version.strip()
    if version[:1] in ("v", "V"):
        return version[1:]
    return version


def current_executable() -> str:
    if getattr(sys, "frozen", False):
        return os.path.realpath(sys.executable)
    return os.path.realpath(sys.argv[0])


class ReleaseUpdater:
    def __init__(
        self,
        source: ReleaseSource,
        current_version: str,
        executable_path: str,
        platform_info: Optional[PlatformInfo] = None,
        reporter: Optional[Reporter] = None,
    ) -> None:
        self.source = source
        self.current_version = current_version
        self.executable_path = os.path.abspath(executable_path)
        self.platform_info = platform_info or PlatformInfo.current()
        self.reporter = reporter or NullReporter()
        self.state = UpdateState.IDLE
        self.history: List[UpdateState] = [UpdateState.IDLE]
        self.failure: Optional[BaseException] = None

    def _enter(self, state: UpdateState) -> None:
        logger.debug("update state: %s -> %s", self.state.name, state.name)
        self.state = state
        self.history.append(state)

    def run(self) -> UpdateResult:
        try:
            with tempfile.TemporaryDirectory(prefix="kube-cli-update-") as workdir:
                result = self._run(workdir)
        except BaseException as e:
            self.failure = e
            self._enter(UpdateState.FAILED)
            raise
        self._enter(UpdateState.DONE)
        return result

    def _run(self, workdir: str) -> UpdateResult:
        self._enter(UpdateState.RESOLVE_RELEASE)
        self.reporter.start(1, "최신 버전 정보를 조회하는 중...")
        try:
            release = self.source.get_latest_release(
                self.platform_info.checksum_asset, self.platform_info.payload_asset
            )
        except KubeCliError:
            self.reporter.fail(1, "최신 버전 정보를 조회하지 못했습니다.")
            raise
        self.reporter.succeed(1, f"최신 버전은 {release.version_tag} 입니다.")

        if _normalize_version(release.version_tag) == _normalize_version(self.current_version):
            logger.info("이미 최신 버전입니다: %s", self.current_version)
            return UpdateResult(False, self.current_version, release.version_tag)

        self._enter(UpdateState.DOWNLOAD)
        payload_path = os.path.join(workdir, self.platform_info.payload_asset)
        sum_path = os.path.join(workdir, self.platform_info.checksum_asset)
        self.reporter.start(2, "CLI 아카이브를 내려받는 중...")
        try:
            size = self.source.download(release.payload_url, payload_path)
            self.source.download(release.checksum_url, sum_path)
        except KubeCliError:
            self.reporter.fail(2, "CLI 아카이브를 내려받지 못했습니다.")
            raise
        self.reporter.succeed(2, f"CLI 아카이브를 내려받았습니다 ({size} bytes).")

        self._enter(UpdateState.VERIFY)
        self.reporter.start(3, "내려받은 아카이브를 검증하는 중...")
        try:
            checksum.verify(payload_path, sum_path)
        except KubeCliError:
            self.reporter.fail(3, "내려받은 아카이브 검증에 실패했습니다.")
            raise
        self.reporter.succeed(3, "내려받은 아카이브를 검증했습니다.")

        self._enter(UpdateState.REPLACE)
        self.reporter.start(4, "CLI 실행 파일을 교체하는 중...")
        try:
            installed = self._replace(payload_path)
        except (KubeCliError, OSError):
            self.reporter.fail(4, "CLI 실행 파일을 교체하지 못했습니다.")
            raise
        self.reporter.succeed(4, f"{self.current_version} 에서 {release.version_tag} 로 업데이트했습니다.")

        return UpdateResult(True, self.current_version, release.version_tag, size, installed)

    def _replace(self, payload_path: str) -> List[str]:
        """
        실행 파일과 같은 디렉토리의 staging 폴더에 먼저 풀고,
        파일마다 os.replace 로 원자적으로 옮긴다. 하위 디렉토리 구조는 그대로 유지한다.
        """
        target_dir = os.path.dirname(self.executable_path)
        staging = tempfile.mkdtemp(prefix=".kube-cli-staging-", dir=target_dir)
        installed: List[str] = []
        try:
            for name in archive.unarchive(payload_path, staging):
                src = os.path.join(staging, *name.split("/"))
                if not os.path.isfile(src):
                    continue
                dst = os.path.join(target_dir, *name.split("/"))
                os.makedirs(os.path.dirname(dst), mode=archive.DIR_MODE, exist_ok=True)
                os.replace(src, dst)
                installed.append(dst)
        finally:
            shutil.rmtree(staging, ignore_errors=True)

        if os.path.exists(self.executable_path):
            mode = os.stat(self.executable_path).st_mode
            os.chmod(self.executable_path, stat.S_IMODE(mode) | EXECUTABLE_MODE)
        logger.info("설치된 파일: %s", installed)
        return installed
