"""
archive
-------

프로젝트 파일을 .tar.gz 로 묶고, 반대로 풀어내는 모듈.

- archive(): 파일 단위로 스트리밍하므로 전체 아카이브 크기만큼 메모리를 쓰지 않는다.
- unarchive(): 대상 디렉토리 밖으로 나가는 엔트리는 쓰기 전에 거부한다.
"""

from __future__ import annotations

import gzip
import os
import shutil
import tarfile
import zlib
from typing import List, Optional, Sequence

from .errors import ArchiveError, UnsafeArchiveError
from .logging_utils import get_logger


logger = get_logger(__name__)

DIR_MODE = 0o755
_COPY_BUFSIZE = 64 * 1024


def _archive_name(path: str, base_dir: Optional[str]) -> str:
    if base_dir is None:
        name = os.path.abspath(path)
    else:
        name = os.path.relpath(os.path.abspath(path), os.path.abspath(base_dir))
    name = name.replace(os.sep, "/").lstrip("/")
    if ".." in name.split("/"):
        raise ArchiveError(f"base_dir 밖의 파일은 아카이브에 넣을 수 없습니다: {path}")
    return name


def archive(manifest: Sequence[str], destination: str, base_dir: Optional[str] = None) -> int:
    """
    manifest 순서대로 파일을 gzip tar 로 묶는다.

    엔트리 이름은 base_dir 기준 상대경로 (없으면 절대경로에서 선행 '/' 제거).
    파일을 읽지 못하면 OSError 가 그대로 올라가며, 만들다 만 destination 은
    호출자가 정리한다. 기록한 엔트리 수를 반환한다.
    """
    # 엔트리 이름은 destination 을 만들기 전에 모두 검사한다
    names = [_archive_name(path, base_dir) for path in manifest]
    count = 0
    with tarfile.open(destination, "w:gz") as tar:
        for path, name in zip(manifest, names):
            with open(path, "rb") as f:
                st = os.fstat(f.fileno())
                info = tarfile.TarInfo(name=name)
                info.size = st.st_size
                info.mode = st.st_mode & 0o7777
                info.mtime = int(st.st_mtime)
                info.type = tarfile.REGTYPE
                tar.addfile(info, f)
            count += 1
    logger.debug("아카이브 생성: %s (%d files)", destination, count)
    return count


def _safe_target(destination_dir: str, name: str) -> str:
    if os.path.isabs(name) or name.startswith(("/", "\\")):
        raise UnsafeArchiveError(f"절대경로 엔트리는 허용되지 않습니다: {name}")
    parts = name.replace("\\", "/").split("/")
    if ".." in parts:
        raise UnsafeArchiveError(f"상위 디렉토리로 나가는 엔트리입니다: {name}")

    root = os.path.realpath(destination_dir)
    target = os.path.realpath(os.path.join(root, *[p for p in parts if p and p != "."]))
    if target != root and not target.startswith(root + os.sep):
        raise UnsafeArchiveError(f"대상 디렉토리를 벗어나는 엔트리입니다: {name}")
    return target


def unarchive(archive_path: str, destination_dir: str) -> List[str]:
    """
    .tar.gz 를 destination_dir 에 푼다. 풀어낸 엔트리 이름 목록을 반환한다.

    디렉토리는 0755 로 만들고, 일반 파일은 내용을 그대로 복사한다.
    링크/디바이스 엔트리는 건너뛴다.
    """
    extracted: List[str] = []
    os.makedirs(destination_dir, exist_ok=True)
    try:
        with tarfile.open(archive_path, "r:gz") as tar:
            for member in tar:
                target = _safe_target(destination_dir, member.name)
                if member.isdir():
                    os.makedirs(target, mode=DIR_MODE, exist_ok=True)
                elif member.isreg():
                    os.makedirs(os.path.dirname(target), mode=DIR_MODE, exist_ok=True)
                    src = tar.extractfile(member)
                    if src is None:
                        raise ArchiveError(f"엔트리 내용을 읽을 수 없습니다: {member.name}")
                    with src, open(target, "wb") as dst:
                        shutil.copyfileobj(src, dst, _COPY_BUFSIZE)
                    os.chmod(target, member.mode & 0o7777)
                else:
                    logger.warning("지원하지 않는 엔트리 타입이라 건너뜁니다: %s", member.name)
                    continue
                extracted.append(member.name)
    except (tarfile.TarError, gzip.BadGzipFile, EOFError, zlib.error) as e:
        raise ArchiveError(f"아카이브가 손상되었습니다: {archive_path}: {e}") from e
    logger.debug("아카이브 해제: %s -> %s (%d entries)", archive_path, destination_dir, len(extracted))
    return extracted
