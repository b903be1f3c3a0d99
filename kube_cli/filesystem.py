from __future__ import annotations

import contextlib
import os
import tempfile
from typing import Iterator, List

from .logging_utils import get_logger


logger = get_logger(__name__)

TEMP_PREFIX = "kube-cli-"


def file_exists(path: str) -> bool:
    return os.path.isfile(path)


def list_files(root: str) -> List[str]:
    """
    root 아래의 모든 일반 파일 절대경로를 정렬된 목록으로 반환한다.
    디렉토리와 심볼릭 링크는 포함하지 않는다.
    """
    root = os.path.abspath(root)
    files: List[str] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in sorted(filenames):
            path = os.path.join(dirpath, name)
            if os.path.islink(path) or not os.path.isfile(path):
                continue
            files.append(path)
    return files


@contextlib.contextmanager
def temp_file(suffix: str = "") -> Iterator[str]:
    """
    임시 파일 경로를 만들고, 블록을 벗어나면 (성공/실패 관계없이) 삭제한다.
    """
    fd, path = tempfile.mkstemp(prefix=TEMP_PREFIX, suffix=suffix)
    os.close(fd)
    try:
        yield path
    finally:
        with contextlib.suppress(FileNotFoundError):
            os.remove(path)
            logger.debug("임시 파일 삭제: %s", path)
