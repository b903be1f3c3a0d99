"""
ignore_filter
-------------

.kubecliignore 규칙으로 아카이브에 들어갈 파일 목록을 거른다.

문법은 .gitignore 와 거의 같다.
- 빈 줄과 '#' 주석은 무시 (\\# 는 리터럴)
- '!' 로 시작하면 다시 포함 (\\! 는 리터럴)
- '/' 로 끝나면 디렉토리에만 적용
- 중간에 '/' 가 있으면 루트 기준, 없으면 모든 깊이에서 매칭
- '*', '?', '[...]' 는 한 세그먼트 안에서만, '**' 는 0개 이상의 세그먼트

같은 경로에 여러 규칙이 걸리면 마지막 규칙이 이긴다.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Iterable, List, Sequence, Tuple

from .errors import ConfigError
from .logging_utils import get_logger


logger = get_logger(__name__)

IGNORE_FILE_NAME = ".kubecliignore"

# 항상 적용되는 기본 규칙 (VCS 메타데이터, ignore 파일 자체)
DEFAULT_PATTERNS: Tuple[str, ...] = (".git/", IGNORE_FILE_NAME)


@dataclass(frozen=True)
class IgnoreRule:
    pattern: str
    negated: bool
    dir_only: bool
    segments: Tuple[str, ...]

    @classmethod
    def parse(cls, line: str) -> "IgnoreRule | None":
        """
        한 줄을 규칙으로 변환한다. 빈 줄/주석이면 None.
        """
        text = line.rstrip("\r\n").rstrip(" \t")
        if not text or text.startswith("#"):
            return None

        negated = False
        if text.startswith("!"):
            negated = True
            text = text[1:]
        elif text.startswith("\\!") or text.startswith("\\#"):
            text = text[1:]

        dir_only = text.endswith("/")
        text = text.rstrip("/")

        anchored = "/" in text
        text = text.lstrip("/")
        if not text:
            raise ConfigError(f"잘못된 ignore 패턴입니다: {line.strip()!r}")

        segments = tuple(s for s in text.split("/") if s)
        if not anchored and segments[0] != "**":
            segments = ("**",) + segments

        return cls(pattern=line.strip(), negated=negated, dir_only=dir_only, segments=segments)

    def matches(self, rel_parts: Sequence[str]) -> bool:
        """
        경로 자체 또는 상위 디렉토리 중 하나라도 매칭되면 True.
        dir_only 규칙은 상위 디렉토리에만 적용한다.
        """
        last = len(rel_parts)
        for depth in range(1, last + 1):
            if self.dir_only and depth == last:
                break
            if _match_segments(self.segments, rel_parts[:depth]):
                return True
        return False


def _match_segments(pattern: Sequence[str], parts: Sequence[str]) -> bool:
    if not pattern:
        return not parts
    head = pattern[0]
    if head == "**":
        rest = pattern[1:]
        if not rest:
            return True
        return any(_match_segments(rest, parts[i:]) for i in range(len(parts) + 1))
    if not parts:
        return False
    return fnmatchcase(parts[0], head) and _match_segments(pattern[1:], parts[1:])


class IgnoreRuleSet:
    """순서가 있는 규칙 모음. 뒤의 규칙이 앞의 판정을 덮어쓴다."""

    def __init__(self, rules: Iterable[IgnoreRule] = ()) -> None:
        self.rules: Tuple[IgnoreRule, ...] = tuple(rules)

    @classmethod
    def from_lines(cls, lines: Iterable[str]) -> "IgnoreRuleSet":
        rules: List[IgnoreRule] = []
        for line in lines:
            rule = IgnoreRule.parse(line)
            if rule is not None:
                rules.append(rule)
        return cls(rules)

    @classmethod
    def defaults(cls) -> "IgnoreRuleSet":
        return cls.from_lines(DEFAULT_PATTERNS)

    def extend(self, other: "IgnoreRuleSet") -> "IgnoreRuleSet":
        return IgnoreRuleSet(self.rules + other.rules)

    def includes(self, rel_path: str) -> bool:
        parts = [p for p in rel_path.replace(os.sep, "/").split("/") if p]
        verdict = True
        for rule in self.rules:
            if rule.matches(parts):
                verdict = rule.negated
        return verdict


def load_rules(root: str) -> IgnoreRuleSet:
    """
    기본 규칙 + (있다면) 프로젝트의 .kubecliignore 규칙을 로드한다.
    """
    rules = IgnoreRuleSet.defaults()
    path = os.path.join(root, IGNORE_FILE_NAME)
    if not os.path.exists(path):
        return rules

    try:
        with open(path, "r", encoding="utf-8") as f:
            project_rules = IgnoreRuleSet.from_lines(f)
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"{IGNORE_FILE_NAME} 파일을 읽을 수 없습니다: {e}") from e

    logger.debug("%s 에서 규칙 %d개 로드", path, len(project_rules.rules))
    return rules.extend(project_rules)


def filter_manifest(manifest: Sequence[str], root: str) -> List[str]:
    """
    manifest(절대경로 목록) 중 ignore 규칙에 걸리지 않는 파일만 순서대로 반환한다.
    """
    root = os.path.abspath(root)
    rules = load_rules(root)

    kept: List[str] = []
    for path in manifest:
        rel = os.path.relpath(os.path.abspath(path), root)
        if rules.includes(rel):
            kept.append(path)
        else:
            logger.debug("ignore 규칙으로 제외: %s", rel)
    return kept
