"""
retry
-----

낙관적 동시성 충돌(HTTP 409) 시 fetch-mutate-submit 사이클 전체를 다시 시도한다.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from .errors import ConflictError, ConflictExhaustedError
from .logging_utils import get_logger


logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_CONFLICT_BUDGET = 5


@dataclass(frozen=True)
class LinearBackoff:
    """n 번째 재시도 전에 base * n 초를 기다린다."""

    base: float = 0.1

    def __call__(self, attempt: int) -> float:
        return self.base * attempt


def retry_on_conflict(
    fn: Callable[[], T],
    *,
    budget: int = DEFAULT_CONFLICT_BUDGET,
    backoff: Callable[[int], float] = LinearBackoff(),
    sleep: Callable[[float], Any] = time.sleep,
) -> T:
    """
    fn 이 ConflictError 를 던지면 backoff 후 재호출한다. 최대 budget 회 시도.
    그 외 예외는 즉시 전파한다.
    """
    if budget < 1:
        raise ValueError("budget 은 1 이상이어야 합니다.")

    for attempt in range(1, budget + 1):
        try:
            return fn()
        except ConflictError as e:
            if attempt == budget:
                raise ConflictExhaustedError(
                    f"동시 수정 충돌로 {budget}회 시도 후 업데이트에 실패했습니다: {e}",
                    attempts=attempt,
                ) from e
            delay = backoff(attempt)
            logger.info("업데이트 충돌 (시도 %d/%d), %.2f초 후 재시도", attempt, budget, delay)
            sleep(delay)

    raise AssertionError("unreachable")
