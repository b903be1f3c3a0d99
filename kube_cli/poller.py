"""
poller
------

원격 장기 작업(Cloud Build, 롤백 등)의 상태를 backoff 를 두고 폴링하는 모듈.

호출 스레드에서 블로킹으로 sleep 하며, 대기 간격은 매번 두 배로 늘린다.
max_interval 이 None 이면 상한 없이 늘어난다.
"""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, List, Optional, Protocol, TypeVar

from .errors import UnrecognizedStatusError
from .logging_utils import get_logger


logger = get_logger(__name__)

S = TypeVar("S")


class CancellationSignal(Protocol):
    def is_set(self) -> bool: ...


class PollOutcome(enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class PollState:
    elapsed_attempts: int = 0
    current_interval: float = 1.0
    last_error: Optional[BaseException] = None


@dataclass
class PollResult(Generic[S]):
    outcome: PollOutcome
    status: Optional[S]
    attempts: int
    intervals: List[float] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.outcome is PollOutcome.SUCCEEDED


class RemoteOperationPoller:
    def __init__(
        self,
        initial_interval: float = 1.0,
        max_interval: Optional[float] = None,
        *,
        sleep: Callable[[float], Any] = time.sleep,
    ) -> None:
        if initial_interval <= 0:
            raise ValueError("initial_interval 은 0보다 커야 합니다.")
        if max_interval is not None and max_interval < initial_interval:
            raise ValueError("max_interval 은 initial_interval 이상이어야 합니다.")
        self.initial_interval = initial_interval
        self.max_interval = max_interval
        self._sleep = sleep

    def next_interval(self, current: float) -> float:
        nxt = current * 2
        if self.max_interval is not None and nxt > self.max_interval:
            nxt = self.max_interval
        return nxt

    def poll(
        self,
        query: Callable[[], S],
        is_success: Callable[[S], bool],
        is_failure: Callable[[S], bool],
        is_pending: Callable[[S], bool],
        cancel: Optional[CancellationSignal] = None,
    ) -> PollResult[S]:
        """
        terminal 상태가 나올 때까지 query 를 반복 호출한다.

        - query 가 예외를 던지면 그대로 전파 (이 레이어에서는 재시도하지 않음)
        - 어느 predicate 에도 해당하지 않는 상태는 UnrecognizedStatusError
        - cancel 은 시도 사이에만 확인하며, 진행 중인 query/sleep 을 끊지 않는다
        """
        state = PollState(current_interval=self.initial_interval)
        intervals: List[float] = []
        last_status: Optional[S] = None

        while True:
            if cancel is not None and cancel.is_set():
                logger.info("폴링이 취소되었습니다 (시도 %d회)", state.elapsed_attempts)
                return PollResult(PollOutcome.CANCELLED, last_status, state.elapsed_attempts, intervals)

            state.elapsed_attempts += 1
            try:
                status = query()
            except Exception as e:
                state.last_error = e
                raise
            last_status = status

            if is_success(status):
                return PollResult(PollOutcome.SUCCEEDED, status, state.elapsed_attempts, intervals)
            if is_failure(status):
                return PollResult(PollOutcome.FAILED, status, state.elapsed_attempts, intervals)
            if not is_pending(status):
                raise UnrecognizedStatusError(f"알 수 없는 원격 상태입니다: {status!r}")

            if cancel is not None and cancel.is_set():
                logger.info("폴링이 취소되었습니다 (시도 %d회)", state.elapsed_attempts)
                return PollResult(PollOutcome.CANCELLED, status, state.elapsed_attempts, intervals)

            logger.debug("상태 %r, %.1f초 후 재조회", status, state.current_interval)
            intervals.append(state.current_interval)
            self._sleep(state.current_interval)
            state.current_interval = self.next_interval(state.current_interval)
