from typing import Iterator, List

import pytest

from kube_cli.errors import NetworkError, UnrecognizedStatusError
from kube_cli.poller import PollOutcome, RemoteOperationPoller


class _Flag:
    def __init__(self) -> None:
        self.value = False

    def is_set(self) -> bool:
        return self.value


def _sequence(*statuses: str):
    it: Iterator[str] = iter(statuses)
    calls: List[str] = []

    def query() -> str:
        status = next(it)
        calls.append(status)
        return status

    return query, calls


def _poll(poller: RemoteOperationPoller, query, cancel=None):
    return poller.poll(
        query,
        is_success=lambda s: s == "SUCCESS",
        is_failure=lambda s: s in {"FAILURE", "TIMEOUT"},
        is_pending=lambda s: s in {"QUEUED", "WORKING"},
        cancel=cancel,
    )


def test_doubling_intervals_until_success() -> None:
    slept: List[float] = []
    poller = RemoteOperationPoller(1.0, sleep=slept.append)
    query, calls = _sequence("QUEUED", "WORKING", "SUCCESS")

    result = _poll(poller, query)

    assert result.outcome is PollOutcome.SUCCEEDED
    assert result.succeeded
    assert result.status == "SUCCESS"
    assert result.attempts == 3
    assert calls == ["QUEUED", "WORKING", "SUCCESS"]
    assert slept == [1.0, 2.0]
    assert result.intervals == [1.0, 2.0]


def test_interval_is_capped_by_max_interval() -> None:
    slept: List[float] = []
    poller = RemoteOperationPoller(1.0, 60.0, sleep=slept.append)
    query, _ = _sequence(*(["WORKING"] * 8 + ["SUCCESS"]))

    result = _poll(poller, query)

    assert result.succeeded
    assert slept == [1, 2, 4, 8, 16, 32, 60, 60]


def test_uncapped_interval_keeps_doubling() -> None:
    slept: List[float] = []
    poller = RemoteOperationPoller(1.0, None, sleep=slept.append)
    query, _ = _sequence(*(["WORKING"] * 8 + ["SUCCESS"]))

    _poll(poller, query)

    assert slept == [1, 2, 4, 8, 16, 32, 64, 128]


def test_failure_status_is_terminal() -> None:
    slept: List[float] = []
    poller = RemoteOperationPoller(1.0, sleep=slept.append)
    query, calls = _sequence("QUEUED", "FAILURE", "SUCCESS")

    result = _poll(poller, query)

    assert result.outcome is PollOutcome.FAILED
    assert result.status == "FAILURE"
    assert calls == ["QUEUED", "FAILURE"]
    assert slept == [1.0]


def test_immediate_success_does_not_sleep() -> None:
    slept: List[float] = []
    poller = RemoteOperationPoller(1.0, sleep=slept.append)
    query, _ = _sequence("SUCCESS")

    result = _poll(poller, query)

    assert result.attempts == 1
    assert slept == []


def test_unrecognized_status_raises() -> None:
    poller = RemoteOperationPoller(1.0, sleep=lambda _s: None)
    query, _ = _sequence("QUEUED", "STATUS_UNKNOWN")

    with pytest.raises(UnrecognizedStatusError):
        _poll(poller, query)


def test_query_error_propagates_without_retry() -> None:
    slept: List[float] = []
    poller = RemoteOperationPoller(1.0, sleep=slept.append)
    calls = {"n": 0}

    def query() -> str:
        calls["n"] += 1
        if calls["n"] == 2:
            raise NetworkError("connection reset")
        return "WORKING"

    with pytest.raises(NetworkError):
        _poll(poller, query)

    assert calls["n"] == 2
    assert slept == [1.0]


def test_cancel_between_attempts_stops_polling() -> None:
    flag = _Flag()
    slept: List[float] = []

    def sleep(seconds: float) -> None:
        slept.append(seconds)
        flag.value = True

    poller = RemoteOperationPoller(1.0, sleep=sleep)
    query, calls = _sequence("WORKING", "WORKING", "SUCCESS")

    result = _poll(poller, query, cancel=flag)

    assert result.outcome is PollOutcome.CANCELLED
    assert result.status == "WORKING"
    assert calls == ["WORKING"]
    assert slept == [1.0]


def test_cancel_before_first_attempt_skips_query() -> None:
    flag = _Flag()
    flag.value = True
    poller = RemoteOperationPoller(1.0, sleep=lambda _s: None)
    query, calls = _sequence("SUCCESS")

    result = _poll(poller, query, cancel=flag)

    assert result.outcome is PollOutcome.CANCELLED
    assert result.attempts == 0
    assert calls == []


@pytest.mark.parametrize("initial,maximum", [(0, None), (-1.0, None), (2.0, 1.0)])
def test_invalid_intervals_are_rejected(initial: float, maximum) -> None:
    with pytest.raises(ValueError):
        RemoteOperationPoller(initial, maximum)
