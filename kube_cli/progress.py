from __future__ import annotations

import sys
import threading
import time
from typing import Protocol


class Reporter(Protocol):
    """코어가 진행 상황을 알리는 인터페이스. 출력 방식은 구현체가 정한다."""

    def start(self, step: int, message: str) -> None: ...

    def succeed(self, step: int, message: str) -> None: ...

    def fail(self, step: int, message: str) -> None: ...


class NullReporter:
    """아무것도 출력하지 않는 Reporter (테스트/라이브러리 용)"""

    def start(self, step: int, message: str) -> None:
        pass

    def succeed(self, step: int, message: str) -> None:
        pass

    def fail(self, step: int, message: str) -> None:
        pass


_BRAILLE_FRAMES = ["⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏"]


def _is_tty(stream) -> bool:  # noqa: ANN001
    try:
        return bool(getattr(stream, "isatty") and stream.isatty())
    except Exception:  # noqa: BLE001
        return False


def _format_elapsed(seconds: float) -> str:
    if seconds < 60:
        return f"{seconds:0.1f}s"
    minutes = int(seconds // 60)
    sec = int(seconds % 60)
    return f"{minutes}m{sec:02d}s"


class _Spinner:
    """
    단일 라인 스피너 (프레임 + 메시지 + 경과시간).
    stderr 가 TTY 일 때만 렌더링한다.
    """

    def __init__(self, message: str, *, stream, interval: float = 0.1) -> None:  # noqa: ANN001
        self._message = message
        self._stream = stream
        self._interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._last_len = 0

    def start(self) -> None:
        if self._thread is not None:
            return
        started = time.monotonic()

        def _run() -> None:
            idx = 0
            while not self._stop.is_set():
                frame = _BRAILLE_FRAMES[idx % len(_BRAILLE_FRAMES)]
                text = f"{frame} {self._message}  {_format_elapsed(time.monotonic() - started)}"
                self._last_len = max(self._last_len, len(text))
                self._stream.write("\r" + text)
                self._stream.flush()
                idx += 1
                time.sleep(self._interval)

        self._thread = threading.Thread(target=_run, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=1.0)
        if self._last_len > 0:
            self._stream.write("\r" + (" " * self._last_len) + "\r")
            self._stream.flush()


class StepReporter:
    """
    'Step N: ...' 형식으로 단계별 진행을 출력하는 Reporter.

    진행 중에는 스피너를, 끝나면 ✓ / ✖ 표시와 함께 한 줄을 남긴다.
    """

    def __init__(self, *, stream=None, show_progress: bool = True) -> None:  # noqa: ANN001
        self._stream = stream if stream is not None else sys.stderr
        self._show_progress = show_progress and _is_tty(self._stream)
        self._spinner: _Spinner | None = None

    def start(self, step: int, message: str) -> None:
        self._stop_spinner()
        if self._show_progress:
            self._spinner = _Spinner(f"Step {step}: {message}", stream=self._stream)
            self._spinner.start()

    def succeed(self, step: int, message: str) -> None:
        self._finish("✓", step, message)

    def fail(self, step: int, message: str) -> None:
        self._finish("✖", step, message)

    def _finish(self, mark: str, step: int, message: str) -> None:
        self._stop_spinner()
        self._stream.write(f"{mark} Step {step}: {message}\n")
        self._stream.flush()

    def _stop_spinner(self) -> None:
        if self._spinner is not None:
            self._spinner.stop()
            self._spinner = None
