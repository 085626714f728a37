"""
Time source for everything that waits.

Components never call time.sleep() or threading.Timer directly; they take a
Clock so tests can swap in a manual one and step through timings exactly.
"""
import threading
import time
from typing import Callable, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Clock:
    """Wall-clock implementation backed by monotonic time and daemon timers."""

    def now(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float, cancel: threading.Event) -> bool:
        """
        Wait up to `seconds`. Returns True if the full delay elapsed, False if
        `cancel` was set first.
        """
        return not cancel.wait(max(0.0, seconds))

    def call_later(self, seconds: float, fn: Callable[[], None]) -> TimerHandle:
        t = threading.Timer(max(0.0, seconds), fn)
        t.daemon = True
        t.start()
        return t
