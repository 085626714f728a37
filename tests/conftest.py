import threading
import time

import pytest
import requests

from flowbell.models import ClientSettings
from flowbell.storage import MemoryStorage


def wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


class FakeTimer:
    def __init__(self, when: float, fn):
        self.when = when
        self.fn = fn
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeClock:
    """
    Manual clock. Time only moves on advance(); timers due within the
    advanced span fire on the calling thread, in due order, and sleeping
    threads wake once their deadline has passed.
    """

    def __init__(self):
        self._now = 0.0
        self._cond = threading.Condition()
        self._timers: list[FakeTimer] = []
        self.sleepers = 0
        self.sleeps: list[float] = []

    def now(self) -> float:
        with self._cond:
            return self._now

    def sleep(self, seconds: float, cancel: threading.Event) -> bool:
        with self._cond:
            self.sleeps.append(seconds)
            deadline = self._now + seconds
            self.sleepers += 1
            try:
                while self._now < deadline and not cancel.is_set():
                    self._cond.wait(0.01)
            finally:
                self.sleepers -= 1
            return not cancel.is_set()

    def call_later(self, seconds: float, fn) -> FakeTimer:
        with self._cond:
            timer = FakeTimer(self._now + seconds, fn)
            self._timers.append(timer)
            return timer

    def advance(self, seconds: float):
        with self._cond:
            target = self._now + seconds
        while True:
            with self._cond:
                due = [t for t in self._timers if not t.cancelled and t.when <= target]
                if not due:
                    self._now = target
                    self._cond.notify_all()
                    return
                timer = min(due, key=lambda t: t.when)
                self._timers.remove(timer)
                self._now = max(self._now, timer.when)
                self._cond.notify_all()
            timer.fn()

    def pending_timers(self) -> int:
        with self._cond:
            return sum(1 for t in self._timers if not t.cancelled)


class InstantClock:
    """Records requested sleeps and returns immediately."""

    def __init__(self):
        self.sleeps: list[float] = []

    def now(self) -> float:
        return sum(self.sleeps)

    def sleep(self, seconds: float, cancel: threading.Event) -> bool:
        if cancel.is_set():
            return False
        self.sleeps.append(seconds)
        return True

    def call_later(self, seconds, fn):
        raise AssertionError("InstantClock does not run timers")


class FakeStreamResponse:
    """
    Stand-in for a streamed requests.Response. Yields `lines`, then raises
    `error` if given; with block=True it then waits until close() and
    raises a ConnectionError, like a socket torn down under a reader.
    """

    def __init__(self, lines=(), status_code: int = 200, error: Exception | None = None,
                 block: bool = False):
        self.lines = list(lines)
        self.status_code = status_code
        self.error = error
        self.block = block
        self.closed = False
        self.session = None
        self._closed_event = threading.Event()

    def iter_lines(self):
        for line in self.lines:
            if self.closed:
                raise requests.ConnectionError("connection closed")
            yield line
        if self.error is not None:
            raise self.error
        if self.block:
            self._closed_event.wait(5)
            raise requests.ConnectionError("connection closed")

    def close(self):
        if self.closed:
            return
        self.closed = True
        self._closed_event.set()
        if self.session is not None:
            self.session._on_close()


class FakeStreamSession:
    """Hands out scripted responses; once the script runs out it blocks idle."""

    def __init__(self, script=()):
        self.script = list(script)
        self.calls: list[dict] = []
        self.call_times: list[float] = []
        self.responses: list[FakeStreamResponse] = []
        self.open_now = 0
        self.max_open = 0
        self._lock = threading.Lock()

    def get(self, url, **kwargs):
        with self._lock:
            self.calls.append({"url": url, **kwargs})
            self.call_times.append(time.monotonic())
            item = self.script.pop(0) if self.script else FakeStreamResponse(block=True)
            if isinstance(item, Exception):
                raise item
            item.session = self
            self.responses.append(item)
            self.open_now += 1
            self.max_open = max(self.max_open, self.open_now)
            return item

    def _on_close(self):
        with self._lock:
            self.open_now -= 1


class FakeHTTPResponse:
    def __init__(self, status_code: int = 200, json_data=None):
        self.status_code = status_code
        self._json = json_data

    def json(self):
        if self._json is None:
            raise ValueError("no JSON body")
        return self._json


class FakeRestSession:
    def __init__(self, script=()):
        self.script = list(script)
        self.calls: list[tuple[str, str, dict]] = []

    def request(self, method, url, headers=None, timeout=None):
        self.calls.append((method, url, headers or {}))
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def sse(payload: str, event: str = "notification") -> list[str]:
    return [f"event: {event}", f"data: {payload}", ""]


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def settings():
    return ClientSettings(api_url="http://backend.test/api", token="tok",
                          storage_backend="memory", reconnect_delay=0.05)
