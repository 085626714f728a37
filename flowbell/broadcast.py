"""
Ordered observer list with handle-based unsubscribe.

Listeners are called synchronously, in registration order, on the thread
that calls publish(). A listener that raises is logged and skipped; the
remaining listeners still receive the value.
"""
import logging
import threading
from typing import Callable, Generic, TypeVar

T = TypeVar("T")

log = logging.getLogger("flowbell.broadcast")


class Subscription:
    """
    Handle returned by Broadcaster.subscribe(). Calling it (or unsubscribe())
    removes the listener; repeated calls are no-ops.
    """

    def __init__(self, broadcaster: "Broadcaster", key: int):
        self._broadcaster = broadcaster
        self._key = key
        self.active = True

    def unsubscribe(self):
        if self.active:
            self.active = False
            self._broadcaster._remove(self._key)

    def __call__(self):
        self.unsubscribe()


class Broadcaster(Generic[T]):

    def __init__(self, name: str = "broadcast"):
        self.name = name
        self._lock = threading.Lock()
        self._listeners: dict[int, Callable[[T], None]] = {}
        self._handles: dict[int, Subscription] = {}
        self._next_key = 0

    def subscribe(self, callback: Callable[[T], None]) -> Subscription:
        """Register callback. Registering the same callback twice returns the first handle."""
        with self._lock:
            for key, existing in self._listeners.items():
                if existing == callback:
                    return self._handles[key]
            self._next_key += 1
            key = self._next_key
            handle = Subscription(self, key)
            self._listeners[key] = callback
            self._handles[key] = handle
            return handle

    def publish(self, value: T):
        with self._lock:
            listeners = list(self._listeners.values())
        for callback in listeners:
            try:
                callback(value)
            except Exception as exc:
                log.warning("%s listener %r raised: %s", self.name, callback, exc)

    def __len__(self) -> int:
        return len(self._listeners)

    def _remove(self, key: int):
        with self._lock:
            self._listeners.pop(key, None)
            self._handles.pop(key, None)
