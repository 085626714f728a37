"""
Popup scheduler: surfaces new notifications as transient overlays.

Two independent clocks govern what the user sees:

  interval  — arrival cadence. A dedicated drain thread pops one record off
              a FIFO queue, shows it, then waits `interval` before looking
              at the queue again, so a burst trickles in one at a time.
  duration  — per-popup lifetime. Each visible popup owns a timer that
              dismisses it after `duration`. While the pointer hovers it
              the countdown is suspended; leaving starts a fresh full-length
              timer rather than resuming the old one.

Closing or marking a popup read removes only that popup; the queue and the
other visible popups are untouched.
"""
import logging
import threading
from collections import deque
from dataclasses import dataclass, field, replace

from flowbell.broadcast import Broadcaster
from flowbell.clock import Clock, TimerHandle
from flowbell.models import NotificationRecord

log = logging.getLogger("flowbell.popups")

DEFAULT_INTERVAL = 1.0   # seconds between popups in a burst
DEFAULT_DURATION = 8.0   # seconds a popup stays up
_JOIN_TIMEOUT = 5.0


@dataclass
class Popup:
    record: NotificationRecord
    shown_at: float
    hovered: bool = False
    generation: int = 0
    timer: TimerHandle | None = field(default=None, repr=False, compare=False)

    @property
    def id(self) -> str:
        return self.record.id

    def to_dict(self) -> dict:
        out = self.record.to_dict()
        out["hovered"] = self.hovered
        return out


class PopupScheduler:

    def __init__(self, store=None, clock: Clock | None = None,
                 interval: float = DEFAULT_INTERVAL, duration: float = DEFAULT_DURATION):
        self._store = store
        self._clock = clock or Clock()
        self.interval = interval
        self.duration = duration

        self._cond = threading.Condition()
        self._queue: deque[NotificationRecord] = deque()
        self._visible: dict[str, Popup] = {}
        self._draining = False
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self.changes: Broadcaster[list[Popup]] = Broadcaster("popups")

    # ── Lifecycle ─────────────────────────────────────────────

    def start(self):
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._drain_loop, daemon=True, name="popup-drain")
        self._thread.start()

    def stop(self):
        """Stop draining, cancel every dismiss timer and drop all pending popups."""
        self._stop.set()
        with self._cond:
            self._cond.notify_all()
        t = self._thread
        if t is not None and t is not threading.current_thread():
            t.join(_JOIN_TIMEOUT)
        self._thread = None
        with self._cond:
            for popup in self._visible.values():
                self._disarm(popup)
            had_visible = bool(self._visible)
            self._visible.clear()
            self._queue.clear()
            self._draining = False
            if had_visible:
                self._publish()

    # ── Queue ─────────────────────────────────────────────────

    def enqueue(self, record: NotificationRecord):
        with self._cond:
            self._queue.append(record)
            self._cond.notify_all()
        log.debug("Queued popup %s (%d waiting)", record.id, len(self._queue))

    @property
    def is_draining(self) -> bool:
        return self._draining

    def queued(self) -> int:
        with self._cond:
            return len(self._queue)

    def visible(self) -> list[Popup]:
        with self._cond:
            return [replace(p) for p in self._visible.values()]

    def _drain_loop(self):
        stop = self._stop
        while not stop.is_set():
            with self._cond:
                while not self._queue and not stop.is_set():
                    self._draining = False
                    self._cond.wait()
                if stop.is_set():
                    break
                self._draining = True
                record = self._queue.popleft()
            self._show(record)
            self._clock.sleep(self.interval, stop)
        with self._cond:
            self._draining = False

    # ── Visible set ───────────────────────────────────────────

    def set_hovered(self, notification_id: str, hovered: bool) -> bool:
        with self._cond:
            popup = self._visible.get(notification_id)
            if popup is None:
                return False
            if popup.hovered == hovered:
                return True
            popup.hovered = hovered
            if hovered:
                self._disarm(popup)
            else:
                self._arm(popup)
            self._publish()
        return True

    def close(self, notification_id: str) -> bool:
        with self._cond:
            popup = self._visible.pop(notification_id, None)
            if popup is None:
                return False
            self._disarm(popup)
            self._publish()
        log.debug("Closed popup %s", notification_id)
        return True

    def mark_as_read(self, notification_id: str) -> bool:
        if self._store is not None:
            self._store.mark_as_read(notification_id)
        return self.close(notification_id)

    def _show(self, record: NotificationRecord):
        with self._cond:
            if self._stop.is_set():
                return
            previous = self._visible.pop(record.id, None)
            if previous is not None:
                self._disarm(previous)
            popup = Popup(record=record, shown_at=self._clock.now())
            self._visible[record.id] = popup
            self._arm(popup)
            self._publish()
        log.debug("Showing popup %s", record.id)

    def _arm(self, popup: Popup):
        self._disarm(popup)
        gen = popup.generation
        popup.timer = self._clock.call_later(self.duration, lambda: self._expire(popup, gen))

    def _disarm(self, popup: Popup):
        popup.generation += 1
        if popup.timer is not None:
            popup.timer.cancel()
            popup.timer = None

    def _expire(self, popup: Popup, generation: int):
        with self._cond:
            if self._visible.get(popup.id) is not popup or popup.generation != generation:
                return
            popup.timer = None
            if popup.hovered:
                return
            del self._visible[popup.id]
            self._publish()
        log.debug("Popup %s dismissed after %.1fs", popup.id, self.duration)

    def _publish(self):
        """Caller holds the lock."""
        self.changes.publish([replace(p) for p in self._visible.values()])
