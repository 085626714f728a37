"""
Server-push notification stream (Server-Sent Events over a long-lived GET).

The client opens GET <api_url>/notifications/stream?token=<credential> and
reads the response line by line. The token goes in the query string because
the SSE transport has no way to set an Authorization header.

Wire format (text/event-stream):

  event: notification
  data: {"id": 42, "title": "...", "message": "...", "type": "personal",
  data:  "timestamp": "2024-05-01T09:30:00.000Z", "senderName": "Ada"}
  <blank line>

Only "notification" events are acted on. `type` defaults to "info" and
`timestamp` to the local time of receipt; a payload that is not a JSON
object with id/title/message is logged and dropped without disturbing the
stream.

Connection lifecycle (one supervisor thread per client):

  DISCONNECTED -> CONNECTING -> CONNECTED --(error / EOF)--> DISCONNECTED
       ^                                                         |
       +------------------ reconnect_delay elapses --------------+

stop() is the only way into the terminal DISCONNECTED state: it sets the
stop event (which doubles as the reconnect timer's cancel handle), closes
the open response and joins the thread.
"""
import json
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Iterator

import requests

from flowbell.broadcast import Broadcaster
from flowbell.clock import Clock
from flowbell.errors import ParseError, TransportError
from flowbell.models import NotificationRecord, normalize_type, parse_timestamp, utcnow

log = logging.getLogger("flowbell.stream")

STREAM_PATH = "/notifications/stream"
NOTIFICATION_EVENT = "notification"

_CONNECT_TIMEOUT = 5.0    # seconds for the TCP/TLS handshake + response headers
_JOIN_TIMEOUT    = 5.0    # seconds stop() waits for the supervisor thread


class StreamState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass
class ServerSentEvent:
    event: str = "message"
    data: str = ""
    id: str | None = None


def iter_sse_events(lines: Iterable[str | bytes | None]) -> Iterator[ServerSentEvent]:
    """
    Assemble text/event-stream lines into events.

    Follows the EventSource parsing rules: ':' lines are comments, a blank
    line dispatches the buffered event, multiple data lines are joined with
    newlines, and an event with no data is discarded.
    """
    event_type = ""
    data: list[str] = []
    last_id: str | None = None
    for line in lines:
        if line is None:
            continue
        if isinstance(line, bytes):
            line = line.decode("utf-8", errors="replace")
        line = line.rstrip("\r")

        if line == "":
            if data:
                yield ServerSentEvent(event=event_type or "message",
                                      data="\n".join(data), id=last_id)
            event_type = ""
            data = []
            continue
        if line.startswith(":"):
            continue

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            event_type = value
        elif name == "data":
            data.append(value)
        elif name == "id" and "\0" not in value:
            last_id = value
        # "retry" is ignored: the reconnect delay is fixed client-side


def parse_notification(data: str) -> NotificationRecord:
    """Turn one notification event payload into an unread record. Raises ParseError."""
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as exc:
        raise ParseError(f"invalid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ParseError(f"expected a JSON object, got {type(payload).__name__}")
    for required in ("id", "title", "message"):
        if payload.get(required) is None:
            raise ParseError(f"missing field {required!r}")

    timestamp = utcnow()
    if payload.get("timestamp"):
        try:
            timestamp = parse_timestamp(payload["timestamp"])
        except ValueError:
            log.debug("Unparseable timestamp %r, using receipt time", payload["timestamp"])

    sender = payload.get("senderName")
    return NotificationRecord(
        id=str(payload["id"]),
        title=str(payload["title"]),
        message=str(payload["message"]),
        type=normalize_type(payload.get("type")),
        read=False,
        timestamp=timestamp,
        sender_name=str(sender) if sender else None,
    )


class PushStreamClient:
    """
    Keeps one live SSE connection open and feeds each notification event
    into the store and (when given) the popup scheduler.

    Thread-safety: _response is guarded by _lock; at most one response is
    ever open because the previous one is closed before the next connect.
    """

    def __init__(self, api_url: str, token_provider: Callable[[], str | None],
                 store, popups=None, reconnect_delay: float = 5.0,
                 session: requests.Session | None = None, clock: Clock | None = None,
                 read_timeout: float | None = None):
        self.url = api_url.rstrip("/") + STREAM_PATH
        self._token_provider = token_provider
        self._store = store
        self._popups = popups
        self.reconnect_delay = reconnect_delay
        self.read_timeout = read_timeout
        self._session = session or requests.Session()
        self._clock = clock or Clock()

        self._lock = threading.Lock()
        self._response: requests.Response | None = None
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()
        self.connected_event = threading.Event()
        self.state = StreamState.DISCONNECTED
        self.state_changes: Broadcaster[StreamState] = Broadcaster("stream-state")
        self.last_event_id: str | None = None
        self.connect_attempts = 0

    # ── Public API ────────────────────────────────────────────

    def start(self) -> bool:
        """
        Start the supervisor thread. Returns False (and logs a warning)
        without connecting when no session token is available.
        """
        if not self._token_provider():
            log.warning("No session token available; push stream not started")
            return False
        if self._thread is not None and self._thread.is_alive():
            return True
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, daemon=True, name="push-stream")
        self._thread.start()
        return True

    def stop(self):
        """Tear down: cancel any reconnect wait, close the connection, join."""
        self._stop.set()
        self._close_response()
        t = self._thread
        if t is not None and t is not threading.current_thread():
            t.join(_JOIN_TIMEOUT)
            if t.is_alive():
                log.warning("Push stream thread did not exit within %.0fs", _JOIN_TIMEOUT)
        self._thread = None
        self._set_state(StreamState.DISCONNECTED)

    def is_connected(self) -> bool:
        return self.connected_event.is_set()

    # ── Supervisor loop ───────────────────────────────────────

    def _run(self):
        while not self._stop.is_set():
            token = self._token_provider()
            if not token:
                log.warning("Session token gone; push stream stopped")
                break
            self._connect_and_read(token)
            if self._stop.is_set():
                break
            log.info("Push stream dropped, reconnecting in %.1fs", self.reconnect_delay)
            if not self._clock.sleep(self.reconnect_delay, self._stop):
                break
        self._set_state(StreamState.DISCONNECTED)

    def _connect_and_read(self, token: str):
        self._close_response()
        self._set_state(StreamState.CONNECTING)
        self.connect_attempts += 1
        headers = {"Accept": "text/event-stream", "Cache-Control": "no-cache"}
        if self.last_event_id:
            headers["Last-Event-ID"] = self.last_event_id
        resp = None
        try:
            resp = self._session.get(
                self.url, params={"token": token}, headers=headers,
                stream=True, timeout=(_CONNECT_TIMEOUT, self.read_timeout),
            )
            with self._lock:
                self._response = resp
            if self._stop.is_set():
                return
            if resp.status_code != 200:
                raise TransportError(f"stream rejected with HTTP {resp.status_code}")

            self._set_state(StreamState.CONNECTED)
            self.connected_event.set()
            log.info("Push stream connected to %s", self.url)

            # raw bytes: event streams are always UTF-8, whatever Content-Type says
            for event in iter_sse_events(resp.iter_lines()):
                if self._stop.is_set():
                    break
                if event.id is not None:
                    self.last_event_id = event.id
                self._dispatch(event)
            else:
                if not self._stop.is_set():
                    log.info("Push stream closed by server")
        except Exception as exc:
            if not self._stop.is_set():
                log.warning("Push stream error: %s", exc)
        finally:
            self.connected_event.clear()
            self._close_response(resp)
            self._set_state(StreamState.DISCONNECTED)

    def _dispatch(self, event: ServerSentEvent):
        if event.event != NOTIFICATION_EVENT:
            log.debug("Ignoring %r event", event.event)
            return
        try:
            record = parse_notification(event.data)
        except ParseError as exc:
            log.warning("Dropping malformed notification event: %s", exc)
            return
        stored = self._store.add_notification(record)
        if self._popups is not None:
            self._popups.enqueue(stored)

    # ── Helpers ───────────────────────────────────────────────

    def _close_response(self, resp: requests.Response | None = None):
        with self._lock:
            current = self._response
            if resp is None or resp is current:
                self._response = None
        target = current if resp is None else resp
        if target is None:
            return
        try:
            target.close()
        except Exception as exc:
            log.debug("Error closing stream response: %s", exc)

    def _set_state(self, new_state: StreamState):
        if self.state == new_state:
            return
        self.state = new_state
        log.debug("Push stream %s", new_state.value)
        self.state_changes.publish(new_state)
