import itertools
import os
import time
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Literal

NotificationType = Literal["info", "success", "warning", "error", "personal", "general"]
NOTIFICATION_TYPES: tuple[str, ...] = ("info", "success", "warning", "error", "personal", "general")

_id_counter = itertools.count(1)


def new_notification_id() -> str:
    """
    Return a store-unique id: "<epoch-ms>-<process counter>-<random>".

    The counter keeps ids distinct when several records are created in the
    same millisecond; the random suffix keeps them distinct across processes.
    """
    return f"{int(time.time() * 1000)}-{next(_id_counter)}-{uuid.uuid4().hex[:9]}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 string (or pass a datetime through) as an aware datetime."""
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, str):
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        ts = datetime.fromisoformat(raw)
    else:
        raise ValueError(f"unsupported timestamp value: {value!r}")
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def normalize_type(value: Any) -> str:
    value = str(value or "info").lower()
    return value if value in NOTIFICATION_TYPES else "info"


@dataclass(frozen=True)
class NotificationRecord:
    """
    One in-app notification.

    Records are immutable: the store replaces a record when it flips `read`,
    so a snapshot handed to a subscriber can never be changed underneath it.
    """
    id: str
    title: str
    message: str
    type: NotificationType = "info"
    read: bool = False
    timestamp: datetime = field(default_factory=utcnow)
    sender_name: str | None = None

    @classmethod
    def from_dict(cls, d: dict) -> "NotificationRecord":
        sender = d.get("senderName")
        return cls(
            id=str(d["id"]),
            title=str(d.get("title", "")),
            message=str(d.get("message", "")),
            type=normalize_type(d.get("type")),
            read=bool(d.get("read", False)),
            timestamp=parse_timestamp(d["timestamp"]) if d.get("timestamp") else utcnow(),
            sender_name=str(sender) if sender else None,
        )

    def to_dict(self) -> dict:
        out: dict = {
            "id": self.id,
            "title": self.title,
            "message": self.message,
            "type": self.type,
            "read": self.read,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.sender_name:
            out["senderName"] = self.sender_name
        return out


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except ValueError:
        return default


@dataclass
class ClientSettings:
    """
    Runtime configuration for the notification client.

    Connection:
      api_url          — REST base URL; the push stream lives at <api_url>/notifications/stream
      token            — session credential; empty = read the "token" key from local storage
      reconnect_delay  — seconds between a stream failure and the next connect attempt

    Persistence:
      storage_backend  — "file" (state_file) or "configmap" (namespace, in-cluster)
      max_records      — keep at most this many notifications (0 = unbounded)

    Popups:
      popup_interval   — seconds between two popups surfacing from a burst
      popup_duration   — seconds a popup stays up before it dismisses itself
    """
    api_url: str = "http://localhost:5000/api"
    token: str = ""
    reconnect_delay: float = 5.0

    storage_backend: Literal["file", "configmap", "memory"] = "file"
    state_file: str = "flowbell-state.json"
    namespace: str = "flowbell"
    max_records: int = 0

    popup_interval: float = 1.0
    popup_duration: float = 8.0

    # Retry policy for REST calls
    max_retries: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 10.0
    retry_backoff_factor: float = 2.0

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "ClientSettings":
        defaults = cls()
        try:
            max_records = max(0, int(os.environ.get("FLOWBELL_MAX_RECORDS", "0")))
        except ValueError:
            max_records = 0
        return cls(
            api_url=os.environ.get("FLOWBELL_API_URL", defaults.api_url).rstrip("/"),
            token=os.environ.get("FLOWBELL_TOKEN", ""),
            reconnect_delay=_env_float("FLOWBELL_RECONNECT_DELAY", defaults.reconnect_delay),
            storage_backend=os.environ.get("FLOWBELL_STORAGE", defaults.storage_backend),
            state_file=os.environ.get("FLOWBELL_STATE_FILE", defaults.state_file),
            namespace=os.environ.get("FLOWBELL_NAMESPACE", defaults.namespace),
            max_records=max_records,
            popup_interval=_env_float("FLOWBELL_POPUP_INTERVAL", defaults.popup_interval),
            popup_duration=_env_float("FLOWBELL_POPUP_DURATION", defaults.popup_duration),
            log_level=os.environ.get("FLOWBELL_LOG_LEVEL", defaults.log_level).upper(),
        )

    def to_dict(self) -> dict:
        out = asdict(self)
        out["token"] = "***" if self.token else ""
        return out
