"""
Local notification store: the single source of truth for the UI.

One instance is created per client context and shared by every consumer
(dashboard, popups, websocket pushers). The full list is persisted under a
single storage key after every mutation and read back once at construction,
so state survives a restart of the agent.

Every mutation runs read-modify-persist-notify under one re-entrant lock, so
mutations never interleave and subscribers see changes in the order they
were made. Subscribers are called synchronously on the mutating thread with
a fresh list; records themselves are immutable.
"""
import json
import logging
import threading
from dataclasses import replace
from typing import Callable

from flowbell.broadcast import Broadcaster, Subscription
from flowbell.errors import PersistenceError
from flowbell.models import NotificationRecord, new_notification_id, utcnow
from flowbell.storage import NOTIFICATIONS_KEY, KeyValueStorage

log = logging.getLogger("flowbell.store")

Snapshot = list[NotificationRecord]


class LocalNotificationStore:

    def __init__(self, storage: KeyValueStorage, key: str = NOTIFICATIONS_KEY,
                 max_records: int = 0):
        self._storage = storage
        self._key = key
        self.max_records = max_records     # 0 = unbounded
        self._lock = threading.RLock()
        self._records: list[NotificationRecord] = self._load()
        self._subscribers: Broadcaster[Snapshot] = Broadcaster("store")
        self.last_persist_error: str | None = None

    # ── Reads ─────────────────────────────────────────────────

    def subscribe(self, callback: Callable[[Snapshot], None]) -> Subscription:
        """
        Register callback and call it once right away with the current
        snapshot. Returns a handle; call it to unsubscribe.
        """
        with self._lock:
            handle = self._subscribers.subscribe(callback)
            try:
                callback(list(self._records))
            except Exception as exc:
                log.warning("store listener %r raised: %s", callback, exc)
        return handle

    def get_notifications(self) -> Snapshot:
        with self._lock:
            return list(self._records)

    def get_unread_count(self) -> int:
        with self._lock:
            return sum(1 for n in self._records if not n.read)

    def get(self, notification_id: str) -> NotificationRecord | None:
        with self._lock:
            for n in self._records:
                if n.id == notification_id:
                    return n
        return None

    def has(self, notification_id: str) -> bool:
        return self.get(notification_id) is not None

    # ── Mutations ─────────────────────────────────────────────

    def add_notification(self, partial: dict | NotificationRecord) -> NotificationRecord:
        """
        Prepend a notification. `partial` may omit id and timestamp; both are
        assigned here. Returns the stored record.
        """
        if isinstance(partial, NotificationRecord):
            record = partial
        else:
            data = dict(partial)
            if not data.get("id"):
                data["id"] = new_notification_id()
            if not data.get("timestamp"):
                data["timestamp"] = utcnow()
            record = NotificationRecord.from_dict(data)

        with self._lock:
            self._records.insert(0, record)
            if self.max_records and len(self._records) > self.max_records:
                dropped = len(self._records) - self.max_records
                del self._records[self.max_records:]
                log.debug("Trimmed %d oldest notification(s)", dropped)
            self._commit()
        log.debug("Added notification %s (%s)", record.id, record.type)
        return record

    def mark_as_read(self, notification_id: str) -> bool:
        with self._lock:
            found = False
            for i, n in enumerate(self._records):
                if n.id == notification_id:
                    if not n.read:
                        self._records[i] = replace(n, read=True)
                    found = True
                    break
            self._commit()
        return found

    def mark_all_as_read(self) -> int:
        with self._lock:
            flipped = 0
            for i, n in enumerate(self._records):
                if not n.read:
                    self._records[i] = replace(n, read=True)
                    flipped += 1
            self._commit()
        return flipped

    def delete_notification(self, notification_id: str) -> bool:
        with self._lock:
            before = len(self._records)
            self._records = [n for n in self._records if n.id != notification_id]
            self._commit()
            return len(self._records) < before

    def clear_all(self):
        with self._lock:
            self._records = []
            self._commit()

    # ── Persistence ───────────────────────────────────────────

    def _load(self) -> list[NotificationRecord]:
        try:
            raw = self._storage.get(self._key)
        except PersistenceError as exc:
            log.warning("Could not load notifications: %s", exc)
            return []
        if not raw:
            return []
        try:
            items = json.loads(raw)
        except json.JSONDecodeError as exc:
            log.warning("Stored notifications are not valid JSON, starting empty: %s", exc)
            return []
        if not isinstance(items, list):
            log.warning("Stored notifications are not a list, starting empty")
            return []

        records = []
        for item in items:
            try:
                records.append(NotificationRecord.from_dict(item))
            except (KeyError, TypeError, ValueError) as exc:
                log.warning("Skipping unreadable stored notification: %s", exc)
        log.info("Loaded %d notification(s) from local storage", len(records))
        return records

    def _commit(self):
        """Persist then notify. Caller holds the lock."""
        payload = json.dumps([n.to_dict() for n in self._records])
        try:
            self._storage.set(self._key, payload)
            self.last_persist_error = None
        except PersistenceError as exc:
            # In-memory state stays authoritative; the persisted copy lags.
            self.last_persist_error = str(exc)
            log.warning("Could not persist notifications: %s", exc)
        self._subscribers.publish(list(self._records))
