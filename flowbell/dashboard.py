"""Dashboard widget view model: a filtered, capped slice of the store."""
import logging
import threading

from flowbell.broadcast import Subscription
from flowbell.models import NotificationRecord

log = logging.getLogger("flowbell.dashboard")

# type -> (icon, colour); presentation only, nothing branches on type otherwise
TYPE_STYLES: dict[str, tuple[str, str]] = {
    "info":     ("info",          "info.main"),
    "success":  ("check_circle",  "success.main"),
    "warning":  ("warning",       "warning.main"),
    "error":    ("error",         "error.main"),
    "general":  ("notifications", "info.main"),
    "personal": ("person",        "primary.main"),
}


def style_for(notification_type: str) -> dict:
    icon, color = TYPE_STYLES.get(notification_type, TYPE_STYLES["info"])
    return {"icon": icon, "color": color}


def select_notifications(records: list[NotificationRecord], max_notifications: int,
                         unread_only: bool = False) -> list[NotificationRecord]:
    """Apply the unread filter, then keep the first `max_notifications` (store order is newest first)."""
    if unread_only:
        records = [n for n in records if not n.read]
    if max_notifications > 0:
        records = records[:max_notifications]
    return list(records)


class NotificationDashboard:
    """
    Subscribes to the store and keeps the slice a dashboard widget shows.

    unread_count is the true count over the whole store, not over the
    displayed slice.
    """

    def __init__(self, store, max_notifications: int = 5, show_unread_only: bool = False):
        self._store = store
        self.max_notifications = max_notifications
        self.show_unread_only = show_unread_only
        self.expanded = False
        self._lock = threading.Lock()
        self._notifications: list[NotificationRecord] = []
        self._unread_count = 0
        self._subscription: Subscription | None = None

    def attach(self):
        if self._subscription is None:
            self._subscription = self._store.subscribe(self._on_change)

    def detach(self):
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def _on_change(self, records: list[NotificationRecord]):
        displayed = select_notifications(records, self.max_notifications, self.show_unread_only)
        with self._lock:
            self._notifications = displayed
            self._unread_count = sum(1 for n in records if not n.read)

    @property
    def notifications(self) -> list[NotificationRecord]:
        with self._lock:
            return list(self._notifications)

    @property
    def unread_count(self) -> int:
        with self._lock:
            return self._unread_count

    def toggle_expanded(self) -> bool:
        self.expanded = not self.expanded
        return self.expanded

    def mark_as_read(self, notification_id: str) -> bool:
        return self._store.mark_as_read(notification_id)

    def mark_all_as_read(self) -> int:
        return self._store.mark_all_as_read()

    def delete(self, notification_id: str) -> bool:
        return self._store.delete_notification(notification_id)

    def to_dict(self) -> dict:
        items = []
        for n in self.notifications:
            item = n.to_dict()
            item.update(style_for(n.type))
            items.append(item)
        return {"notifications": items, "unreadCount": self.unread_count}
