"""
Client context: the one object that owns every notification component.

Built once at startup by agent.py and handed to the Flask app (under
app.extensions["flowbell"]); tests build their own with in-memory storage
and fake sessions. Nothing here is constructed at import time.
"""
import logging

import requests
from flask import current_app

from flowbell.api import NotificationAPI, seed_store
from flowbell.clock import Clock
from flowbell.errors import OperationError, PersistenceError
from flowbell.models import ClientSettings
from flowbell.popups import PopupScheduler
from flowbell.retry import RetryPolicy, RetryWithBackoff
from flowbell.storage import TOKEN_KEY, KeyValueStorage, make_storage
from flowbell.store import LocalNotificationStore
from flowbell.stream import PushStreamClient

log = logging.getLogger("flowbell.context")

EXTENSION_KEY = "flowbell"


class ClientContext:

    def __init__(self, settings: ClientSettings, storage: KeyValueStorage | None = None,
                 session: requests.Session | None = None, clock: Clock | None = None):
        self.settings = settings
        self.storage = storage if storage is not None else make_storage(settings)
        self.clock = clock or Clock()
        self.session = session or requests.Session()

        self.store = LocalNotificationStore(self.storage, max_records=settings.max_records)
        self.popups = PopupScheduler(
            store=self.store, clock=self.clock,
            interval=settings.popup_interval, duration=settings.popup_duration,
        )
        self.api = NotificationAPI(settings.api_url, self.token, session=self.session)
        self.retry = RetryWithBackoff(RetryPolicy.from_settings(settings), clock=self.clock)
        self.stream = PushStreamClient(
            settings.api_url, self.token, self.store, popups=self.popups,
            reconnect_delay=settings.reconnect_delay, session=self.session, clock=self.clock,
        )
        self.sync_error: str | None = None
        self.mounted = False

    def token(self) -> str | None:
        """Session credential: explicit setting first, then the stored token."""
        if self.settings.token:
            return self.settings.token
        try:
            return self.storage.get(TOKEN_KEY)
        except PersistenceError as exc:
            log.warning("Could not read session token: %s", exc)
            return None

    def mount(self):
        """Start popups, seed the store from the server, then open the push stream."""
        self.popups.start()
        try:
            seed_store(self.store, self.api, self.retry)
            self.sync_error = None
        except OperationError as exc:
            self.sync_error = str(exc)
            log.error("Could not load notification history: %s", exc)
        self.stream.start()
        self.mounted = True

    def teardown(self):
        self.retry.cancel()
        self.stream.stop()
        self.popups.stop()
        self.mounted = False
        log.info("Notification client torn down")

    def status(self) -> dict:
        return {
            "stream": self.stream.state.value,
            "connectAttempts": self.stream.connect_attempts,
            "unread": self.store.get_unread_count(),
            "queuedPopups": self.popups.queued(),
            "persistError": self.store.last_persist_error,
            "syncError": self.sync_error,
            "retrying": self.retry.is_retrying,
            "retryCount": self.retry.retry_count,
        }


def get_context() -> ClientContext:
    return current_app.extensions[EXTENSION_KEY]
