"""
Client for the backend's REST notification endpoints, plus mount-time seeding
of the local store from the server's history.

Endpoints (relative to api_url, bearer-authenticated):

  GET    /notifications                list
  PUT    /notifications/<id>/read      mark one read
  PUT    /notifications/read-all       mark all read
  DELETE /notifications/<id>           delete one
  GET    /notifications/unread-count   {"count": n}
"""
import logging
from typing import Callable

import requests

from flowbell.errors import OperationError
from flowbell.models import NotificationRecord
from flowbell.retry import RetryWithBackoff

log = logging.getLogger("flowbell.api")

_TIMEOUT = 5   # seconds per REST call


class NotificationAPI:

    def __init__(self, api_url: str, token_provider: Callable[[], str | None],
                 session: requests.Session | None = None):
        self.api_url = api_url.rstrip("/")
        self._token_provider = token_provider
        self._session = session or requests.Session()

    def _request(self, method: str, path: str) -> requests.Response:
        token = self._token_provider()
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        url = f"{self.api_url}{path}"
        try:
            resp = self._session.request(method, url, headers=headers, timeout=_TIMEOUT)
        except requests.RequestException as exc:
            raise OperationError(f"{method} {path} failed: {exc}") from exc
        if resp.status_code >= 400:
            raise OperationError(f"{method} {path} returned HTTP {resp.status_code}",
                                 status=resp.status_code)
        return resp

    def _json(self, resp: requests.Response, path: str):
        try:
            return resp.json()
        except ValueError as exc:
            raise OperationError(f"{path} returned invalid JSON: {exc}") from exc

    def list_notifications(self) -> list[NotificationRecord]:
        data = self._json(self._request("GET", "/notifications"), "/notifications")
        if not isinstance(data, list):
            raise OperationError("/notifications did not return a list")
        records = []
        for item in data:
            try:
                records.append(NotificationRecord.from_dict(item))
            except (KeyError, TypeError, ValueError) as exc:
                log.warning("Skipping unreadable server notification: %s", exc)
        return records

    def mark_read(self, notification_id: str):
        self._request("PUT", f"/notifications/{notification_id}/read")

    def mark_all_read(self):
        self._request("PUT", "/notifications/read-all")

    def delete(self, notification_id: str):
        self._request("DELETE", f"/notifications/{notification_id}")

    def unread_count(self) -> int:
        data = self._json(self._request("GET", "/notifications/unread-count"),
                          "/notifications/unread-count")
        try:
            return int(data["count"])
        except (KeyError, TypeError, ValueError) as exc:
            raise OperationError(f"unexpected unread-count payload: {data!r}") from exc


def seed_store(store, api: NotificationAPI, retry: RetryWithBackoff) -> int:
    """
    Replay the server's notification history into the local store.

    History is fetched through `retry` (OperationError propagates once it is
    exhausted) and replayed oldest first so the newest lands at the front.
    Records whose server id is already in the store are skipped, so
    mounting twice does not duplicate entries. Returns how many were added.
    """
    def _on_retry(attempt: int, exc: Exception):
        log.info("Fetching notification history failed (%s), retry %d/%d",
                 exc, attempt, retry.max_retries)

    history = retry.run(api.list_notifications, on_retry=_on_retry)
    added = 0
    for record in sorted(history, key=lambda n: n.timestamp):
        if store.has(record.id):
            continue
        store.add_notification(record)
        added += 1
    log.info("Seeded %d of %d server notification(s)", added, len(history))
    return added
