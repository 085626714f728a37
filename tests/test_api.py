import pytest
import requests

from flowbell.api import NotificationAPI, seed_store
from flowbell.errors import OperationError
from flowbell.retry import RetryPolicy, RetryWithBackoff
from flowbell.store import LocalNotificationStore

from conftest import FakeHTTPResponse, FakeRestSession, InstantClock

HISTORY = [
    {"id": 12, "title": "newer", "message": "m", "type": "personal", "read": False,
     "timestamp": "2024-05-02T10:00:00.000Z", "senderName": "Ada"},
    {"id": 11, "title": "older", "message": "m", "type": "info", "read": True,
     "timestamp": "2024-05-01T10:00:00.000Z"},
]


def _api(session, token="tok"):
    return NotificationAPI("http://backend.test/api/", lambda: token, session=session)


def _retry(max_retries=3):
    return RetryWithBackoff(RetryPolicy(max_retries=max_retries, base_delay=0.1), clock=InstantClock())


def test_list_sends_bearer_token():
    session = FakeRestSession([FakeHTTPResponse(200, HISTORY)])
    records = _api(session).list_notifications()
    method, url, headers = session.calls[0]
    assert (method, url) == ("GET", "http://backend.test/api/notifications")
    assert headers["Authorization"] == "Bearer tok"
    assert [r.id for r in records] == ["12", "11"]
    assert records[0].sender_name == "Ada"
    assert records[1].read is True


def test_endpoints():
    session = FakeRestSession([FakeHTTPResponse(200, {}) for _ in range(3)]
                              + [FakeHTTPResponse(200, {"count": 4})])
    api = _api(session)
    api.mark_read("12")
    api.mark_all_read()
    api.delete("12")
    assert api.unread_count() == 4
    assert [(m, u) for m, u, _ in session.calls] == [
        ("PUT", "http://backend.test/api/notifications/12/read"),
        ("PUT", "http://backend.test/api/notifications/read-all"),
        ("DELETE", "http://backend.test/api/notifications/12"),
        ("GET", "http://backend.test/api/notifications/unread-count"),
    ]


def test_http_error_raises_operation_error():
    session = FakeRestSession([FakeHTTPResponse(500)])
    with pytest.raises(OperationError) as info:
        _api(session).list_notifications()
    assert info.value.status == 500


def test_network_error_raises_operation_error():
    session = FakeRestSession([requests.ConnectionError("refused")])
    with pytest.raises(OperationError):
        _api(session).mark_all_read()


def test_bad_unread_payload():
    session = FakeRestSession([FakeHTTPResponse(200, {"total": 1})])
    with pytest.raises(OperationError):
        _api(session).unread_count()


def test_seed_replays_oldest_first(storage):
    store = LocalNotificationStore(storage)
    session = FakeRestSession([FakeHTTPResponse(200, HISTORY)])
    assert seed_store(store, _api(session), _retry()) == 2
    assert [n.title for n in store.get_notifications()] == ["newer", "older"]
    assert store.get_unread_count() == 1


def test_seed_twice_does_not_duplicate(storage):
    store = LocalNotificationStore(storage)
    session = FakeRestSession([FakeHTTPResponse(200, HISTORY), FakeHTTPResponse(200, HISTORY)])
    api = _api(session)
    seed_store(store, api, _retry())
    assert seed_store(store, api, _retry()) == 0
    assert len(store.get_notifications()) == 2


def test_seed_retries_transient_failures(storage):
    store = LocalNotificationStore(storage)
    session = FakeRestSession([
        requests.ConnectionError("refused"),
        FakeHTTPResponse(503),
        FakeHTTPResponse(200, HISTORY),
    ])
    retry = _retry()
    assert seed_store(store, _api(session), retry) == 2
    assert retry._clock.sleeps == pytest.approx([0.1, 0.2])


def test_seed_propagates_after_exhaustion(storage):
    store = LocalNotificationStore(storage)
    session = FakeRestSession([FakeHTTPResponse(500)] * 3)
    with pytest.raises(OperationError):
        seed_store(store, _api(session), _retry(max_retries=2))
    assert store.get_notifications() == []
