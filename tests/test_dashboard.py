from flowbell.dashboard import NotificationDashboard, select_notifications, style_for
from flowbell.store import LocalNotificationStore


def _seed(store, count=10):
    for i in range(count):
        store.add_notification({"title": f"n{i}", "message": "m"})


def test_shows_most_recent_slice(storage):
    store = LocalNotificationStore(storage)
    _seed(store)
    dash = NotificationDashboard(store, max_notifications=3)
    dash.attach()
    assert [n.title for n in dash.notifications] == ["n9", "n8", "n7"]
    assert dash.unread_count == 10


def test_unread_only_filter_and_true_unread_count(storage):
    store = LocalNotificationStore(storage)
    _seed(store)
    for title in ("n9", "n7"):
        store.mark_as_read(next(n.id for n in store.get_notifications() if n.title == title))
    dash = NotificationDashboard(store, max_notifications=3, show_unread_only=True)
    dash.attach()
    assert [n.title for n in dash.notifications] == ["n8", "n6", "n5"]
    assert all(not n.read for n in dash.notifications)
    assert dash.unread_count == 8


def test_follows_store_changes_until_detached(storage):
    store = LocalNotificationStore(storage)
    dash = NotificationDashboard(store, max_notifications=2)
    dash.attach()
    assert dash.notifications == []
    _seed(store, 3)
    assert [n.title for n in dash.notifications] == ["n2", "n1"]
    dash.mark_all_as_read()
    assert dash.unread_count == 0
    dash.detach()
    store.add_notification({"title": "late", "message": "m"})
    assert [n.title for n in dash.notifications] == ["n2", "n1"]


def test_delete_through_dashboard(storage):
    store = LocalNotificationStore(storage)
    _seed(store, 2)
    dash = NotificationDashboard(store)
    dash.attach()
    assert dash.delete(dash.notifications[0].id) is True
    assert [n.title for n in dash.notifications] == ["n0"]


def test_select_notifications_zero_means_no_cap(storage):
    store = LocalNotificationStore(storage)
    _seed(store, 4)
    assert len(select_notifications(store.get_notifications(), 0)) == 4


def test_to_dict_includes_styles(storage):
    store = LocalNotificationStore(storage)
    store.add_notification({"title": "t", "message": "m", "type": "error"})
    dash = NotificationDashboard(store)
    dash.attach()
    data = dash.to_dict()
    assert data["unreadCount"] == 1
    assert data["notifications"][0]["icon"] == "error"
    assert data["notifications"][0]["color"] == "error.main"


def test_style_for_unknown_type_uses_info():
    assert style_for("mystery") == style_for("info")


def test_toggle_expanded(storage):
    dash = NotificationDashboard(LocalNotificationStore(storage))
    assert dash.toggle_expanded() is True
    assert dash.toggle_expanded() is False
