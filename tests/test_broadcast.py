from flowbell.broadcast import Broadcaster


def test_listeners_called_in_subscription_order():
    b = Broadcaster()
    seen = []
    b.subscribe(lambda v: seen.append(("first", v)))
    b.subscribe(lambda v: seen.append(("second", v)))
    b.publish(1)
    assert seen == [("first", 1), ("second", 1)]


def test_duplicate_registration_returns_same_handle():
    b = Broadcaster()
    seen = []

    def listener(v):
        seen.append(v)

    h1 = b.subscribe(listener)
    h2 = b.subscribe(listener)
    assert h1 is h2
    b.publish("x")
    assert seen == ["x"]


def test_unsubscribe_is_idempotent():
    b = Broadcaster()
    seen = []
    handle = b.subscribe(seen.append)
    handle()
    handle.unsubscribe()
    b.publish("x")
    assert seen == []
    assert len(b) == 0


def test_raising_listener_does_not_block_others(caplog):
    b = Broadcaster("test")
    seen = []

    def boom(v):
        raise RuntimeError("boom")

    b.subscribe(boom)
    b.subscribe(seen.append)
    b.publish(3)
    assert seen == [3]
    assert "boom" in caplog.text
