from __future__ import annotations

from chat_client.application.observable import ObservableValue


def test_listeners_receive_changes_in_order():
    value = ObservableValue(0)
    seen = []
    value.subscribe(lambda v: seen.append(("a", v)))
    value.subscribe(lambda v: seen.append(("b", v)))

    value.set(1)
    value.set(1)

    assert seen == [("a", 1), ("b", 1)]


def test_failing_listener_does_not_block_others():
    value = ObservableValue("x")
    seen = []

    def broken(_):
        raise RuntimeError("boom")

    value.subscribe(broken)
    value.subscribe(seen.append)

    value.set("y")

    assert seen == ["y"]
    assert value.value == "y"


def test_unsubscribe_and_replay():
    value = ObservableValue(5)
    seen = []
    unsubscribe = value.subscribe(seen.append, replay=True)

    unsubscribe()
    unsubscribe()
    value.set(6)

    assert seen == [5]
