from __future__ import annotations

import asyncio

import pytest

from chat_client.services.presence_tracker import PresenceTracker
from tests.conftest import wait_until


@pytest.fixture
def tracker(connection, dispatcher, fast_settings) -> PresenceTracker:
    return PresenceTracker(connection, dispatcher, settings=fast_settings)


def test_online_and_offline_events(dispatcher, tracker):
    dispatcher.dispatch("user:online", {"userId": 1})
    dispatcher.dispatch("user:online", {"userId": 2})
    dispatcher.dispatch("user:offline", {"userId": 1})

    assert tracker.online_users == {2}
    assert not tracker.is_online(1)


def test_combined_status_event(dispatcher, tracker):
    dispatcher.dispatch("user:status", {"userId": 3, "status": "online"})

    assert tracker.is_online(3)


def test_status_event_without_status_is_ignored(dispatcher, tracker):
    dispatcher.dispatch("user:status", {"userId": 3})

    assert tracker.presence.value == {}


def test_presence_snapshot_is_pushed_to_subscribers(dispatcher, tracker):
    snapshots = []
    tracker.presence.subscribe(snapshots.append)

    dispatcher.dispatch("user:online", {"userId": 1})

    assert len(snapshots) == 1
    assert dict(snapshots[0]) == {1: "online"}


@pytest.mark.asyncio
async def test_typing_start_and_stop(dispatcher, tracker):
    dispatcher.dispatch("typing", {"conversationId": "c1", "userId": 7, "isTyping": True})
    dispatcher.dispatch("typing", {"conversationId": "c1", "userId": 8, "isTyping": True})
    assert tracker.typing_in("c1") == {7, 8}

    dispatcher.dispatch("typing", {"conversationId": "c1", "userId": 7, "isTyping": False})
    assert tracker.typing_in("c1") == {8}
    assert tracker.typing_in("c2") == frozenset()


@pytest.mark.asyncio
async def test_stale_typing_entry_expires(dispatcher, tracker):
    dispatcher.dispatch("typing", {"conversationId": "c1", "userId": 7, "isTyping": True})

    await wait_until(lambda: not tracker.typing_in("c1"))

    assert "c1" not in tracker.typing.value


@pytest.mark.asyncio
async def test_refresh_rearms_expiry(dispatcher, tracker):
    payload = {"conversationId": "c1", "userId": 7, "isTyping": True}
    dispatcher.dispatch("typing", payload)
    await asyncio.sleep(0.06)
    dispatcher.dispatch("typing", payload)
    await asyncio.sleep(0.06)

    assert tracker.typing_in("c1") == {7}


@pytest.mark.asyncio
async def test_state_is_cleared_on_disconnect(connection, dispatcher, tracker):
    await connection.connect()
    dispatcher.dispatch("user:online", {"userId": 1})
    dispatcher.dispatch("typing", {"conversationId": "c1", "userId": 7, "isTyping": True})

    await connection.disconnect()

    assert tracker.presence.value == {}
    assert tracker.typing.value == {}


@pytest.mark.asyncio
async def test_state_is_rebuilt_after_reconnect(server, connection, dispatcher, tracker):
    await connection.connect()
    dispatcher.dispatch("user:online", {"userId": 1})

    server.current.drop()
    await wait_until(lambda: len(server.transports) == 2 and connection.is_authenticated)

    assert tracker.online_users == frozenset()
    server.current.push("user:online", {"userId": 2})
    await wait_until(lambda: tracker.online_users == {2})


@pytest.mark.asyncio
async def test_typing_event_with_legacy_chat_id(dispatcher, tracker):
    dispatcher.dispatch("typing", {"chatId": "c1", "userId": 7, "isTyping": True})

    assert tracker.typing_in("c1") == {7}
