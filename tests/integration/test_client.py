from __future__ import annotations

import pytest

from chat_client.app import create_client
from chat_client.application.exceptions import NotAuthenticatedError
from chat_client.domain.value_objects.enums import ClaimStatus, ConnectionState, MessageStatus
from tests.conftest import FakeCredentialStore, FakeServer, message_event, wait_until


def _echo_messages(server: FakeServer):
    def on_frame(transport, frame):
        if frame.event == "message:send":
            transport.push("message:new", message_event(
                id=42,
                conversation_id=frame.data["conversationId"],
                sender_id=server.user_id,
                recipient_id=frame.data["recipientId"],
                content=frame.data["content"],
                client_msg_id=frame.data["clientMsgId"],
            ))
    return on_frame


@pytest.mark.asyncio
async def test_sent_message_is_confirmed_once(server, client):
    server.on_frame = _echo_messages(server)
    seen = []

    async with client:
        client.conversations.watch("c1", seen.append)
        await client.conversations.send_message("c1", 7, "Hi")
        await wait_until(lambda: not client.conversations.get("c1").pending)

    messages = client.conversations.get("c1").messages
    assert [(m.id, m.content, m.status) for m in messages] == [(42, "Hi", MessageStatus.SENT)]
    assert seen[0].messages[0].is_pending
    assert client.connection.state == ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_two_admins_race_for_one_claim(fast_settings):
    server_a = FakeServer(user_id=1, role="ADMIN")
    server_b = FakeServer(user_id=2, role="ADMIN")
    admin_a = create_client(FakeCredentialStore(), transport_factory=server_a.transport, settings=fast_settings)
    admin_b = create_client(FakeCredentialStore(), transport_factory=server_b.transport, settings=fast_settings)

    def referee(server: FakeServer, winner: int):
        def on_frame(transport, frame):
            if frame.event == "support:claim":
                outcome = "claim:accepted" if server.user_id == winner else "claim:rejected"
                transport.push(outcome, {"conversationId": frame.data["conversationId"], "claimedBy": winner})
        return on_frame

    server_a.on_frame = referee(server_a, winner=1)
    server_b.on_frame = referee(server_b, winner=1)

    async with admin_a, admin_b:
        for server in (server_a, server_b):
            server.current.push("support:new", {"conversationId": "s1", "userId": 9, "content": "Help"})
        await wait_until(lambda: admin_a.support.get("s1") is not None and admin_b.support.get("s1") is not None)

        await admin_a.support.claim(9, "On it", conversation_id="s1")
        await admin_b.support.claim(9, "Me too", conversation_id="s1")

        await wait_until(lambda: admin_b.support.claim_state("s1").claimed_by == 1)
        await wait_until(lambda: 1 in admin_a.conversations.get("s1").participant_ids)

        assert admin_a.support.claim_state("s1").claimed_by == 1
        state_b = admin_b.support.claim_state("s1")
        assert state_b.status == ClaimStatus.CLAIMED
        assert state_b.claimed_by == 1


@pytest.mark.asyncio
async def test_client_recovers_after_server_drop(server, client):
    async with client:
        server.current.push("user:online", {"userId": 5})
        await wait_until(lambda: client.presence.is_online(5))

        server.current.drop()
        await wait_until(lambda: len(server.transports) == 2 and client.connection.is_authenticated)

        assert not client.presence.is_online(5)
        server.current.push("message:new", message_event(id=1, sender_id=5))
        await wait_until(lambda: client.conversations.get("c1") is not None)

    assert client.conversations.get("c1").unread_count == 1


@pytest.mark.asyncio
async def test_notifications_reach_subscribers(server, client):
    received = []
    client.on_notification(received.append)

    async with client:
        server.current.push("notification", {
            "type": "broadcast",
            "title": "Maintenance",
            "message": "Back at 10",
            "from": "admin",
        })
        await wait_until(lambda: received)

    assert received[0].title == "Maintenance"
    assert received[0].from_ == "admin"


@pytest.mark.asyncio
async def test_typing_through_client(server, client):
    async with client:
        async with client.typing_debouncer("c1", 7) as typing:
            await typing.typing()
            await typing.typing()

    assert [f.event for f in server.frames() if f.event.startswith("typing")] == [
        "typing:start",
        "typing:stop",
    ]


@pytest.mark.asyncio
async def test_commands_fail_after_logout(client):
    async with client:
        pass

    with pytest.raises(NotAuthenticatedError):
        await client.conversations.mark_as_read("c1")
