"""Shared test fixtures."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest

from chat_client.app import ChatClient, create_client
from chat_client.application.dto.credential import Credential
from chat_client.application.exceptions import TransportClosedError
from chat_client.config import Settings
from chat_client.infrastructure.bus.dispatcher import EventDispatcher
from chat_client.infrastructure.ws.codec import decode_frame, encode_frame
from chat_client.infrastructure.ws.manager import ConnectionManager
from chat_client.infrastructure.ws.protocol import Frame


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "WS_URL": "ws://chat.test/ws/chat",
        "CONNECT_TIMEOUT": 1.0,
        "AUTH_TIMEOUT": 1.0,
        "RECONNECT_BASE_DELAY": 0.01,
        "RECONNECT_MAX_DELAY": 0.05,
        "RECONNECT_JITTER": 0.0,
        "RECONNECT_MAX_ATTEMPTS": None,
        "TYPING_DEBOUNCE_SECONDS": 0.05,
        "TYPING_EXPIRY_SECONDS": 0.1,
        "PENDING_TIMEOUT_SECONDS": 0.2,
    }
    values.update(overrides)
    return Settings(**values)


def message_event(
    *,
    id: int,
    conversation_id: str = "c1",
    sender_id: int = 42,
    content: str = "Hi",
    created_at: datetime | None = None,
    recipient_id: int | None = 7,
    client_msg_id: str | None = None,
    is_read: bool = False,
) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": id,
        "conversationId": conversation_id,
        "senderId": sender_id,
        "recipientId": recipient_id,
        "content": content,
        "createdAt": (created_at or datetime.now(timezone.utc)).isoformat(),
        "isRead": is_read,
    }
    if client_msg_id is not None:
        data["clientMsgId"] = client_msg_id
    return data


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@dataclass
class FakeCredentialStore:
    token: str | None = "token-abc"
    expires_at: datetime | None = None
    reads: int = 0

    def get_credential(self) -> Credential | None:
        self.reads += 1
        if not self.token:
            return None
        return Credential(token=self.token, expires_at=self.expires_at)

    def has_valid_credential(self) -> bool:
        if not self.token:
            return False
        return self.expires_at is None or self.expires_at > datetime.now(timezone.utc)

    def expire(self) -> None:
        self.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)


class FakeTransport:
    """In-memory transport; the paired FakeServer scripts the other end."""

    def __init__(self, server: FakeServer) -> None:
        self._server = server
        self._inbox: asyncio.Queue[str | None] = asyncio.Queue()
        self.sent: list[str] = []
        self.closed = False

    async def open(self, url: str) -> None:
        self._server.open_calls += 1
        if self._server.open_failures > 0:
            self._server.open_failures -= 1
            raise ConnectionRefusedError(f"refused: {url}")
        self._server.transports.append(self)

    async def send(self, raw: str) -> None:
        if self.closed:
            raise TransportClosedError("closed")
        self.sent.append(raw)
        frame = decode_frame(raw)
        if frame.event == "auth" and self._server.auto_ack:
            if self._server.accept:
                self.push("auth:ok", {"userId": self._server.user_id, "role": self._server.role})
            else:
                self.push("auth:rejected", {"error": "invalid token"})
        if self._server.on_frame is not None:
            self._server.on_frame(self, frame)

    async def receive(self) -> str | None:
        return await self._inbox.get()

    async def close(self) -> None:
        self.closed = True
        self._inbox.put_nowait(None)

    def push(self, event: str, data: dict[str, Any]) -> None:
        self._inbox.put_nowait(encode_frame(event, data))

    def push_raw(self, raw: str) -> None:
        self._inbox.put_nowait(raw)

    def drop(self) -> None:
        """Server-side closure, as seen by the client."""
        self.closed = True
        self._inbox.put_nowait(None)

    def frames(self, event: str | None = None) -> list[Frame]:
        decoded = [decode_frame(raw) for raw in self.sent]
        return [f for f in decoded if event is None or f.event == event]


@dataclass
class FakeServer:
    user_id: int = 42
    role: str = "USER"
    accept: bool = True
    auto_ack: bool = True
    open_failures: int = 0
    open_calls: int = 0
    transports: list[FakeTransport] = field(default_factory=list)
    on_frame: Callable[[FakeTransport, Frame], None] | None = None

    def transport(self) -> FakeTransport:
        return FakeTransport(self)

    @property
    def current(self) -> FakeTransport:
        return self.transports[-1]

    def frames(self, event: str | None = None) -> list[Frame]:
        return [f for t in self.transports for f in t.frames(event)]


@pytest.fixture
def fast_settings() -> Settings:
    return make_settings()


@pytest.fixture
def credentials() -> FakeCredentialStore:
    return FakeCredentialStore()


@pytest.fixture
def server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def admin_server() -> FakeServer:
    return FakeServer(user_id=1, role="ADMIN")


@pytest.fixture
def dispatcher() -> EventDispatcher:
    return EventDispatcher()


@pytest.fixture
def connection(server, credentials, dispatcher, fast_settings) -> ConnectionManager:
    return ConnectionManager(
        fast_settings.WS_URL,
        credentials,
        dispatcher.dispatch,
        server.transport,
        settings=fast_settings,
    )


@pytest.fixture
def client(server, credentials, fast_settings) -> ChatClient:
    return create_client(credentials, transport_factory=server.transport, settings=fast_settings)
