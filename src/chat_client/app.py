from __future__ import annotations

import logging
from types import TracebackType
from typing import Any, Callable

from chat_client.application.dto.events import EventName, NotificationEvent
from chat_client.application.exceptions import FrameDecodeError
from chat_client.application.ports.auth import CredentialStore
from chat_client.application.ports.clock import Clock
from chat_client.application.ports.transport import TransportFactory
from chat_client.config import Settings, settings as default_settings
from chat_client.domain.value_objects.enums import BroadcastTarget
from chat_client.infrastructure.bus.dispatcher import EventDispatcher
from chat_client.infrastructure.ws.codec import parse_payload
from chat_client.infrastructure.ws.manager import ConnectionManager
from chat_client.infrastructure.ws.transport import AiohttpTransport
from chat_client.services.broadcast_service import send_broadcast
from chat_client.services.conversation_store import ConversationStore
from chat_client.services.presence_tracker import PresenceTracker
from chat_client.services.support_queue import SupportQueueCoordinator
from chat_client.services.typing_debouncer import TypingDebouncer

logger = logging.getLogger(__name__)


class ChatClient:
    """The messaging client of one signed-in session.

    ``async with`` connects on entry and disconnects on exit, which makes
    the block the lifetime of the session (login to logout).
    """

    def __init__(
        self,
        connection: ConnectionManager,
        dispatcher: EventDispatcher,
        conversations: ConversationStore,
        presence: PresenceTracker,
        support: SupportQueueCoordinator,
        settings: Settings,
    ) -> None:
        self.connection = connection
        self.dispatcher = dispatcher
        self.conversations = conversations
        self.presence = presence
        self.support = support
        self._settings = settings

    async def __aenter__(self) -> ChatClient:
        await self.connection.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.logout()

    async def logout(self) -> None:
        await self.connection.disconnect()

    def typing_debouncer(self, conversation_id: str, recipient_id: int | None = None) -> TypingDebouncer:
        return TypingDebouncer(
            self.connection, conversation_id, recipient_id, settings=self._settings,
        )

    async def send_broadcast(self, target: BroadcastTarget | str, title: str, message: str) -> None:
        await send_broadcast(self.connection, target, title, message)

    def on_notification(self, handler: Callable[[NotificationEvent], Any]) -> Callable[[], None]:
        def _handle(data: dict[str, Any]) -> Any:
            try:
                notification = parse_payload(NotificationEvent, data)
            except FrameDecodeError as exc:
                logger.warning("Ignoring notification: %s", exc.detail)
                return None
            return handler(notification)

        return self.dispatcher.on(EventName.NOTIFICATION, _handle)


def create_client(
    credentials: CredentialStore,
    *,
    transport_factory: TransportFactory | None = None,
    settings: Settings = default_settings,
    clock: Clock | None = None,
) -> ChatClient:
    dispatcher = EventDispatcher()
    if transport_factory is None:
        def transport_factory() -> AiohttpTransport:
            return AiohttpTransport(heartbeat=settings.WS_HEARTBEAT_SECONDS)

    connection = ConnectionManager(
        settings.WS_URL,
        credentials,
        dispatcher.dispatch,
        transport_factory,
        settings=settings,
        clock=clock,
    )
    conversations = ConversationStore(connection, dispatcher, settings=settings, clock=clock)
    presence = PresenceTracker(connection, dispatcher, settings=settings)
    support = SupportQueueCoordinator(connection, dispatcher, conversations)
    return ChatClient(connection, dispatcher, conversations, presence, support, settings)
