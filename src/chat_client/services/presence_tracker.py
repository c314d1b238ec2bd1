from __future__ import annotations

import asyncio
import logging
from types import MappingProxyType
from typing import Any, Mapping

from chat_client.application.dto.events import EventName, PresenceEvent, TypingEvent
from chat_client.application.exceptions import FrameDecodeError
from chat_client.application.observable import ObservableValue
from chat_client.config import Settings, settings as default_settings
from chat_client.domain.value_objects.enums import ConnectionState, PresenceStatus
from chat_client.domain.value_objects.ids import ConversationId, UserId
from chat_client.infrastructure.bus.dispatcher import EventDispatcher
from chat_client.infrastructure.ws.codec import parse_payload
from chat_client.infrastructure.ws.manager import ConnectionManager, ConnectionStatus

logger = logging.getLogger(__name__)

PresenceSet = Mapping[UserId, PresenceStatus]
TypingSet = Mapping[ConversationId, frozenset[UserId]]

_EMPTY_PRESENCE: PresenceSet = MappingProxyType({})
_EMPTY_TYPING: TypingSet = MappingProxyType({})


class PresenceTracker:
    """Online users and per-conversation typing users, as known right now.

    Both sets are rebuilt from scratch after a reconnect. A typing entry
    lapses on its own if neither a refresh nor a stop arrives within
    ``TYPING_EXPIRY_SECONDS``.
    """

    def __init__(
        self,
        connection: ConnectionManager,
        dispatcher: EventDispatcher,
        *,
        settings: Settings = default_settings,
    ) -> None:
        self._expiry = settings.TYPING_EXPIRY_SECONDS

        self.presence: ObservableValue[PresenceSet] = ObservableValue(_EMPTY_PRESENCE)
        self.typing: ObservableValue[TypingSet] = ObservableValue(_EMPTY_TYPING)
        self._timers: dict[tuple[ConversationId, UserId], asyncio.TimerHandle] = {}

        self._unsubscribe = [
            dispatcher.on(EventName.USER_ONLINE, self._on_online),
            dispatcher.on(EventName.USER_OFFLINE, self._on_offline),
            dispatcher.on(EventName.USER_STATUS, self._on_status),
            dispatcher.on(EventName.TYPING, self._on_typing),
            connection.subscribe(self._on_connection_status),
        ]

    def is_online(self, user_id: int) -> bool:
        return self.presence.value.get(UserId(user_id)) == PresenceStatus.ONLINE

    @property
    def online_users(self) -> frozenset[UserId]:
        return frozenset(u for u, s in self.presence.value.items() if s == PresenceStatus.ONLINE)

    def typing_in(self, conversation_id: str) -> frozenset[UserId]:
        return self.typing.value.get(ConversationId(conversation_id), frozenset())

    def clear(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        self.presence.set(_EMPTY_PRESENCE)
        self.typing.set(_EMPTY_TYPING)

    def close(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()
        self.clear()

    # -- presence ----------------------------------------------------------

    def _on_online(self, data: dict[str, Any]) -> None:
        self._apply_presence(data, PresenceStatus.ONLINE)

    def _on_offline(self, data: dict[str, Any]) -> None:
        self._apply_presence(data, PresenceStatus.OFFLINE)

    def _on_status(self, data: dict[str, Any]) -> None:
        self._apply_presence(data, None)

    def _apply_presence(self, data: dict[str, Any], status: PresenceStatus | None) -> None:
        try:
            event = parse_payload(PresenceEvent, data)
        except FrameDecodeError as exc:
            logger.warning("Ignoring presence event: %s", exc.detail)
            return
        status = status or event.status
        if status is None:
            logger.warning("Presence event for user %s has no status", event.user_id)
            return
        updated = dict(self.presence.value)
        updated[UserId(event.user_id)] = status
        self.presence.set(MappingProxyType(updated))

    # -- typing ------------------------------------------------------------

    def _on_typing(self, data: dict[str, Any]) -> None:
        try:
            event = parse_payload(TypingEvent, data)
        except FrameDecodeError as exc:
            logger.warning("Ignoring typing event: %s", exc.detail)
            return
        cid, uid = ConversationId(event.conversation_id), UserId(event.user_id)
        if event.is_typing:
            self._arm(cid, uid)
            self._set_typing(cid, uid, True)
        else:
            self._disarm(cid, uid)
            self._set_typing(cid, uid, False)

    def _arm(self, cid: ConversationId, uid: UserId) -> None:
        self._disarm(cid, uid)
        loop = asyncio.get_running_loop()
        self._timers[(cid, uid)] = loop.call_later(self._expiry, self._expire, cid, uid)

    def _disarm(self, cid: ConversationId, uid: UserId) -> None:
        handle = self._timers.pop((cid, uid), None)
        if handle is not None:
            handle.cancel()

    def _expire(self, cid: ConversationId, uid: UserId) -> None:
        self._timers.pop((cid, uid), None)
        logger.debug("Typing indicator for user %s in %s expired", uid, cid)
        self._set_typing(cid, uid, False)

    def _set_typing(self, cid: ConversationId, uid: UserId, typing: bool) -> None:
        current = self.typing.value.get(cid, frozenset())
        users = current | {uid} if typing else current - {uid}
        if users == current:
            return
        updated = dict(self.typing.value)
        if users:
            updated[cid] = users
        else:
            updated.pop(cid, None)
        self.typing.set(MappingProxyType(updated))

    # -- connection --------------------------------------------------------

    def _on_connection_status(self, status: ConnectionStatus) -> None:
        if status.state in (ConnectionState.DISCONNECTED, ConnectionState.RECONNECTING):
            self.clear()
