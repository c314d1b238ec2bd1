from __future__ import annotations

import asyncio
import bisect
import logging
import uuid
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable

from chat_client.application.dto.events import (
    EventName,
    MessageEvent,
    ReadEvent,
    ReadReceiptPayload,
    SendMessagePayload,
)
from chat_client.application.exceptions import (
    FrameDecodeError,
    NotAuthenticatedError,
    TransportClosedError,
    ValidationError,
)
from chat_client.application.observable import ObservableValue
from chat_client.application.ports.clock import Clock, SystemClock
from chat_client.config import Settings, settings as default_settings
from chat_client.domain.entities.conversation import Conversation, ConversationLog
from chat_client.domain.entities.message import Message
from chat_client.domain.value_objects.enums import MessageStatus, MessageType
from chat_client.domain.value_objects.ids import (
    ClientMsgId,
    ConversationId,
    MessageId,
    UserId,
)
from chat_client.infrastructure.bus.dispatcher import EventDispatcher
from chat_client.infrastructure.ws.codec import parse_payload
from chat_client.infrastructure.ws.manager import ConnectionManager

logger = logging.getLogger(__name__)

STALE_CONVERSATIONS = "conversations"
STALE_UNREAD = "unread"

InvalidationListener = Callable[[frozenset[str]], None]


def _as_utc(ts: datetime) -> datetime:
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)


def message_from_event(event: MessageEvent) -> Message:
    return Message(
        id=MessageId(event.id),
        conversation_id=ConversationId(event.conversation_id),
        sender_id=UserId(event.sender_id) if event.sender_id is not None else None,
        recipient_id=UserId(event.recipient_id) if event.recipient_id is not None else None,
        content=event.content,
        created_at=_as_utc(event.created_at),
        is_read=event.is_read,
        client_msg_id=ClientMsgId(event.client_msg_id) if event.client_msg_id else None,
        type=event.type,
        sender_name=event.sender_name,
        status=MessageStatus.SENT,
    )


class ConversationStore:
    """Ordered message log per conversation, with optimistic sends.

    A sent message shows up at once as a pending entry. Its confirmation
    (``message:new``) replaces it: by the echoed ``clientMsgId`` when the
    server returns it, otherwise by sender, content and a bounded time
    window. Every inbound event results in one snapshot update for the
    affected conversation.
    """

    def __init__(
        self,
        connection: ConnectionManager,
        dispatcher: EventDispatcher,
        *,
        settings: Settings = default_settings,
        clock: Clock | None = None,
    ) -> None:
        self._connection = connection
        self._settings = settings
        self._clock = clock or SystemClock()

        self._logs: dict[ConversationId, ConversationLog] = {}
        self._views: dict[ConversationId, ObservableValue[Conversation | None]] = {}
        self._timers: dict[ClientMsgId, asyncio.TimerHandle] = {}
        self._stale: set[str] = set()
        self._invalidation_listeners: list[InvalidationListener] = []

        self._unsubscribe = [
            dispatcher.on(EventName.MESSAGE_NEW, self._on_message_new),
            dispatcher.on(EventName.MESSAGE_READ, self._on_message_read),
        ]

    # -- reads -------------------------------------------------------------

    def get(self, conversation_id: str) -> Conversation | None:
        log = self._logs.get(ConversationId(conversation_id))
        return log.snapshot() if log else None

    @property
    def conversation_ids(self) -> list[ConversationId]:
        return list(self._logs)

    def watch(
        self, conversation_id: str, listener: Callable[[Conversation | None], None],
    ) -> Callable[[], None]:
        return self._view(ConversationId(conversation_id)).subscribe(listener)

    @property
    def stale(self) -> frozenset[str]:
        return frozenset(self._stale)

    def mark_fresh(self, key: str) -> None:
        self._stale.discard(key)

    def on_invalidate(self, listener: InvalidationListener) -> Callable[[], None]:
        self._invalidation_listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._invalidation_listeners:
                self._invalidation_listeners.remove(listener)

        return _unsubscribe

    # -- commands ----------------------------------------------------------

    async def send_message(
        self, conversation_id: str, recipient_id: int | None, content: str,
    ) -> Message:
        if not content or not content.strip():
            raise ValidationError("Message content must not be empty")

        cid = ConversationId(conversation_id)
        token = ClientMsgId(uuid.uuid4().hex)
        pending = Message(
            conversation_id=cid,
            sender_id=self._connection.user_id,
            recipient_id=UserId(recipient_id) if recipient_id is not None else None,
            content=content,
            created_at=self._clock.now(),
            client_msg_id=token,
            type=MessageType.SUPPORT if recipient_id is None else MessageType.DIRECT,
            status=MessageStatus.PENDING,
        )
        log = self._log(cid)
        self._add_participants(log, pending)
        bisect.insort_right(log.messages, pending, key=lambda m: m.created_at)
        self._publish(log)

        await self._transmit(pending, token)
        return pending

    async def retry(self, conversation_id: str, client_msg_id: str) -> Message:
        """Resend a failed entry; it becomes pending again."""
        log = self._logs.get(ConversationId(conversation_id))
        idx = self._index_of_token(log, ClientMsgId(client_msg_id)) if log else None
        if log is None or idx is None:
            raise ValidationError(f"No message {client_msg_id} in {conversation_id}")

        entry = replace(log.messages[idx], status=MessageStatus.PENDING)
        log.messages[idx] = entry
        self._publish(log)

        await self._transmit(entry, ClientMsgId(client_msg_id))
        return entry

    def discard(self, conversation_id: str, client_msg_id: str) -> None:
        log = self._logs.get(ConversationId(conversation_id))
        if log is None:
            return
        idx = self._index_of_token(log, ClientMsgId(client_msg_id))
        if idx is None:
            return
        self._cancel_timer(ClientMsgId(client_msg_id))
        del log.messages[idx]
        self._publish(log)

    async def mark_as_read(self, conversation_id: str) -> None:
        cid = ConversationId(conversation_id)
        log = self._log(cid)
        log.messages = [m if m.is_read else replace(m, is_read=True) for m in log.messages]
        log.unread_count = 0
        self._publish(log)

        await self._connection.send(EventName.MESSAGE_READ, ReadReceiptPayload(conversation_id=cid))

    def add_participant(self, conversation_id: str, user_id: int) -> None:
        log = self._log(ConversationId(conversation_id))
        if UserId(user_id) in log.participant_ids:
            return
        log.participant_ids.add(UserId(user_id))
        self._publish(log)

    def load_history(self, conversation_id: str, messages: Iterable[Message]) -> None:
        """Merge messages fetched from the authoritative source."""
        log = self._log(ConversationId(conversation_id))
        known = {m.id for m in log.messages if m.id is not None}
        for message in messages:
            if message.id is None or message.id in known:
                continue
            known.add(message.id)
            self._add_participants(log, message)
            bisect.insort_right(log.messages, message, key=lambda m: m.created_at)
        self._publish(log)

    def close(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    # -- inbound -----------------------------------------------------------

    def _on_message_new(self, data: dict[str, Any]) -> None:
        try:
            confirmed = message_from_event(parse_payload(MessageEvent, data))
        except FrameDecodeError as exc:
            logger.warning("Ignoring message:new: %s", exc.detail)
            return
        if confirmed.sender_id is None:
            # echoes of our own sends may omit senderId
            confirmed = replace(confirmed, sender_id=self._connection.user_id)

        log = self._log(confirmed.conversation_id)
        if any(m.id == confirmed.id for m in log.messages):
            logger.debug("Duplicate message %s ignored", confirmed.id)
            return

        idx = self._find_pending(log, confirmed)
        if idx is not None:
            pending = log.messages.pop(idx)
            if pending.client_msg_id is not None:
                self._cancel_timer(pending.client_msg_id)
                if confirmed.client_msg_id is None:
                    confirmed = replace(confirmed, client_msg_id=pending.client_msg_id)
        elif confirmed.sender_id != self._connection.user_id and not confirmed.is_read:
            log.unread_count += 1

        self._add_participants(log, confirmed)
        bisect.insort_right(log.messages, confirmed, key=lambda m: m.created_at)
        self._publish(log)
        self._invalidate(STALE_CONVERSATIONS, STALE_UNREAD)

    def _on_message_read(self, data: dict[str, Any]) -> None:
        try:
            event = parse_payload(ReadEvent, data)
        except FrameDecodeError as exc:
            logger.warning("Ignoring message:read: %s", exc.detail)
            return

        log = self._logs.get(ConversationId(event.conversation_id))
        if log is not None:
            reader = event.user_id
            log.messages = [
                replace(m, is_read=True)
                if not m.is_read and (reader is None or m.sender_id != reader)
                else m
                for m in log.messages
            ]
            if reader is None or reader == self._connection.user_id:
                log.unread_count = 0
            self._publish(log)
        self._invalidate(STALE_CONVERSATIONS, STALE_UNREAD)

    # -- reconciliation ----------------------------------------------------

    def _find_pending(self, log: ConversationLog, confirmed: Message) -> int | None:
        if confirmed.client_msg_id is not None:
            return self._index_of_token(log, confirmed.client_msg_id)

        skew = timedelta(seconds=self._settings.PENDING_CLOCK_SKEW_SECONDS)
        window = timedelta(seconds=self._settings.PENDING_MATCH_WINDOW_SECONDS)
        for idx, m in enumerate(log.messages):
            if (
                m.is_pending
                and m.sender_id == confirmed.sender_id
                and m.content == confirmed.content
                and m.created_at - skew <= confirmed.created_at <= m.created_at + window
            ):
                return idx
        return None

    @staticmethod
    def _index_of_token(log: ConversationLog, token: ClientMsgId) -> int | None:
        for idx, m in enumerate(log.messages):
            if m.is_pending and m.client_msg_id == token:
                return idx
        return None

    # -- pending lifecycle -------------------------------------------------

    async def _transmit(self, pending: Message, token: ClientMsgId) -> None:
        self._arm_timer(pending.conversation_id, token)
        payload = SendMessagePayload(
            recipient_id=pending.recipient_id,
            content=pending.content,
            conversation_id=pending.conversation_id,
            client_msg_id=token,
        )
        try:
            await self._connection.send(EventName.MESSAGE_SEND, payload)
        except (NotAuthenticatedError, TransportClosedError):
            self._mark_failed(pending.conversation_id, token)
            raise

    def _arm_timer(self, cid: ConversationId, token: ClientMsgId) -> None:
        self._cancel_timer(token)
        loop = asyncio.get_running_loop()
        self._timers[token] = loop.call_later(
            self._settings.PENDING_TIMEOUT_SECONDS, self._on_pending_timeout, cid, token,
        )

    def _cancel_timer(self, token: ClientMsgId) -> None:
        handle = self._timers.pop(token, None)
        if handle is not None:
            handle.cancel()

    def _on_pending_timeout(self, cid: ConversationId, token: ClientMsgId) -> None:
        self._timers.pop(token, None)
        logger.warning("Message %s in %s not confirmed in time", token, cid)
        self._mark_failed(cid, token)

    def _mark_failed(self, cid: ConversationId, token: ClientMsgId) -> None:
        self._cancel_timer(token)
        log = self._logs.get(cid)
        if log is None:
            return
        idx = self._index_of_token(log, token)
        if idx is None or log.messages[idx].status == MessageStatus.FAILED:
            return
        log.messages[idx] = replace(log.messages[idx], status=MessageStatus.FAILED)
        self._publish(log)

    # -- helpers -----------------------------------------------------------

    def _log(self, cid: ConversationId) -> ConversationLog:
        log = self._logs.get(cid)
        if log is None:
            log = self._logs[cid] = ConversationLog(conversation_id=cid)
        return log

    def _view(self, cid: ConversationId) -> ObservableValue[Conversation | None]:
        view = self._views.get(cid)
        if view is None:
            log = self._logs.get(cid)
            view = self._views[cid] = ObservableValue(log.snapshot() if log else None)
        return view

    @staticmethod
    def _add_participants(log: ConversationLog, message: Message) -> None:
        if message.sender_id is not None:
            log.participant_ids.add(message.sender_id)
        if message.recipient_id is not None:
            log.participant_ids.add(message.recipient_id)

    def _publish(self, log: ConversationLog) -> None:
        view = self._views.get(log.conversation_id)
        if view is not None:
            view.set(log.snapshot())

    def _invalidate(self, *keys: str) -> None:
        self._stale.update(keys)
        changed = frozenset(keys)
        for listener in list(self._invalidation_listeners):
            try:
                listener(changed)
            except Exception:
                logger.exception("Invalidation listener failed")
