"""Wire payloads exchanged with the messaging server."""
from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from chat_client.domain.value_objects.enums import (
    BroadcastTarget,
    MessageType,
    PresenceStatus,
    Role,
)


class EventName(StrEnum):
    # outbound
    AUTH = "auth"
    MESSAGE_SEND = "message:send"
    TYPING_START = "typing:start"
    TYPING_STOP = "typing:stop"
    SUPPORT_CLAIM = "support:claim"
    SUPPORT_DECLINE = "support:decline"
    BROADCAST_SEND = "broadcast:send"

    # both directions
    MESSAGE_READ = "message:read"

    # inbound
    AUTH_OK = "auth:ok"
    AUTH_REJECTED = "auth:rejected"
    MESSAGE_NEW = "message:new"
    USER_ONLINE = "user:online"
    USER_OFFLINE = "user:offline"
    USER_STATUS = "user:status"
    TYPING = "typing"
    CLAIM_ACCEPTED = "claim:accepted"
    CLAIM_REJECTED = "claim:rejected"
    SUPPORT_NEW = "support:new"
    SUPPORT_CLAIMED = "support:claimed"
    SUPPORT_RELEASED = "support:released"
    NOTIFICATION = "notification"
    PING = "ping"
    PONG = "pong"


# Older servers send chatId.
_CONVERSATION = AliasChoices("conversationId", "chatId")


class WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- outbound -------------------------------------------------------------


class AuthPayload(WireModel):
    token: str


class SendMessagePayload(WireModel):
    recipient_id: int | None
    content: str
    conversation_id: str | None = None
    client_msg_id: str


class ReadReceiptPayload(WireModel):
    conversation_id: str


class TypingPayload(WireModel):
    conversation_id: str
    recipient_id: int | None = None


class ClaimIntentPayload(WireModel):
    user_id: int
    initial_message: str
    conversation_id: str | None = None


class DeclinePayload(WireModel):
    conversation_id: str


class BroadcastPayload(WireModel):
    target: BroadcastTarget
    title: str
    message: str


# --- inbound --------------------------------------------------------------


class AuthOkEvent(WireModel):
    user_id: int
    role: Role = Role.USER

    @field_validator("role", mode="before")
    @classmethod
    def _upper_role(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


class AuthRejectedEvent(WireModel):
    error: str | None = None


class MessageEvent(WireModel):
    id: int
    conversation_id: str = Field(validation_alias=_CONVERSATION)
    sender_id: int | None = None
    content: str
    created_at: datetime
    recipient_id: int | None = None
    is_read: bool = Field(default=False, validation_alias=AliasChoices("isRead", "read"))
    client_msg_id: str | None = None
    type: MessageType = MessageType.DIRECT
    sender_name: str | None = None


class ReadEvent(WireModel):
    conversation_id: str = Field(validation_alias=_CONVERSATION)
    user_id: int | None = None


class PresenceEvent(WireModel):
    user_id: int
    status: PresenceStatus | None = None


class TypingEvent(WireModel):
    conversation_id: str = Field(validation_alias=_CONVERSATION)
    user_id: int
    is_typing: bool


class ClaimOutcomeEvent(WireModel):
    conversation_id: str | None = Field(default=None, validation_alias=_CONVERSATION)
    claimed_by: int | None = None
    user_id: int | None = None


class SupportRequestEvent(WireModel):
    conversation_id: str = Field(validation_alias=_CONVERSATION)
    user_id: int
    content: str = ""


class NotificationEvent(WireModel):
    type: str
    title: str
    message: str
    from_: str | None = Field(default=None, alias="from")
    data: dict[str, Any] | None = None
