from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from chat_client.domain.value_objects.enums import MessageStatus, MessageType
from chat_client.domain.value_objects.ids import (
    ClientMsgId,
    ConversationId,
    MessageId,
    UserId,
)


@dataclass(frozen=True, slots=True)
class Message:
    """One entry of a conversation log.

    ``id`` stays ``None`` until the server confirms the message; such an
    entry is pending and is either replaced by its confirmation or ends up
    failed.
    """

    conversation_id: ConversationId
    sender_id: UserId | None
    content: str
    created_at: datetime
    id: MessageId | None = None
    recipient_id: UserId | None = None
    is_read: bool = False
    client_msg_id: ClientMsgId | None = None
    type: MessageType = MessageType.DIRECT
    sender_name: str | None = None
    status: MessageStatus = MessageStatus.SENT

    @property
    def is_pending(self) -> bool:
        return self.id is None
