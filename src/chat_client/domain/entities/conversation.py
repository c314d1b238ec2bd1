from __future__ import annotations

from dataclasses import dataclass, field

from chat_client.domain.entities.message import Message
from chat_client.domain.value_objects.ids import ConversationId, UserId


@dataclass(frozen=True, slots=True)
class Conversation:
    """Immutable snapshot of one conversation log."""

    conversation_id: ConversationId
    participant_ids: frozenset[UserId] = frozenset()
    messages: tuple[Message, ...] = ()
    unread_count: int = 0

    @property
    def pending(self) -> tuple[Message, ...]:
        return tuple(m for m in self.messages if m.is_pending)


@dataclass(slots=True)
class ConversationLog:
    """Mutable working copy owned by the conversation store."""

    conversation_id: ConversationId
    participant_ids: set[UserId] = field(default_factory=set)
    messages: list[Message] = field(default_factory=list)
    unread_count: int = 0

    def snapshot(self) -> Conversation:
        return Conversation(
            conversation_id=self.conversation_id,
            participant_ids=frozenset(self.participant_ids),
            messages=tuple(self.messages),
            unread_count=self.unread_count,
        )
