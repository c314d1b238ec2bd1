from __future__ import annotations

from dataclasses import dataclass

from chat_client.domain.value_objects.enums import ClaimStatus
from chat_client.domain.value_objects.ids import ConversationId, UserId


@dataclass(frozen=True, slots=True)
class ClaimState:
    status: ClaimStatus = ClaimStatus.UNCLAIMED
    claimed_by: UserId | None = None

    @classmethod
    def claimed(cls, admin_id: UserId) -> ClaimState:
        return cls(status=ClaimStatus.CLAIMED, claimed_by=admin_id)

    @property
    def is_claimed(self) -> bool:
        return self.status == ClaimStatus.CLAIMED


@dataclass(frozen=True, slots=True)
class SupportRequest:
    """An entry of the support queue as seen by an admin client."""

    conversation_id: ConversationId
    requester_id: UserId
    initial_content: str = ""
    claim: ClaimState = ClaimState()
