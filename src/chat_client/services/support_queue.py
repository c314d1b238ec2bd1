from __future__ import annotations

import logging
from dataclasses import replace
from types import MappingProxyType
from typing import Any, Mapping

from chat_client.application.dto.events import (
    ClaimIntentPayload,
    ClaimOutcomeEvent,
    DeclinePayload,
    EventName,
    SupportRequestEvent,
)
from chat_client.application.exceptions import (
    ForbiddenError,
    FrameDecodeError,
    NotAuthenticatedError,
    TransportClosedError,
)
from chat_client.application.observable import ObservableValue
from chat_client.application.policies.permissions import assert_admin
from chat_client.domain.entities.claim import ClaimState, SupportRequest
from chat_client.domain.value_objects.ids import ConversationId, UserId
from chat_client.infrastructure.bus.dispatcher import EventDispatcher
from chat_client.infrastructure.ws.codec import parse_payload
from chat_client.infrastructure.ws.manager import ConnectionManager
from chat_client.services.conversation_store import ConversationStore

logger = logging.getLogger(__name__)

DEFAULT_GREETING = "Hello! I will help you with your question."

SupportQueue = Mapping[ConversationId, SupportRequest]


def support_conversation_id(user_id: int) -> ConversationId:
    return ConversationId(f"support-{user_id}")


class SupportQueueCoordinator:
    """Claim/decline workflow for unassigned support conversations.

    The server decides every race. Locally a claim intent moves an
    unclaimed request to ``Claimed(self)`` right away; the outcome event
    then confirms it or rewrites it to the actual winner.
    """

    def __init__(
        self,
        connection: ConnectionManager,
        dispatcher: EventDispatcher,
        conversations: ConversationStore,
    ) -> None:
        self._connection = connection
        self._conversations = conversations

        self.requests: ObservableValue[SupportQueue] = ObservableValue(MappingProxyType({}))

        self._unsubscribe = [
            dispatcher.on(EventName.SUPPORT_NEW, self._on_support_new),
            dispatcher.on(EventName.CLAIM_ACCEPTED, self._on_claim_accepted),
            dispatcher.on(EventName.CLAIM_REJECTED, self._on_claim_outcome),
            dispatcher.on(EventName.SUPPORT_CLAIMED, self._on_claim_outcome),
            dispatcher.on(EventName.SUPPORT_RELEASED, self._on_released),
        ]

    def get(self, conversation_id: str) -> SupportRequest | None:
        return self.requests.value.get(ConversationId(conversation_id))

    def claim_state(self, conversation_id: str) -> ClaimState:
        request = self.get(conversation_id)
        return request.claim if request else ClaimState()

    @property
    def unclaimed(self) -> list[SupportRequest]:
        return [r for r in self.requests.value.values() if not r.claim.is_claimed]

    def find_by_requester(self, user_id: int) -> SupportRequest | None:
        for request in self.requests.value.values():
            if request.requester_id == user_id:
                return request
        return None

    async def claim(
        self,
        user_id: int,
        initial_message: str = DEFAULT_GREETING,
        conversation_id: str | None = None,
    ) -> ClaimState:
        me = assert_admin(self._connection.principal)

        if conversation_id is None:
            queued = self.find_by_requester(user_id)
            cid = queued.conversation_id if queued else support_conversation_id(user_id)
        else:
            cid = ConversationId(conversation_id)

        request = self.get(cid) or SupportRequest(conversation_id=cid, requester_id=UserId(user_id))
        if not request.claim.is_claimed:
            self._put(replace(request, claim=ClaimState.claimed(me.user_id)))

        try:
            await self._connection.send(
                EventName.SUPPORT_CLAIM,
                ClaimIntentPayload(user_id=user_id, initial_message=initial_message, conversation_id=cid),
            )
        except (NotAuthenticatedError, TransportClosedError):
            self._put(request)
            raise
        logger.info("Claim intent for %s sent", cid)
        return self.claim_state(cid)

    async def decline(self, conversation_id: str) -> None:
        me = assert_admin(self._connection.principal)
        cid = ConversationId(conversation_id)
        request = self.get(cid)
        if request is None or request.claim.claimed_by != me.user_id:
            raise ForbiddenError("Only the current claimant can decline this conversation")

        await self._connection.send(EventName.SUPPORT_DECLINE, DeclinePayload(conversation_id=cid))
        self._put(replace(request, claim=ClaimState()))
        logger.info("Released claim on %s", cid)

    def close(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()

    # -- inbound -----------------------------------------------------------

    def _on_support_new(self, data: dict[str, Any]) -> None:
        try:
            event = parse_payload(SupportRequestEvent, data)
        except FrameDecodeError as exc:
            logger.warning("Ignoring support:new: %s", exc.detail)
            return
        cid = ConversationId(event.conversation_id)
        existing = self.get(cid)
        if existing is not None:
            return
        self._put(SupportRequest(
            conversation_id=cid,
            requester_id=UserId(event.user_id),
            initial_content=event.content,
        ))
        self._conversations.add_participant(cid, event.user_id)

    def _on_claim_accepted(self, data: dict[str, Any]) -> None:
        """Our own claim won; ``claimedBy`` may be omitted."""
        self._apply_claim(data, default_winner=self._connection.user_id)

    def _on_claim_outcome(self, data: dict[str, Any]) -> None:
        self._apply_claim(data, default_winner=None)

    def _apply_claim(self, data: dict[str, Any], default_winner: UserId | None) -> None:
        try:
            event = parse_payload(ClaimOutcomeEvent, data)
        except FrameDecodeError as exc:
            logger.warning("Ignoring claim outcome: %s", exc.detail)
            return
        request = self._resolve(event)
        if request is None:
            logger.warning("Claim outcome for unknown conversation %s", event.conversation_id)
            return
        cid = request.conversation_id

        winner = UserId(event.claimed_by) if event.claimed_by is not None else default_winner
        if winner is None:
            logger.warning("Claim outcome for %s carries no claimant", cid)
            return

        if request.claim.claimed_by is not None and request.claim.claimed_by != winner:
            logger.info("Claim on %s went to %s, rolling back", cid, winner)
        self._put(replace(request, claim=ClaimState.claimed(winner)))
        self._conversations.add_participant(cid, winner)

    def _on_released(self, data: dict[str, Any]) -> None:
        try:
            event = parse_payload(ClaimOutcomeEvent, data)
        except FrameDecodeError as exc:
            logger.warning("Ignoring support:released: %s", exc.detail)
            return
        request = self._resolve(event)
        if request is not None:
            self._put(replace(request, claim=ClaimState()))

    def _resolve(self, event: ClaimOutcomeEvent) -> SupportRequest | None:
        if event.conversation_id is not None:
            request = self.get(event.conversation_id)
            if request is not None or event.user_id is None:
                return request
            return SupportRequest(
                conversation_id=ConversationId(event.conversation_id),
                requester_id=UserId(event.user_id),
            )
        if event.user_id is None:
            return None
        return self.find_by_requester(event.user_id) or SupportRequest(
            conversation_id=support_conversation_id(event.user_id),
            requester_id=UserId(event.user_id),
        )

    def _put(self, request: SupportRequest) -> None:
        updated = dict(self.requests.value)
        updated[request.conversation_id] = request
        self.requests.set(MappingProxyType(updated))
