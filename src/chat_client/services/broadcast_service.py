from __future__ import annotations

import logging

from chat_client.application.dto.events import BroadcastPayload, EventName
from chat_client.application.exceptions import ValidationError
from chat_client.application.policies.permissions import assert_admin
from chat_client.domain.value_objects.enums import BroadcastTarget
from chat_client.infrastructure.ws.manager import ConnectionManager

logger = logging.getLogger(__name__)


async def send_broadcast(
    connection: ConnectionManager,
    target: BroadcastTarget | str,
    title: str,
    message: str,
) -> None:
    assert_admin(connection.principal)
    if not title.strip() or not message.strip():
        raise ValidationError("Broadcast title and message must not be empty")
    try:
        target = BroadcastTarget(target)
    except ValueError as exc:
        raise ValidationError(f"Unknown broadcast target: {target}") from exc

    await connection.send(
        EventName.BROADCAST_SEND,
        BroadcastPayload(target=target, title=title, message=message),
    )
    logger.info("Broadcast sent to %s", target)
