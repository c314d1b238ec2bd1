"""Entrypoint: python -m chat_client"""
from __future__ import annotations

import asyncio
import logging

from chat_client.app import create_client
from chat_client.application.dto.events import EventName, NotificationEvent
from chat_client.application.exceptions import AppError
from chat_client.config import settings
from chat_client.infrastructure.auth.jwt_store import JwtCredentialStore
from chat_client.infrastructure.log_context import configure_logging
from chat_client.infrastructure.ws.manager import ConnectionStatus

logger = logging.getLogger("chat_client")


async def run() -> None:
    client = create_client(JwtCredentialStore(lambda: settings.ACCESS_TOKEN))

    def _on_status(status: ConnectionStatus) -> None:
        logger.info("Connection %s%s", status.state, f" ({status.error.detail})" if status.error else "")

    def _on_notification(n: NotificationEvent) -> None:
        logger.info("Notification [%s] %s: %s", n.type, n.title, n.message)

    def _on_message(data: dict) -> None:
        logger.info("Message in %s from %s: %s", data.get("conversationId"), data.get("senderId"), data.get("content"))

    client.connection.subscribe(_on_status)
    client.on_notification(_on_notification)
    client.dispatcher.on(EventName.MESSAGE_NEW, _on_message)
    client.presence.presence.subscribe(lambda p: logger.info("Online: %s", sorted(client.presence.online_users)))

    try:
        async with client:
            await asyncio.Event().wait()
    except AppError as exc:
        logger.error("%s: %s", type(exc).__name__, exc.detail)


def main() -> None:
    configure_logging(settings.LOG_LEVEL)
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
