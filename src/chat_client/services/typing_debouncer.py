from __future__ import annotations

import asyncio
import logging
from types import TracebackType

from chat_client.application.dto.events import EventName, TypingPayload
from chat_client.application.exceptions import NotAuthenticatedError, TransportClosedError
from chat_client.config import Settings, settings as default_settings
from chat_client.domain.value_objects.enums import TypingPhase
from chat_client.infrastructure.ws.manager import ConnectionManager, ConnectionStatus

logger = logging.getLogger(__name__)


class TypingDebouncer:
    """Coalesces keystrokes into one ``typing:start`` / ``typing:stop`` pair.

    Use as an async context manager so ``typing:stop`` goes out on every
    exit path::

        async with TypingDebouncer(connection, "c1", recipient_id=7) as typing:
            await typing.typing()
    """

    def __init__(
        self,
        connection: ConnectionManager,
        conversation_id: str,
        recipient_id: int | None = None,
        *,
        delay: float | None = None,
        settings: Settings = default_settings,
    ) -> None:
        self._connection = connection
        self._payload = TypingPayload(conversation_id=conversation_id, recipient_id=recipient_id)
        self._delay = settings.TYPING_DEBOUNCE_SECONDS if delay is None else delay
        self._timer: asyncio.Task[None] | None = None
        self.phase = TypingPhase.IDLE
        self._unsubscribe = connection.subscribe(self._on_connection_status)

    async def typing(self) -> None:
        """Register a keystroke."""
        if self.phase == TypingPhase.IDLE:
            self.phase = TypingPhase.ANNOUNCING
            try:
                await self._connection.send(EventName.TYPING_START, self._payload)
            except (NotAuthenticatedError, TransportClosedError):
                self.phase = TypingPhase.IDLE
                raise
        self._restart_timer()

    async def stop(self) -> None:
        """Send ``typing:stop`` now, whatever the current phase."""
        self._cancel_timer()
        self.phase = TypingPhase.IDLE
        await self._send_stop()

    async def close(self) -> None:
        try:
            await self.stop()
        finally:
            self._unsubscribe()

    async def __aenter__(self) -> TypingDebouncer:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    def _restart_timer(self) -> None:
        self._cancel_timer()
        self._timer = asyncio.create_task(self._expire(), name="typing-debounce")

    def _cancel_timer(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None and not timer.done():
            timer.cancel()

    async def _expire(self) -> None:
        await asyncio.sleep(self._delay)
        self._timer = None
        self.phase = TypingPhase.IDLE
        await self._send_stop()

    async def _send_stop(self) -> None:
        try:
            await self._connection.send(EventName.TYPING_STOP, self._payload)
        except (NotAuthenticatedError, TransportClosedError) as exc:
            logger.debug("typing:stop not sent: %s", exc.detail)

    def _on_connection_status(self, status: ConnectionStatus) -> None:
        if not status.authenticated:
            self._cancel_timer()
            self.phase = TypingPhase.IDLE
