"""aiohttp-backed websocket transport."""
from __future__ import annotations

import logging

import aiohttp

from chat_client.application.exceptions import TransportClosedError

logger = logging.getLogger(__name__)


class AiohttpTransport:
    """Implements application.ports.transport.Transport."""

    def __init__(self, *, heartbeat: float | None = 30.0) -> None:
        self._heartbeat = heartbeat
        self._session: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None

    async def open(self, url: str) -> None:
        self._session = aiohttp.ClientSession()
        try:
            self._ws = await self._session.ws_connect(url, heartbeat=self._heartbeat)
        except (aiohttp.ClientError, OSError) as exc:
            await self._session.close()
            self._session = None
            raise TransportClosedError(f"Cannot open {url}: {exc}") from exc

    async def send(self, raw: str) -> None:
        if self._ws is None or self._ws.closed:
            raise TransportClosedError("Transport is not open")
        try:
            await self._ws.send_str(raw)
        except (aiohttp.ClientError, ConnectionError) as exc:
            raise TransportClosedError(str(exc)) from exc

    async def receive(self) -> str | None:
        if self._ws is None:
            return None
        while True:
            msg = await self._ws.receive()
            if msg.type == aiohttp.WSMsgType.TEXT:
                return msg.data
            if msg.type == aiohttp.WSMsgType.BINARY:
                return msg.data.decode("utf-8", errors="replace")
            if msg.type in (
                aiohttp.WSMsgType.CLOSE,
                aiohttp.WSMsgType.CLOSING,
                aiohttp.WSMsgType.CLOSED,
                aiohttp.WSMsgType.ERROR,
            ):
                logger.debug("Transport closed: %s", msg.type.name)
                return None

    async def close(self) -> None:
        ws, session = self._ws, self._session
        self._ws = None
        self._session = None
        if ws is not None and not ws.closed:
            await ws.close()
        if session is not None:
            await session.close()
