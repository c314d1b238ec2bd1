from __future__ import annotations

from typing import Callable, Protocol


class Transport(Protocol):
    """A single duplex text channel to the messaging server."""

    async def open(self, url: str) -> None: ...

    async def send(self, raw: str) -> None: ...

    async def receive(self) -> str | None:
        """Next inbound frame, or ``None`` once the channel is closed."""
        ...

    async def close(self) -> None: ...


TransportFactory = Callable[[], Transport]
