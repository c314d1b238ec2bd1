"""WebSocket frame envelope."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class Frame(BaseModel):
    """One named event in either direction."""

    event: str  # message:send | message:new | auth | auth:ok | ...
    data: dict[str, Any] = {}
