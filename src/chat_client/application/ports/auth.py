from __future__ import annotations

from typing import Protocol

from chat_client.application.dto.credential import Credential


class CredentialStore(Protocol):
    """Read-only view of the externally owned auth store."""

    def get_credential(self) -> Credential | None: ...

    def has_valid_credential(self) -> bool: ...
