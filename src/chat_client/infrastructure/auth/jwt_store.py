from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

import jwt

from chat_client.application.dto.credential import Credential
from chat_client.application.ports.clock import Clock, SystemClock


class JwtCredentialStore:
    """Read-only credential view over an externally refreshed access token.

    The signature is the server's business; only ``exp`` is read here.
    """

    def __init__(self, token_supplier: Callable[[], str | None], clock: Clock | None = None) -> None:
        self._token_supplier = token_supplier
        self._clock = clock or SystemClock()

    def get_credential(self) -> Credential | None:
        token = self._token_supplier()
        if not token:
            return None
        try:
            claims = jwt.decode(token, options={"verify_signature": False})
        except jwt.InvalidTokenError:
            return Credential(token=token)
        exp = claims.get("exp")
        expires_at = datetime.fromtimestamp(exp, tz=timezone.utc) if isinstance(exp, (int, float)) else None
        return Credential(token=token, expires_at=expires_at)

    def has_valid_credential(self) -> bool:
        credential = self.get_credential()
        return credential is not None and not credential.is_expired(self._clock.now())
