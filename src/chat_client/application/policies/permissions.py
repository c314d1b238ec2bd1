from __future__ import annotations

from chat_client.application.dto.principal import Principal
from chat_client.application.exceptions import ForbiddenError, NotAuthenticatedError


def assert_admin(principal: Principal | None) -> Principal:
    if principal is None:
        raise NotAuthenticatedError("Not authenticated")
    if not principal.is_admin:
        raise ForbiddenError("Admin access required")
    return principal
