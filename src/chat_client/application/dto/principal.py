from __future__ import annotations

from dataclasses import dataclass

from chat_client.domain.value_objects.enums import Role
from chat_client.domain.value_objects.ids import UserId


@dataclass(frozen=True, slots=True)
class Principal:
    """Identity confirmed by the server's auth acknowledgement."""

    user_id: UserId
    role: Role = Role.USER

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN
