from __future__ import annotations

from dataclasses import dataclass

from compound_access.models.enums import ADMIN_ROLES, Role


@dataclass(frozen=True)
class ActorContext:
    """Identity of the calling user as supplied by the auth provider."""

    user_id: str
    compound_id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    @property
    def is_super_admin(self) -> bool:
        return self.role == Role.SUPER_ADMIN.value
