"""Resolved identity of whoever invokes a core operation."""

import enum
from dataclasses import dataclass
from uuid import UUID


class ActorRole(str, enum.Enum):
    """Actor role enumeration."""

    MERCHANT = "merchant"
    ADMIN = "admin"


@dataclass(frozen=True)
class Actor:
    """A merchant or an administrator, already authenticated by the caller."""

    role: ActorRole
    id: UUID

    @classmethod
    def merchant(cls, merchant_id: UUID) -> "Actor":
        return cls(role=ActorRole.MERCHANT, id=merchant_id)

    @classmethod
    def admin(cls, admin_id: UUID) -> "Actor":
        return cls(role=ActorRole.ADMIN, id=admin_id)

    @property
    def is_admin(self) -> bool:
        return self.role is ActorRole.ADMIN

    @property
    def is_merchant(self) -> bool:
        return self.role is ActorRole.MERCHANT
