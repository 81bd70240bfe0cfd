"""API key model."""

import enum
from datetime import datetime
from typing import TYPE_CHECKING, Optional
from uuid import UUID, uuid4

from sqlalchemy import DateTime, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from paylater_service.core.actors import Actor, ActorRole
from paylater_service.db.session import Base
from paylater_service.db.types import JSONType, enum_column
from paylater_service.utils.date_utils import utcnow

if TYPE_CHECKING:
    from paylater_service.models.merchant import Merchant


class APIKeyStatus(str, enum.Enum):
    """API key status enumeration."""

    ACTIVE = "active"
    REVOKED = "revoked"


class APIKey(Base):
    """API key model for authentication and authorization.

    Merchant keys are bound to a merchant; admin keys act with system-wide
    authority and identify the administrator by the key id.
    """

    __tablename__ = "api_keys"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
    )
    key_prefix: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        index=True,
    )
    key_hash: Mapped[str] = mapped_column(
        String(256),
        nullable=False,
        unique=True,
    )
    role: Mapped[ActorRole] = mapped_column(
        enum_column(ActorRole, "actor_role"),
        nullable=False,
    )
    merchant_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("merchants.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    label: Mapped[Optional[str]] = mapped_column(
        String(128),
        nullable=True,
    )
    scopes: Mapped[list[str]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
    )
    status: Mapped[APIKeyStatus] = mapped_column(
        enum_column(APIKeyStatus, "api_key_status"),
        nullable=False,
        default=APIKeyStatus.ACTIVE,
    )
    last_used_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    # Relationships
    merchant: Mapped[Optional["Merchant"]] = relationship(
        "Merchant",
        back_populates="api_keys",
    )

    def __repr__(self) -> str:
        return f"<APIKey(id={self.id}, role={self.role}, status={self.status})>"

    def has_scope(self, required_scope: str) -> bool:
        """Check if the API key has the required scope.

        Supports wildcard scopes like 'admin:*' which matches any admin scope.
        """
        if not self.scopes:
            return False

        for scope in self.scopes:
            if scope == required_scope or scope == "*":
                return True
            if scope.endswith(":*"):
                prefix = scope[:-1]
                if required_scope.startswith(prefix):
                    return True

        return False

    def to_actor(self) -> Actor:
        """Resolve the principal this key authenticates."""
        if self.role is ActorRole.MERCHANT:
            return Actor.merchant(self.merchant_id)
        return Actor.admin(self.id)
