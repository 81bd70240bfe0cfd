"""Merchant model."""

from datetime import datetime
from typing import TYPE_CHECKING, Optional
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from paylater_service.db.session import Base
from paylater_service.utils.date_utils import utcnow

if TYPE_CHECKING:
    from paylater_service.models.api_key import APIKey
    from paylater_service.models.payment_intent import PaymentIntent


class Merchant(Base):
    """Merchant that owns payment intents and receives notifications."""

    __tablename__ = "merchants"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
    )
    name: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        index=True,
    )
    email: Mapped[str] = mapped_column(
        String(320),
        nullable=False,
        unique=True,
    )
    webhook_url: Mapped[Optional[str]] = mapped_column(
        String(2048),
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    # Relationships
    api_keys: Mapped[list["APIKey"]] = relationship(
        "APIKey",
        back_populates="merchant",
    )
    payment_intents: Mapped[list["PaymentIntent"]] = relationship(
        "PaymentIntent",
        back_populates="merchant",
    )

    def __repr__(self) -> str:
        return f"<Merchant(id={self.id}, email={self.email}, active={self.is_active})>"
