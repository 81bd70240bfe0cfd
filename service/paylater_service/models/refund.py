"""Refund model."""

import enum
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from paylater_service.db.session import Base
from paylater_service.db.types import enum_column
from paylater_service.models.payment_intent import Currency
from paylater_service.utils.date_utils import utcnow

if TYPE_CHECKING:
    from paylater_service.models.transaction import Transaction


class RefundStatus(str, enum.Enum):
    """Refund status enumeration."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Refund(Base):
    """Refund request against a successful transaction.

    Merchants request refunds; administrators approve or reject them. A
    resolved refund never changes again. Updates are version-checked.
    """

    __tablename__ = "refunds"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_refunds_amount_positive"),
    )

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
    )
    transaction_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("transactions.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    status: Mapped[RefundStatus] = mapped_column(
        enum_column(RefundStatus, "refund_status"),
        nullable=False,
        default=RefundStatus.PENDING,
        index=True,
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(19, 4),
        nullable=False,
    )
    currency: Mapped[Currency] = mapped_column(
        enum_column(Currency, "currency"),
        nullable=False,
    )
    reason: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
    )
    rejected_reason: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
    )
    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        index=True,
    )
    requested_by: Mapped[UUID] = mapped_column(
        Uuid,
        nullable=False,
    )
    approved_by: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        nullable=True,
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    rejected_by: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        nullable=True,
    )
    rejected_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    version_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    __mapper_args__ = {"version_id_col": version_id}

    # Relationships
    transaction: Mapped["Transaction"] = relationship("Transaction")

    def __repr__(self) -> str:
        return f"<Refund(id={self.id}, amount={self.amount}, status={self.status})>"

    @property
    def is_pending(self) -> bool:
        return self.status == RefundStatus.PENDING
