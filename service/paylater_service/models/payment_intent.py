"""Payment intent model."""

import enum
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from paylater_service.db.session import Base
from paylater_service.db.types import JSONType, enum_column
from paylater_service.utils.date_utils import as_utc, utcnow

if TYPE_CHECKING:
    from paylater_service.models.merchant import Merchant
    from paylater_service.models.transaction import Transaction


class Currency(str, enum.Enum):
    """Supported currencies."""

    RWF = "RWF"
    USD = "USD"
    EUR = "EUR"


class PaymentIntentStatus(str, enum.Enum):
    """Payment intent status enumeration."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


REFUNDABLE_INTENT_STATUSES = (
    PaymentIntentStatus.COMPLETED,
    PaymentIntentStatus.PARTIALLY_REFUNDED,
)


class PaymentIntent(Base):
    """Payment intent model.

    A merchant bills a customer by creating a payment intent. Payment is
    collected out of band and recorded as a transaction; approved refunds
    accumulate in ``refunded_amount``. Every update bumps ``version_id`` so
    two writers working from the same snapshot cannot both succeed.
    """

    __tablename__ = "payment_intents"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
    )
    merchant_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("merchants.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    items: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(19, 4),
        nullable=False,
    )
    currency: Mapped[Currency] = mapped_column(
        enum_column(Currency, "currency"),
        nullable=False,
    )
    status: Mapped[PaymentIntentStatus] = mapped_column(
        enum_column(PaymentIntentStatus, "payment_intent_status"),
        nullable=False,
        default=PaymentIntentStatus.PENDING,
        index=True,
    )
    refunded_amount: Mapped[Decimal] = mapped_column(
        Numeric(19, 4),
        nullable=False,
        default=Decimal("0"),
    )
    # "metadata" is reserved on declarative classes
    intent_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSONType,
        nullable=False,
        default=dict,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        index=True,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    cancelled_by: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        nullable=True,
    )
    version_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    __mapper_args__ = {"version_id_col": version_id}

    # Relationships
    merchant: Mapped["Merchant"] = relationship(
        "Merchant",
        back_populates="payment_intents",
    )
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction",
        back_populates="payment_intent",
    )

    def __repr__(self) -> str:
        return f"<PaymentIntent(id={self.id}, amount={self.amount}, status={self.status})>"

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Check if the payment intent has reached its expiry time."""
        now = as_utc(now) if now is not None else utcnow()
        return now >= as_utc(self.expires_at)

    @property
    def is_refundable(self) -> bool:
        return self.status in REFUNDABLE_INTENT_STATUSES
