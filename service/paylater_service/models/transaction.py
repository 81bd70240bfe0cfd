"""Transaction model.

Transactions form an append-only ledger: once flushed, a row is never
updated or deleted. Refunds are recorded as new rows pointing back at the
original payment through ``parent_transaction_id``.
"""

import enum
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import DateTime, ForeignKey, Numeric, Uuid, event
from sqlalchemy.orm import Mapped, mapped_column, relationship

from paylater_service.core.actors import ActorRole
from paylater_service.db.session import Base
from paylater_service.db.types import JSONType, enum_column
from paylater_service.models.payment_intent import Currency
from paylater_service.utils.date_utils import utcnow

if TYPE_CHECKING:
    from paylater_service.models.payment_intent import PaymentIntent


class PaymentMethod(str, enum.Enum):
    """How the customer paid."""

    CARD = "card"
    CASH = "cash"
    MOBILE_MONEY = "mobile_money"
    BANK_TRANSFER = "bank_transfer"
    IREMBO_PAY = "irembo_pay"


class TransactionStatus(str, enum.Enum):
    """Transaction status enumeration."""

    SUCCESS = "success"
    FAILED = "failed"
    REFUNDED = "refunded"


class ImmutableTransactionError(RuntimeError):
    """Raised when something tries to rewrite or remove a ledger row."""


class Transaction(Base):
    """Transaction model, one row per recorded payment or refund."""

    __tablename__ = "transactions"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
    )
    payment_intent_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("payment_intents.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    parent_transaction_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("transactions.id", ondelete="RESTRICT"),
        nullable=True,
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
    payment_method: Mapped[PaymentMethod] = mapped_column(
        enum_column(PaymentMethod, "payment_method"),
        nullable=False,
    )
    status: Mapped[TransactionStatus] = mapped_column(
        enum_column(TransactionStatus, "transaction_status"),
        nullable=False,
        index=True,
    )
    confirmed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        index=True,
    )
    confirmed_by: Mapped[UUID] = mapped_column(
        Uuid,
        nullable=False,
    )
    confirmed_by_role: Mapped[ActorRole] = mapped_column(
        enum_column(ActorRole, "actor_role"),
        nullable=False,
    )
    transaction_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSONType,
        nullable=False,
        default=dict,
    )

    # Relationships
    payment_intent: Mapped["PaymentIntent"] = relationship(
        "PaymentIntent",
        back_populates="transactions",
    )

    def __repr__(self) -> str:
        return f"<Transaction(id={self.id}, amount={self.amount}, status={self.status})>"

    @property
    def is_refund(self) -> bool:
        return self.parent_transaction_id is not None


@event.listens_for(Transaction, "before_update")
def _reject_transaction_update(mapper, connection, target: Transaction) -> None:
    raise ImmutableTransactionError(f"Transaction {target.id} is immutable")


@event.listens_for(Transaction, "before_delete")
def _reject_transaction_delete(mapper, connection, target: Transaction) -> None:
    raise ImmutableTransactionError(f"Transaction {target.id} cannot be deleted")
