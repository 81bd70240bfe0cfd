"""Transaction-related schemas."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from paylater_service.models.payment_intent import Currency
from paylater_service.models.transaction import PaymentMethod, Transaction, TransactionStatus
from paylater_service.schemas.common import format_amount
from paylater_service.utils.date_utils import as_utc


class TransactionMetadata(BaseModel):
    """Customer and gateway context recorded with a transaction."""

    model_config = ConfigDict(frozen=True)

    reference_id: str = Field(..., min_length=1)
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = Field(None, pattern=r"^\+?[0-9]{7,15}$")
    customer_name: Optional[str] = None
    description: Optional[str] = None
    failure_reason: Optional[str] = Field(None, description="Required when status is failed")
    refund_reason: Optional[str] = None
    gateway_response_code: Optional[str] = None
    extra: dict[str, Any] = Field(default_factory=dict)


class TransactionResponse(BaseModel):
    """Transaction response."""

    model_config = ConfigDict(frozen=True)

    id: str
    payment_intent_id: str
    parent_transaction_id: Optional[str] = None
    amount: str
    currency: Currency
    payment_method: PaymentMethod
    status: TransactionStatus
    confirmed_at: datetime
    confirmed_by: str
    metadata: TransactionMetadata

    @classmethod
    def from_model(cls, transaction: Transaction) -> "TransactionResponse":
        parent_id = transaction.parent_transaction_id
        return cls(
            id=str(transaction.id),
            payment_intent_id=str(transaction.payment_intent_id),
            parent_transaction_id=str(parent_id) if parent_id else None,
            amount=format_amount(transaction.amount),
            currency=transaction.currency,
            payment_method=transaction.payment_method,
            status=transaction.status,
            confirmed_at=as_utc(transaction.confirmed_at),
            confirmed_by=str(transaction.confirmed_by),
            metadata=TransactionMetadata(**transaction.transaction_metadata),
        )
