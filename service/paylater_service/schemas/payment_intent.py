"""Payment intent-related schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from paylater_service.models.payment_intent import Currency, PaymentIntent, PaymentIntentStatus
from paylater_service.models.transaction import PaymentMethod
from paylater_service.schemas.common import format_amount
from paylater_service.schemas.transaction import TransactionMetadata
from paylater_service.utils.date_utils import as_utc


class BillableItem(BaseModel):
    """One line of what the customer is billed for."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=500)
    unit_amount: str = Field(..., description="Unit price (as string, up to 4 decimals)")
    quantity: int = Field(1, ge=1)


class PaymentIntentMetadata(BaseModel):
    """Merchant-side context attached to a payment intent."""

    model_config = ConfigDict(frozen=True)

    reference_id: str = Field(..., min_length=1, description="Merchant's internal order reference")
    user_id: Optional[str] = None
    phone: Optional[str] = Field(None, pattern=r"^\+?[1-9]\d{1,14}$")
    email: Optional[str] = None
    description: Optional[str] = None


class PaymentIntentRequest(BaseModel):
    """Payment intent creation request body."""

    items: list[BillableItem] = Field(..., min_length=1)
    currency: Currency = Field(..., description="Currency code: RWF, USD or EUR")
    metadata: PaymentIntentMetadata
    expires_in_seconds: Optional[int] = Field(
        None,
        description="Expiration time in seconds (default: 2 hours)",
        ge=60,
        le=86400 * 7,
    )


class ConfirmPaymentIntentRequest(BaseModel):
    """Record the outcome of an out-of-band payment."""

    status: str = Field(..., description="success or failed")
    payment_method: PaymentMethod
    amount: Optional[str] = Field(
        None,
        description="Collected amount; must equal the intent amount when given",
    )
    currency: Optional[Currency] = None
    metadata: TransactionMetadata


class PaymentIntentResponse(BaseModel):
    """Payment intent response."""

    model_config = ConfigDict(frozen=True)

    id: str
    merchant_id: str
    items: list[BillableItem]
    amount: str
    refunded_amount: str
    currency: Currency
    status: PaymentIntentStatus
    metadata: PaymentIntentMetadata
    created_at: datetime
    expires_at: datetime
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None

    @classmethod
    def from_model(cls, intent: PaymentIntent) -> "PaymentIntentResponse":
        return cls(
            id=str(intent.id),
            merchant_id=str(intent.merchant_id),
            items=[BillableItem(**item) for item in intent.items],
            amount=format_amount(intent.amount),
            refunded_amount=format_amount(intent.refunded_amount),
            currency=intent.currency,
            status=intent.status,
            metadata=PaymentIntentMetadata(**intent.intent_metadata),
            created_at=as_utc(intent.created_at),
            expires_at=as_utc(intent.expires_at),
            cancelled_at=as_utc(intent.cancelled_at),
            cancelled_by=str(intent.cancelled_by) if intent.cancelled_by else None,
        )
