"""Refund-related schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from paylater_service.models.payment_intent import Currency
from paylater_service.models.refund import Refund, RefundStatus
from paylater_service.schemas.common import format_amount
from paylater_service.utils.date_utils import as_utc


class RefundRequest(BaseModel):
    """Refund request body."""

    amount: str = Field(..., description="Amount to refund (as string)")
    reason: str = Field(..., min_length=1, max_length=500)


class RejectRefundRequest(BaseModel):
    """Reject refund request body."""

    reason: str = Field(..., min_length=1, max_length=500)


class RefundResponse(BaseModel):
    """Refund response."""

    model_config = ConfigDict(frozen=True)

    id: str
    transaction_id: str
    amount: str
    currency: Currency
    reason: str
    status: RefundStatus
    requested_at: datetime
    requested_by: str
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejected_reason: Optional[str] = None

    @classmethod
    def from_model(cls, refund: Refund) -> "RefundResponse":
        return cls(
            id=str(refund.id),
            transaction_id=str(refund.transaction_id),
            amount=format_amount(refund.amount),
            currency=refund.currency,
            reason=refund.reason,
            status=refund.status,
            requested_at=as_utc(refund.requested_at),
            requested_by=str(refund.requested_by),
            approved_at=as_utc(refund.approved_at),
            approved_by=str(refund.approved_by) if refund.approved_by else None,
            rejected_at=as_utc(refund.rejected_at),
            rejected_by=str(refund.rejected_by) if refund.rejected_by else None,
            rejected_reason=refund.rejected_reason,
        )
