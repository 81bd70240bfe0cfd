"""Admin analytics schemas."""

from decimal import Decimal
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict

from paylater_service.models import Currency
from paylater_service.schemas.common import format_amount

if TYPE_CHECKING:
    from paylater_service.services.ledger_store import RefundSummary, TransactionSummary


class CreatedBucket(BaseModel):
    """Merchants created in one calendar month (UTC)."""

    bucket_start: str
    count: int


class MerchantsOverviewResponse(BaseModel):
    total: int
    active: int
    inactive: int
    active_ratio: float
    created_trend: list[CreatedBucket]


class TransactionOverviewResponse(BaseModel):
    """Transaction volume for one merchant in one currency."""

    model_config = ConfigDict(frozen=True)

    merchant_id: str
    merchant_name: str
    currency: Currency
    count: int
    total_amount: str
    succeeded: int
    success_rate: float
    avg_order_value: str

    @classmethod
    def from_summary(cls, summary: "TransactionSummary") -> "TransactionOverviewResponse":
        count = summary.count
        return cls(
            merchant_id=str(summary.merchant_id),
            merchant_name=summary.merchant_name,
            currency=summary.currency,
            count=count,
            total_amount=format_amount(summary.total_amount),
            succeeded=summary.succeeded,
            success_rate=summary.succeeded / count if count else 0.0,
            avg_order_value=format_amount(summary.total_amount / count if count else Decimal("0")),
        )


class RefundOverviewResponse(BaseModel):
    """Refund outcomes for one merchant in one currency."""

    model_config = ConfigDict(frozen=True)

    merchant_id: str
    merchant_name: str
    currency: Currency
    count: int
    approved: int
    rejected: int
    approved_rate: float
    total_refunded_amount: str

    @classmethod
    def from_summary(cls, summary: "RefundSummary") -> "RefundOverviewResponse":
        count = summary.count
        return cls(
            merchant_id=str(summary.merchant_id),
            merchant_name=summary.merchant_name,
            currency=summary.currency,
            count=count,
            approved=summary.approved,
            rejected=summary.rejected,
            approved_rate=summary.approved / count if count else 0.0,
            total_refunded_amount=format_amount(summary.total_refunded_amount),
        )


class TransactionHealth(BaseModel):
    total: int
    by_status: dict[str, int]


class RefundHealth(BaseModel):
    pending: int
    approved_last_window: int
    rejected_last_window: int


class MerchantHealth(BaseModel):
    active: int
    inactive: int


class SystemHealthResponse(BaseModel):
    """Activity over the last ``window_hours``; pending refunds and merchant counts are current."""

    window_hours: int
    transactions: TransactionHealth
    refunds: RefundHealth
    merchants: MerchantHealth
