"""Refund accounting.

Pure decimal arithmetic deciding what an approved refund does to its
payment intent. Nothing here touches the database.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Union

from paylater_service.core.exceptions import RefundExceedsBalance, ValidationFailed
from paylater_service.models.payment_intent import PaymentIntentStatus

MAX_FRACTION_DIGITS = 4


@dataclass(frozen=True)
class RefundOutcome:
    """Status the payment intent moves to and its refunded total afterwards."""

    status: PaymentIntentStatus
    total_after: Decimal


def parse_amount(value: Union[str, Decimal, int], field: str = "amount") -> Decimal:
    """Parse a positive amount with at most four fractional digits.

    Raises:
        ValidationFailed: If the value is not a finite positive decimal or
            carries more precision than the ledger stores.
    """
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationFailed(
            f"{field} must be a decimal number",
            details={"field": field, "value": str(value)},
        )

    if not amount.is_finite():
        raise ValidationFailed(
            f"{field} must be a decimal number",
            details={"field": field, "value": str(value)},
        )

    if amount <= 0:
        raise ValidationFailed(
            f"{field} must be positive",
            details={"field": field, "value": str(value)},
        )

    if -amount.as_tuple().exponent > MAX_FRACTION_DIGITS:
        raise ValidationFailed(
            f"{field} supports at most {MAX_FRACTION_DIGITS} decimal places",
            details={"field": field, "value": str(value)},
        )

    return amount


def remaining_refundable(payment_amount: Decimal, refunded_so_far: Decimal) -> Decimal:
    """Amount that can still be refunded on a payment."""
    return max(payment_amount - refunded_so_far, Decimal("0"))


def decide_refund_outcome(
    payment_amount: Decimal,
    refunded_so_far: Decimal,
    refund_amount: Decimal,
) -> RefundOutcome:
    """Decide the payment intent status after approving ``refund_amount``.

    Args:
        payment_amount: Original amount of the payment intent
        refunded_so_far: Sum of refunds already approved against it
        refund_amount: Amount of the refund being approved

    Returns:
        RefundOutcome with REFUNDED when the payment is fully refunded,
        PARTIALLY_REFUNDED otherwise

    Raises:
        RefundExceedsBalance: If the refund would take the total above the
            payment amount
    """
    total_after = refunded_so_far + refund_amount

    if total_after > payment_amount:
        remaining = remaining_refundable(payment_amount, refunded_so_far)
        raise RefundExceedsBalance(
            f"Refund amount {refund_amount} exceeds refundable amount {remaining}",
            details={
                "payment_amount": str(payment_amount),
                "refunded_amount": str(refunded_so_far),
                "requested_amount": str(refund_amount),
            },
        )

    if total_after == payment_amount:
        return RefundOutcome(status=PaymentIntentStatus.REFUNDED, total_after=total_after)

    return RefundOutcome(status=PaymentIntentStatus.PARTIALLY_REFUNDED, total_after=total_after)
