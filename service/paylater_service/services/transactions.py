"""Transaction recorder.

Writes ledger rows for confirmed payments and approved refunds. The record_*
functions take part in the caller's unit of work and never commit.
"""

import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from paylater_service.core.actors import Actor
from paylater_service.core.exceptions import Forbidden, InvalidState, ValidationFailed
from paylater_service.models import (
    Currency,
    PaymentIntent,
    PaymentIntentStatus,
    PaymentMethod,
    Refund,
    Transaction,
    TransactionStatus,
)
from paylater_service.schemas.transaction import TransactionMetadata
from paylater_service.services import ledger_store
from paylater_service.services.ledger_store import TransactionFilter
from paylater_service.utils.date_utils import utcnow

logger = logging.getLogger(__name__)

CONFIRMATION_STATUSES = (TransactionStatus.SUCCESS, TransactionStatus.FAILED)


def ensure_can_access(intent: PaymentIntent, actor: Actor) -> None:
    """Admins see everything; merchants only their own payment intents."""
    if actor.is_merchant and intent.merchant_id != actor.id:
        raise Forbidden()


async def record_confirmation(
    db: AsyncSession,
    payment_intent_id: UUID,
    amount: Decimal,
    currency: Currency,
    method: PaymentMethod,
    actor: Actor,
    status: TransactionStatus = TransactionStatus.SUCCESS,
    metadata: Optional[TransactionMetadata] = None,
) -> Transaction:
    """Record the outcome of an out-of-band payment against a pending intent.

    The intent moves to COMPLETED for a successful payment and to FAILED
    otherwise. Both rows are flushed but not committed.

    Raises:
        ValidationFailed: Bad status, missing failure reason, or an amount or
            currency that does not match the intent
        Forbidden: Merchant does not own the intent
        InvalidState: Intent is not pending or has expired
    """
    if status not in CONFIRMATION_STATUSES:
        raise ValidationFailed(
            "status must be success or failed",
            details={"status": str(status.value)},
        )

    if metadata is None:
        raise ValidationFailed("metadata with a reference_id is required")

    if status == TransactionStatus.FAILED and not (metadata.failure_reason or "").strip():
        raise ValidationFailed(
            "failure_reason is required when status is failed",
            details={"field": "metadata.failure_reason"},
        )

    intent = await ledger_store.find_payment_intent(db, payment_intent_id, for_update=True)
    ensure_can_access(intent, actor)

    if intent.status != PaymentIntentStatus.PENDING:
        raise InvalidState(
            "Payment intent is not pending",
            details={"status": intent.status.value},
        )

    now = utcnow()
    if intent.is_expired(now):
        raise InvalidState("Payment intent is expired")

    if amount != intent.amount:
        raise ValidationFailed(
            f"Amount {amount} does not match payment intent amount {intent.amount}",
            details={"amount": str(amount), "expected": str(intent.amount)},
        )

    if currency != intent.currency:
        raise ValidationFailed(
            f"Currency {currency.value} does not match payment intent currency {intent.currency.value}",
            details={"currency": currency.value, "expected": intent.currency.value},
        )

    intent.status = (
        PaymentIntentStatus.COMPLETED
        if status == TransactionStatus.SUCCESS
        else PaymentIntentStatus.FAILED
    )
    await ledger_store.save_payment_intent(db, intent)

    transaction = Transaction(
        payment_intent_id=intent.id,
        amount=intent.amount,
        currency=intent.currency,
        payment_method=method,
        status=status,
        confirmed_at=now,
        confirmed_by=actor.id,
        confirmed_by_role=actor.role,
        transaction_metadata=metadata.model_dump(mode="json", exclude_none=True),
    )
    await ledger_store.save_transaction(db, transaction)

    logger.info(
        f"Recorded {status.value} transaction {transaction.id} for payment intent {intent.id}"
    )
    return transaction


async def record_refund_transaction(
    db: AsyncSession,
    original: Transaction,
    refund: Refund,
    actor: Actor,
) -> Transaction:
    """Append the ledger row for an approved refund.

    The new row points at ``original`` and carries its payment method,
    currency and metadata, with the refund reason added.
    """
    metadata = dict(original.transaction_metadata or {})
    metadata["refund_reason"] = refund.reason

    transaction = Transaction(
        payment_intent_id=original.payment_intent_id,
        parent_transaction_id=original.id,
        amount=refund.amount,
        currency=original.currency,
        payment_method=original.payment_method,
        status=TransactionStatus.REFUNDED,
        confirmed_at=utcnow(),
        confirmed_by=actor.id,
        confirmed_by_role=actor.role,
        transaction_metadata=metadata,
    )
    await ledger_store.save_transaction(db, transaction)

    logger.info(
        f"Recorded refund transaction {transaction.id} (parent {original.id}) for {refund.amount}"
    )
    return transaction


async def get_transaction_and_payment_intent(
    db: AsyncSession,
    transaction_id: UUID,
    for_update: bool = False,
) -> tuple[Transaction, PaymentIntent]:
    """Load a transaction together with the payment intent it belongs to."""
    transaction = await ledger_store.find_transaction(db, transaction_id)
    intent = await ledger_store.find_payment_intent(
        db, transaction.payment_intent_id, for_update=for_update
    )
    return transaction, intent


async def get_transaction(db: AsyncSession, transaction_id: UUID, actor: Actor) -> Transaction:
    transaction, intent = await get_transaction_and_payment_intent(db, transaction_id)
    ensure_can_access(intent, actor)
    return transaction


async def list_transactions(
    db: AsyncSession,
    filter: TransactionFilter,
    actor: Actor,
    page: int,
    size: int,
) -> tuple[list[Transaction], int]:
    """Search transactions; merchants are restricted to their own."""
    if actor.is_merchant:
        filter.merchant_id = actor.id

    transactions, total = await ledger_store.search_transactions(db, filter, page, size)
    logger.info(f"Found {total} transactions")
    return transactions, total
