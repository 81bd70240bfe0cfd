"""Refund workflow.

Merchants request refunds against successful transactions; administrators
approve or reject them. Approval is the only path that moves money back and
it runs as a single unit of work:

1. lock and read the payment intent (before the approved total, so the
   version checked on write is never older than the total used to decide),
2. sum the refunds already approved against the intent,
3. decide the new intent status,
4. write the intent (version-checked), the refund transaction and the
   refund, then commit once.

A concurrent approval that committed in between makes the intent write
fail with ConcurrencyConflict; the whole operation is retried on fresh
state, and the retry reports RefundExceedsBalance if the balance is gone.
"""

import logging
from decimal import Decimal
from typing import Awaitable, Callable, TypeVar, Union
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from paylater_service.core.actors import Actor
from paylater_service.core.config import settings
from paylater_service.core.exceptions import (
    ConcurrencyConflict,
    Forbidden,
    InvalidState,
    RefundExceedsBalance,
    ValidationFailed,
)
from paylater_service.models import Refund, RefundStatus, TransactionStatus
from paylater_service.schemas.merchant import MerchantResponse
from paylater_service.schemas.payment_intent import PaymentIntentResponse
from paylater_service.schemas.refund import RefundResponse
from paylater_service.schemas.transaction import TransactionResponse
from paylater_service.services import ledger_store
from paylater_service.services.accounting import (
    decide_refund_outcome,
    parse_amount,
    remaining_refundable,
)
from paylater_service.services.events import EventPublisher, RefundApproved, RefundRejected
from paylater_service.services.ledger_store import RefundFilter
from paylater_service.services.transactions import (
    ensure_can_access,
    get_transaction_and_payment_intent,
    record_refund_transaction,
)
from paylater_service.utils.date_utils import utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _run_with_conflict_retry(
    db: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    description: str,
) -> T:
    """Run ``operation`` as one unit of work, retrying on ConcurrencyConflict."""
    max_attempts = max(1, settings.REFUND_APPROVAL_MAX_ATTEMPTS)

    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except ConcurrencyConflict:
            await db.rollback()
            if attempt == max_attempts:
                logger.error(f"{description} conflicted {attempt} times, giving up")
                raise
            logger.warning(
                f"{description} hit a concurrent update (attempt {attempt}/{max_attempts}), retrying"
            )
        except Exception:
            await db.rollback()
            raise

    raise RuntimeError("Unexpected state in conflict retry loop")


def _require_admin(actor: Actor, action: str) -> None:
    if not actor.is_admin:
        raise Forbidden(f"Only administrators can {action} refunds")


async def request_refund(
    db: AsyncSession,
    transaction_id: UUID,
    amount: Union[str, Decimal],
    reason: str,
    actor: Actor,
) -> Refund:
    """Create a pending refund request (merchant operation).

    Args:
        db: Database session
        transaction_id: ID of the successful payment transaction
        amount: Amount to refund
        reason: Why the customer is refunded
        actor: Requesting merchant

    Returns:
        The pending Refund

    Raises:
        Forbidden: Actor is not the merchant owning the payment intent
        InvalidState: Intent or transaction is not eligible for refund
        RefundExceedsBalance: Amount above what is still refundable
    """
    if not actor.is_merchant:
        raise Forbidden("Only merchants can request refunds")

    refund_amount = parse_amount(amount)
    if not reason or not reason.strip():
        raise ValidationFailed("reason is required", details={"field": "reason"})

    transaction, intent = await get_transaction_and_payment_intent(db, transaction_id)
    ensure_can_access(intent, actor)

    if not intent.is_refundable:
        raise InvalidState(
            "Payment intent is not eligible for refund",
            details={"status": intent.status.value},
        )

    if transaction.status != TransactionStatus.SUCCESS:
        raise InvalidState(
            "Transaction is not eligible for refund",
            details={"status": transaction.status.value},
        )

    refunded_so_far = await ledger_store.sum_approved_refund_amount(db, intent.id)
    remaining = remaining_refundable(intent.amount, refunded_so_far)
    if refund_amount > remaining:
        raise RefundExceedsBalance(
            f"Refund amount {refund_amount} exceeds remaining refundable balance {remaining}",
            details={"requested_amount": str(refund_amount), "remaining": str(remaining)},
        )

    refund = Refund(
        transaction_id=transaction.id,
        status=RefundStatus.PENDING,
        amount=refund_amount,
        currency=transaction.currency,
        reason=reason.strip(),
        requested_at=utcnow(),
        requested_by=actor.id,
    )
    await ledger_store.save_refund(db, refund)
    await ledger_store.commit(db)

    logger.info(f"Created refund {refund.id} for {refund_amount} on transaction {transaction.id}")
    return refund


async def _approve_once(db: AsyncSession, refund_id: UUID, actor: Actor) -> tuple[Refund, RefundApproved]:
    refund = await ledger_store.find_refund(db, refund_id)
    if refund.status != RefundStatus.PENDING:
        raise InvalidState("Refund is not pending", details={"status": refund.status.value})

    original, intent = await get_transaction_and_payment_intent(
        db, refund.transaction_id, for_update=True
    )
    # Another approval or rejection may have landed while waiting for the lock
    refund = await ledger_store.find_refund(db, refund_id)
    if refund.status != RefundStatus.PENDING:
        raise InvalidState("Refund is not pending", details={"status": refund.status.value})
    merchant = await ledger_store.find_merchant(db, intent.merchant_id)

    if not intent.is_refundable:
        raise InvalidState(
            "Payment intent is not eligible for refund",
            details={"status": intent.status.value},
        )

    refunded_so_far = await ledger_store.sum_approved_refund_amount(db, intent.id)
    outcome = decide_refund_outcome(intent.amount, refunded_so_far, refund.amount)

    intent.status = outcome.status
    intent.refunded_amount = outcome.total_after
    await ledger_store.save_payment_intent(db, intent)

    refund_transaction = await record_refund_transaction(db, original, refund, actor)

    refund.status = RefundStatus.APPROVED
    refund.approved_by = actor.id
    refund.approved_at = utcnow()
    await ledger_store.save_refund(db, refund)

    await ledger_store.commit(db)

    event = RefundApproved(
        refund=RefundResponse.from_model(refund),
        transaction=TransactionResponse.from_model(refund_transaction),
        payment_intent=PaymentIntentResponse.from_model(intent),
        merchant=MerchantResponse.from_model(merchant),
    )
    return refund, event


async def approve_refund(
    db: AsyncSession,
    refund_id: UUID,
    actor: Actor,
    publisher: EventPublisher,
) -> Refund:
    """Approve a pending refund and record the refund transaction (admin only).

    Raises:
        Forbidden: Actor is not an administrator
        InvalidState: Refund is not pending or the intent is not refundable
        RefundExceedsBalance: Approving would refund more than was paid
        ConcurrencyConflict: Concurrent updates persisted across every retry
    """
    _require_admin(actor, "approve")

    refund, event = await _run_with_conflict_retry(
        db,
        lambda: _approve_once(db, refund_id, actor),
        f"Approval of refund {refund_id}",
    )

    logger.info(
        f"Approved refund {refund.id}; payment intent {event.payment_intent.id} "
        f"is now {event.payment_intent.status.value}"
    )
    publisher.publish(event)
    return refund


async def _reject_once(
    db: AsyncSession,
    refund_id: UUID,
    reason: str,
    actor: Actor,
) -> tuple[Refund, RefundRejected]:
    refund = await ledger_store.find_refund(db, refund_id)
    if refund.status != RefundStatus.PENDING:
        raise InvalidState("Refund is not pending", details={"status": refund.status.value})

    original, intent = await get_transaction_and_payment_intent(db, refund.transaction_id)
    merchant = await ledger_store.find_merchant(db, intent.merchant_id)

    refund.status = RefundStatus.REJECTED
    refund.rejected_reason = reason
    refund.rejected_by = actor.id
    refund.rejected_at = utcnow()
    await ledger_store.save_refund(db, refund)

    await ledger_store.commit(db)

    event = RefundRejected(
        refund=RefundResponse.from_model(refund),
        transaction=TransactionResponse.from_model(original),
        payment_intent=PaymentIntentResponse.from_model(intent),
        merchant=MerchantResponse.from_model(merchant),
    )
    return refund, event


async def reject_refund(
    db: AsyncSession,
    refund_id: UUID,
    reason: str,
    actor: Actor,
    publisher: EventPublisher,
) -> Refund:
    """Reject a pending refund (admin only). The ledger is left untouched."""
    _require_admin(actor, "reject")

    if not reason or not reason.strip():
        raise ValidationFailed("reason is required", details={"field": "reason"})

    refund, event = await _run_with_conflict_retry(
        db,
        lambda: _reject_once(db, refund_id, reason.strip(), actor),
        f"Rejection of refund {refund_id}",
    )

    logger.info(f"Rejected refund {refund.id}")
    publisher.publish(event)
    return refund


async def get_refund(db: AsyncSession, refund_id: UUID, actor: Actor) -> Refund:
    refund = await ledger_store.find_refund(db, refund_id)
    _, intent = await get_transaction_and_payment_intent(db, refund.transaction_id)
    ensure_can_access(intent, actor)
    return refund


async def list_refunds(
    db: AsyncSession,
    filter: RefundFilter,
    actor: Actor,
    page: int,
    size: int,
) -> tuple[list[Refund], int]:
    """Search refunds; merchants are restricted to their own."""
    if actor.is_merchant:
        filter.merchant_id = actor.id

    refunds, total = await ledger_store.search_refunds(db, filter, page, size)
    logger.info(f"Found {total} refunds")
    return refunds, total
