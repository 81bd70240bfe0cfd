"""Payment intent service."""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Union
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from paylater_service.core.actors import Actor
from paylater_service.core.config import settings
from paylater_service.core.exceptions import Forbidden, InvalidState, PayLaterError, ValidationFailed
from paylater_service.models import (
    Currency,
    PaymentIntent,
    PaymentIntentStatus,
    PaymentMethod,
    TransactionStatus,
)
from paylater_service.schemas.merchant import MerchantResponse
from paylater_service.schemas.payment_intent import (
    BillableItem,
    PaymentIntentMetadata,
    PaymentIntentResponse,
)
from paylater_service.schemas.transaction import TransactionMetadata, TransactionResponse
from paylater_service.services import ledger_store
from paylater_service.services.accounting import parse_amount
from paylater_service.services.events import EventPublisher, PaymentConfirmed
from paylater_service.services.ledger_store import PaymentIntentFilter
from paylater_service.services.transactions import ensure_can_access, record_confirmation
from paylater_service.utils.date_utils import utcnow

logger = logging.getLogger(__name__)


async def create_payment_intent(
    db: AsyncSession,
    actor: Actor,
    items: list[BillableItem],
    currency: Currency,
    metadata: PaymentIntentMetadata,
    expires_in_seconds: Optional[int] = None,
) -> PaymentIntent:
    """Create a payment intent (merchant operation).

    The amount is the sum of ``unit_amount * quantity`` over the items.

    Args:
        db: Database session
        actor: Merchant creating the intent
        items: Billable items, at least one
        currency: Currency of every item
        metadata: Merchant reference and customer details
        expires_in_seconds: Lifetime (default: PAYMENT_INTENT_TTL_SECONDS)

    Returns:
        The pending PaymentIntent
    """
    if not actor.is_merchant:
        raise Forbidden("Only merchants can create payment intents")

    merchant = await ledger_store.find_merchant(db, actor.id)
    if not merchant.is_active:
        raise Forbidden("Merchant account is inactive", error_code="MERCHANT_INACTIVE")

    if not items:
        raise ValidationFailed("At least one item is required", details={"field": "items"})

    total = Decimal("0")
    stored_items = []
    for index, item in enumerate(items):
        unit_amount = parse_amount(item.unit_amount, field=f"items[{index}].unit_amount")
        if item.quantity < 1:
            raise ValidationFailed(
                "quantity must be at least 1",
                details={"field": f"items[{index}].quantity"},
            )
        total += unit_amount * item.quantity
        stored_items.append(
            {
                "name": item.name,
                "description": item.description,
                "unit_amount": str(unit_amount),
                "quantity": item.quantity,
            }
        )

    ttl = expires_in_seconds or settings.PAYMENT_INTENT_TTL_SECONDS
    created_at = utcnow()
    intent = PaymentIntent(
        merchant_id=merchant.id,
        items=stored_items,
        amount=total,
        currency=currency,
        status=PaymentIntentStatus.PENDING,
        refunded_amount=Decimal("0"),
        intent_metadata=metadata.model_dump(mode="json"),
        created_at=created_at,
        expires_at=created_at + timedelta(seconds=ttl),
    )
    await ledger_store.save_payment_intent(db, intent)
    await ledger_store.commit(db)

    logger.info(f"Created payment intent {intent.id} for {total} {currency.value}")
    return intent


async def get_payment_intent(db: AsyncSession, payment_intent_id: UUID, actor: Actor) -> PaymentIntent:
    intent = await ledger_store.find_payment_intent(db, payment_intent_id)
    ensure_can_access(intent, actor)
    return intent


async def list_payment_intents(
    db: AsyncSession,
    filter: PaymentIntentFilter,
    actor: Actor,
    page: int,
    size: int,
) -> tuple[list[PaymentIntent], int]:
    """Search payment intents; merchants are restricted to their own."""
    if actor.is_merchant:
        filter.merchant_id = actor.id

    intents, total = await ledger_store.search_payment_intents(db, filter, page, size)
    logger.info(f"Found {total} payment intents")
    return intents, total


async def confirm_payment_intent(
    db: AsyncSession,
    payment_intent_id: UUID,
    actor: Actor,
    status: Union[TransactionStatus, str],
    payment_method: PaymentMethod,
    metadata: TransactionMetadata,
    publisher: EventPublisher,
    amount: Optional[Union[str, Decimal]] = None,
    currency: Optional[Currency] = None,
) -> PaymentIntent:
    """Record the customer's payment for a pending intent (merchant operation).

    The merchant must own the intent and have a webhook URL configured so the
    confirmation can be delivered. When ``amount``/``currency`` are omitted
    the intent's own values are used.
    """
    if not actor.is_merchant:
        raise Forbidden("Only merchants can confirm payment intents")

    try:
        transaction_status = TransactionStatus(status)
    except ValueError:
        raise ValidationFailed(
            "status must be success or failed",
            details={"status": str(status)},
        )

    intent = await ledger_store.find_payment_intent(db, payment_intent_id)
    ensure_can_access(intent, actor)

    merchant = await ledger_store.find_merchant(db, actor.id)
    if not merchant.webhook_url:
        raise InvalidState(
            "Set webhook url first and try again",
            error_code="WEBHOOK_NOT_CONFIGURED",
        )

    confirmed_amount = parse_amount(amount) if amount is not None else intent.amount
    transaction = await record_confirmation(
        db,
        payment_intent_id=intent.id,
        amount=confirmed_amount,
        currency=currency or intent.currency,
        method=payment_method,
        actor=actor,
        status=transaction_status,
        metadata=metadata,
    )
    await ledger_store.commit(db)

    logger.info(f"Confirmed payment intent {intent.id} as {intent.status.value}")
    publisher.publish(
        PaymentConfirmed(
            payment_intent=PaymentIntentResponse.from_model(intent),
            transaction=TransactionResponse.from_model(transaction),
            merchant=MerchantResponse.from_model(merchant),
        )
    )
    return intent


async def cancel_payment_intent(db: AsyncSession, payment_intent_id: UUID, actor: Actor) -> PaymentIntent:
    """Cancel a pending, unexpired intent (owning merchant or admin)."""
    intent = await ledger_store.find_payment_intent(db, payment_intent_id, for_update=True)
    ensure_can_access(intent, actor)

    if intent.status != PaymentIntentStatus.PENDING:
        raise InvalidState(
            "Payment intent is not pending",
            details={"status": intent.status.value},
        )

    now = utcnow()
    # The sweep may not have marked it yet
    if intent.is_expired(now):
        raise InvalidState("Payment intent is expired")

    intent.status = PaymentIntentStatus.CANCELLED
    intent.cancelled_at = now
    intent.cancelled_by = actor.id
    await ledger_store.save_payment_intent(db, intent)
    await ledger_store.commit(db)

    logger.info(f"Cancelled payment intent {intent.id} by {actor.role.value} {actor.id}")
    return intent


async def expire_overdue_payment_intents(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """Mark every pending intent past its expiry time as expired.

    Each intent is committed on its own; a failure is logged and the sweep
    moves on to the next one.

    Returns:
        Number of intents expired
    """
    now = now or utcnow()
    overdue = await ledger_store.find_overdue_pending_intents(db, now)
    intent_ids = [intent.id for intent in overdue]

    expired = 0
    for intent_id in intent_ids:
        try:
            intent = await ledger_store.find_payment_intent(db, intent_id, for_update=True)
            if intent.status != PaymentIntentStatus.PENDING:
                continue
            intent.status = PaymentIntentStatus.EXPIRED
            await ledger_store.save_payment_intent(db, intent)
            await ledger_store.commit(db)
        except (PayLaterError, SQLAlchemyError):
            await db.rollback()
            logger.exception(f"Failed to expire payment intent {intent_id}")
            continue

        expired += 1
        logger.info(f"Expired payment intent {intent_id}")

    return expired
