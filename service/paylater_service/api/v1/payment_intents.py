"""Payment intent endpoints."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from paylater_service.core.actors import Actor
from paylater_service.db import get_db
from paylater_service.middleware.auth import require_actor
from paylater_service.models import Currency, PaymentIntentStatus
from paylater_service.schemas.common import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, PageResponse
from paylater_service.schemas.payment_intent import (
    ConfirmPaymentIntentRequest,
    PaymentIntentRequest,
    PaymentIntentResponse,
)
from paylater_service.services.events import EventPublisher, get_event_publisher
from paylater_service.services.ledger_store import PaymentIntentFilter
from paylater_service.services.payment_intents import (
    cancel_payment_intent,
    confirm_payment_intent,
    create_payment_intent,
    get_payment_intent,
    list_payment_intents,
)

router = APIRouter()


@router.post("", response_model=PaymentIntentResponse)
async def create_payment_intent_endpoint(
    request: PaymentIntentRequest,
    actor: Actor = Depends(require_actor("payment_intent:create")),
    db: AsyncSession = Depends(get_db),
) -> PaymentIntentResponse:
    """Create a payment intent (merchant operation)."""
    intent = await create_payment_intent(
        db=db,
        actor=actor,
        items=request.items,
        currency=request.currency,
        metadata=request.metadata,
        expires_in_seconds=request.expires_in_seconds,
    )
    return PaymentIntentResponse.from_model(intent)


@router.get("", response_model=PageResponse[PaymentIntentResponse])
async def list_payment_intents_endpoint(
    status: Optional[list[PaymentIntentStatus]] = Query(None),
    currency: Optional[list[Currency]] = Query(None),
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    page: int = Query(0, ge=0),
    size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    actor: Actor = Depends(require_actor("payment_intent:read")),
    db: AsyncSession = Depends(get_db),
) -> PageResponse[PaymentIntentResponse]:
    """List payment intents, newest first. Merchants only see their own."""
    filter = PaymentIntentFilter(statuses=status, currencies=currency, start=start, end=end)
    intents, total = await list_payment_intents(db, filter, actor, page, size)
    return PageResponse[PaymentIntentResponse](
        items=[PaymentIntentResponse.from_model(intent) for intent in intents],
        page=page,
        size=size,
        total=total,
    )


@router.get("/{intent_id}", response_model=PaymentIntentResponse)
async def get_payment_intent_endpoint(
    intent_id: UUID,
    actor: Actor = Depends(require_actor("payment_intent:read")),
    db: AsyncSession = Depends(get_db),
) -> PaymentIntentResponse:
    intent = await get_payment_intent(db, intent_id, actor)
    return PaymentIntentResponse.from_model(intent)


@router.post("/{intent_id}/confirm", response_model=PaymentIntentResponse)
async def confirm_payment_intent_endpoint(
    intent_id: UUID,
    request: ConfirmPaymentIntentRequest,
    actor: Actor = Depends(require_actor("payment_intent:confirm")),
    db: AsyncSession = Depends(get_db),
    publisher: EventPublisher = Depends(get_event_publisher),
) -> PaymentIntentResponse:
    """Record the customer's out-of-band payment (merchant operation)."""
    intent = await confirm_payment_intent(
        db=db,
        payment_intent_id=intent_id,
        actor=actor,
        status=request.status,
        payment_method=request.payment_method,
        metadata=request.metadata,
        publisher=publisher,
        amount=request.amount,
        currency=request.currency,
    )
    return PaymentIntentResponse.from_model(intent)


@router.post("/{intent_id}/cancel", response_model=PaymentIntentResponse)
async def cancel_payment_intent_endpoint(
    intent_id: UUID,
    actor: Actor = Depends(require_actor("payment_intent:cancel")),
    db: AsyncSession = Depends(get_db),
) -> PaymentIntentResponse:
    """Cancel a pending payment intent (owning merchant or admin)."""
    intent = await cancel_payment_intent(db, intent_id, actor)
    return PaymentIntentResponse.from_model(intent)
