"""Transaction endpoints."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from paylater_service.core.actors import Actor
from paylater_service.db import get_db
from paylater_service.middleware.auth import require_actor
from paylater_service.models import Currency, TransactionStatus
from paylater_service.schemas.common import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, PageResponse
from paylater_service.schemas.refund import RefundRequest, RefundResponse
from paylater_service.schemas.transaction import TransactionResponse
from paylater_service.services.ledger_store import TransactionFilter
from paylater_service.services.refunds import request_refund
from paylater_service.services.transactions import get_transaction, list_transactions

router = APIRouter()


@router.get("", response_model=PageResponse[TransactionResponse])
async def list_transactions_endpoint(
    status: Optional[list[TransactionStatus]] = Query(None),
    currency: Optional[list[Currency]] = Query(None),
    payment_intent_id: Optional[UUID] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    page: int = Query(0, ge=0),
    size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    actor: Actor = Depends(require_actor("transaction:read")),
    db: AsyncSession = Depends(get_db),
) -> PageResponse[TransactionResponse]:
    """List transactions, newest first. Merchants only see their own."""
    filter = TransactionFilter(
        payment_intent_id=payment_intent_id,
        statuses=status,
        currencies=currency,
        start=start,
        end=end,
    )
    transactions, total = await list_transactions(db, filter, actor, page, size)
    return PageResponse[TransactionResponse](
        items=[TransactionResponse.from_model(tx) for tx in transactions],
        page=page,
        size=size,
        total=total,
    )


@router.get("/{transaction_id}", response_model=TransactionResponse)
async def get_transaction_endpoint(
    transaction_id: UUID,
    actor: Actor = Depends(require_actor("transaction:read")),
    db: AsyncSession = Depends(get_db),
) -> TransactionResponse:
    transaction = await get_transaction(db, transaction_id, actor)
    return TransactionResponse.from_model(transaction)


@router.post("/{transaction_id}/refunds", response_model=RefundResponse)
async def request_refund_endpoint(
    transaction_id: UUID,
    request: RefundRequest,
    actor: Actor = Depends(require_actor("refund:create")),
    db: AsyncSession = Depends(get_db),
) -> RefundResponse:
    """Request a refund against a successful transaction (merchant operation)."""
    refund = await request_refund(
        db=db,
        transaction_id=transaction_id,
        amount=request.amount,
        reason=request.reason,
        actor=actor,
    )
    return RefundResponse.from_model(refund)
