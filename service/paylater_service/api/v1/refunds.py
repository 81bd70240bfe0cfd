"""Refund endpoints."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from paylater_service.core.actors import Actor
from paylater_service.db import get_db
from paylater_service.middleware.auth import require_actor
from paylater_service.models import Currency, RefundStatus
from paylater_service.schemas.common import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, PageResponse
from paylater_service.schemas.refund import RefundResponse, RejectRefundRequest
from paylater_service.services.events import EventPublisher, get_event_publisher
from paylater_service.services.ledger_store import RefundFilter
from paylater_service.services.refunds import approve_refund, get_refund, list_refunds, reject_refund

router = APIRouter()


@router.get("", response_model=PageResponse[RefundResponse])
async def list_refunds_endpoint(
    status: Optional[list[RefundStatus]] = Query(None),
    currency: Optional[list[Currency]] = Query(None),
    approved_start: Optional[datetime] = None,
    approved_end: Optional[datetime] = None,
    rejected_start: Optional[datetime] = None,
    rejected_end: Optional[datetime] = None,
    page: int = Query(0, ge=0),
    size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    actor: Actor = Depends(require_actor("refund:read")),
    db: AsyncSession = Depends(get_db),
) -> PageResponse[RefundResponse]:
    """List refunds, newest first. Merchants only see their own."""
    filter = RefundFilter(
        statuses=status,
        currencies=currency,
        approved_start=approved_start,
        approved_end=approved_end,
        rejected_start=rejected_start,
        rejected_end=rejected_end,
    )
    refunds, total = await list_refunds(db, filter, actor, page, size)
    return PageResponse[RefundResponse](
        items=[RefundResponse.from_model(refund) for refund in refunds],
        page=page,
        size=size,
        total=total,
    )


@router.get("/{refund_id}", response_model=RefundResponse)
async def get_refund_endpoint(
    refund_id: UUID,
    actor: Actor = Depends(require_actor("refund:read")),
    db: AsyncSession = Depends(get_db),
) -> RefundResponse:
    refund = await get_refund(db, refund_id, actor)
    return RefundResponse.from_model(refund)


@router.post("/{refund_id}/approve", response_model=RefundResponse)
async def approve_refund_endpoint(
    refund_id: UUID,
    actor: Actor = Depends(require_actor("admin:refunds")),
    db: AsyncSession = Depends(get_db),
    publisher: EventPublisher = Depends(get_event_publisher),
) -> RefundResponse:
    """Approve a pending refund (admin only)."""
    refund = await approve_refund(db, refund_id, actor, publisher)
    return RefundResponse.from_model(refund)


@router.post("/{refund_id}/reject", response_model=RefundResponse)
async def reject_refund_endpoint(
    refund_id: UUID,
    request: RejectRefundRequest,
    actor: Actor = Depends(require_actor("admin:refunds")),
    db: AsyncSession = Depends(get_db),
    publisher: EventPublisher = Depends(get_event_publisher),
) -> RefundResponse:
    """Reject a pending refund (admin only)."""
    refund = await reject_refund(db, refund_id, request.reason, actor, publisher)
    return RefundResponse.from_model(refund)
