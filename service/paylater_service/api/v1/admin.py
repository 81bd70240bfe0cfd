"""Admin endpoints."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from paylater_service.core.actors import Actor
from paylater_service.db import get_db
from paylater_service.middleware.auth import require_admin
from paylater_service.models import Currency, TransactionStatus
from paylater_service.schemas.admin import (
    CreateAPIKeyRequest,
    CreateAPIKeyResponse,
    CreateMerchantRequest,
    SetMerchantStatusRequest,
    UpdateMerchantRequest,
)
from paylater_service.schemas.analytics import (
    MerchantsOverviewResponse,
    RefundOverviewResponse,
    SystemHealthResponse,
    TransactionOverviewResponse,
)
from paylater_service.schemas.common import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, PageResponse
from paylater_service.schemas.merchant import MerchantResponse
from paylater_service.services.admin import (
    admin_create_api_key,
    admin_create_merchant,
    admin_get_merchant,
    admin_list_merchants,
    admin_revoke_api_key,
    admin_set_merchant_active,
    admin_update_merchant,
)
from paylater_service.services.analytics import (
    get_merchants_overview,
    get_refunds_overview,
    get_system_health,
    get_transactions_overview,
)
from paylater_service.services.ledger_store import (
    MerchantFilter,
    RefundSummaryFilter,
    TransactionFilter,
)

router = APIRouter()


@router.post("/merchants", response_model=MerchantResponse)
async def create_merchant(
    request: CreateMerchantRequest,
    actor: Actor = Depends(require_admin("admin:merchants")),
    db: AsyncSession = Depends(get_db),
) -> MerchantResponse:
    """Create a new merchant (admin only)."""
    return await admin_create_merchant(
        db=db,
        name=request.name,
        email=request.email,
        webhook_url=request.webhook_url,
    )


@router.get("/merchants", response_model=PageResponse[MerchantResponse])
async def list_merchants(
    name: Optional[str] = None,
    email: Optional[str] = None,
    is_active: Optional[bool] = None,
    created_start: Optional[datetime] = None,
    created_end: Optional[datetime] = None,
    page: int = Query(0, ge=0),
    size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    actor: Actor = Depends(require_admin("admin:merchants")),
    db: AsyncSession = Depends(get_db),
) -> PageResponse[MerchantResponse]:
    """List merchants, newest first (admin only)."""
    filter = MerchantFilter(
        name=name,
        email=email,
        is_active=is_active,
        created_start=created_start,
        created_end=created_end,
    )
    merchants, total = await admin_list_merchants(db, filter, page, size)
    return PageResponse[MerchantResponse](
        items=[MerchantResponse.from_model(merchant) for merchant in merchants],
        page=page,
        size=size,
        total=total,
    )


@router.get("/merchants/{merchant_id}", response_model=MerchantResponse)
async def get_merchant(
    merchant_id: UUID,
    actor: Actor = Depends(require_admin("admin:merchants")),
    db: AsyncSession = Depends(get_db),
) -> MerchantResponse:
    return await admin_get_merchant(db, merchant_id)


@router.patch("/merchants/{merchant_id}", response_model=MerchantResponse)
async def update_merchant(
    merchant_id: UUID,
    request: UpdateMerchantRequest,
    actor: Actor = Depends(require_admin("admin:merchants")),
    db: AsyncSession = Depends(get_db),
) -> MerchantResponse:
    """Update a merchant's name, email or webhook URL (admin only)."""
    return await admin_update_merchant(
        db=db,
        merchant_id=merchant_id,
        name=request.name,
        email=request.email,
        webhook_url=str(request.webhook_url) if request.webhook_url else None,
    )


@router.post("/merchants/{merchant_id}/status", response_model=MerchantResponse)
async def set_merchant_status(
    merchant_id: UUID,
    request: SetMerchantStatusRequest,
    actor: Actor = Depends(require_admin("admin:merchants")),
    db: AsyncSession = Depends(get_db),
) -> MerchantResponse:
    """Activate or deactivate a merchant (admin only)."""
    return await admin_set_merchant_active(db=db, merchant_id=merchant_id, is_active=request.is_active)


@router.post("/api_keys", response_model=CreateAPIKeyResponse)
async def create_api_key(
    request: CreateAPIKeyRequest,
    actor: Actor = Depends(require_admin("admin:api_keys")),
    db: AsyncSession = Depends(get_db),
) -> CreateAPIKeyResponse:
    """Create a new API key (admin only)."""
    return await admin_create_api_key(
        db=db,
        role=request.role,
        scopes=request.scopes,
        merchant_id=request.merchant_id,
        label=request.label,
    )


@router.post("/api_keys/{key_id}/revoke")
async def revoke_api_key(
    key_id: UUID,
    actor: Actor = Depends(require_admin("admin:api_keys")),
    db: AsyncSession = Depends(get_db),
) -> dict[str, str]:
    """Revoke an API key (admin only)."""
    await admin_revoke_api_key(db=db, key_id=key_id)
    return {"status": "revoked"}


# Analytics


@router.get("/analytics/merchants/overview", response_model=MerchantsOverviewResponse)
async def merchants_overview(
    created_start: Optional[datetime] = None,
    created_end: Optional[datetime] = None,
    actor: Actor = Depends(require_admin("admin:analytics")),
    db: AsyncSession = Depends(get_db),
) -> MerchantsOverviewResponse:
    return await get_merchants_overview(db, created_start, created_end)


@router.get(
    "/analytics/transactions/overview",
    response_model=PageResponse[TransactionOverviewResponse],
)
async def transactions_overview(
    merchant_id: Optional[UUID] = None,
    status: Optional[list[TransactionStatus]] = Query(None),
    currency: Optional[list[Currency]] = Query(None),
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    page: int = Query(0, ge=0),
    size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    actor: Actor = Depends(require_admin("admin:analytics")),
    db: AsyncSession = Depends(get_db),
) -> PageResponse[TransactionOverviewResponse]:
    """Transaction volume per merchant and currency, largest total first."""
    filter = TransactionFilter(
        merchant_id=merchant_id,
        statuses=status,
        currencies=currency,
        start=start,
        end=end,
    )
    items, total = await get_transactions_overview(db, filter, page, size)
    return PageResponse[TransactionOverviewResponse](items=items, page=page, size=size, total=total)


@router.get("/analytics/refunds/overview", response_model=PageResponse[RefundOverviewResponse])
async def refunds_overview(
    merchant_id: Optional[UUID] = None,
    currency: Optional[list[Currency]] = Query(None),
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    page: int = Query(0, ge=0),
    size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    actor: Actor = Depends(require_admin("admin:analytics")),
    db: AsyncSession = Depends(get_db),
) -> PageResponse[RefundOverviewResponse]:
    """Refund outcomes per merchant and currency, largest refunded total first."""
    filter = RefundSummaryFilter(
        merchant_id=merchant_id,
        currencies=currency,
        start=start,
        end=end,
    )
    items, total = await get_refunds_overview(db, filter, page, size)
    return PageResponse[RefundOverviewResponse](items=items, page=page, size=size, total=total)


@router.get("/analytics/system_health", response_model=SystemHealthResponse)
async def system_health(
    window_hours: Optional[int] = Query(None, ge=1),
    actor: Actor = Depends(require_admin("admin:analytics")),
    db: AsyncSession = Depends(get_db),
) -> SystemHealthResponse:
    return await get_system_health(db, window_hours)
