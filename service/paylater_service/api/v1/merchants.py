"""Merchant self-service endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from paylater_service.core.actors import Actor
from paylater_service.db import get_db
from paylater_service.middleware.auth import require_actor
from paylater_service.schemas.merchant import MerchantResponse, SetWebhookRequest
from paylater_service.services.merchants import get_own_merchant, set_webhook_url

router = APIRouter()


@router.get("/me", response_model=MerchantResponse)
async def get_current_merchant(
    actor: Actor = Depends(require_actor("merchant:read")),
    db: AsyncSession = Depends(get_db),
) -> MerchantResponse:
    """Get the current merchant profile."""
    merchant = await get_own_merchant(db, actor)
    return MerchantResponse.from_model(merchant)


@router.put("/me/webhook", response_model=MerchantResponse)
async def set_webhook(
    request: SetWebhookRequest,
    actor: Actor = Depends(require_actor("merchant:write")),
    db: AsyncSession = Depends(get_db),
) -> MerchantResponse:
    """Set the webhook URL that receives event notifications."""
    merchant = await set_webhook_url(db, actor, str(request.webhook_url))
    return MerchantResponse.from_model(merchant)
