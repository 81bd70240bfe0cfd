"""Merchant self-service."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from paylater_service.core.actors import Actor
from paylater_service.core.exceptions import Forbidden
from paylater_service.models import Merchant
from paylater_service.services import ledger_store

logger = logging.getLogger(__name__)


async def get_own_merchant(db: AsyncSession, actor: Actor) -> Merchant:
    if not actor.is_merchant:
        raise Forbidden("Only merchants have a merchant profile")
    return await ledger_store.find_merchant(db, actor.id)


async def set_webhook_url(db: AsyncSession, actor: Actor, webhook_url: str) -> Merchant:
    """Set the URL that receives the merchant's event notifications."""
    merchant = await get_own_merchant(db, actor)
    merchant.webhook_url = webhook_url
    await ledger_store.commit(db)

    logger.info(f"Updated webhook URL for merchant {merchant.id}")
    return merchant
