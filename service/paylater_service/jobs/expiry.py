"""Periodic sweep that expires overdue payment intents."""

import asyncio
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from paylater_service.core.config import settings
from paylater_service.db.session import AsyncSessionLocal
from paylater_service.services.payment_intents import expire_overdue_payment_intents

logger = logging.getLogger(__name__)


async def run_expiry_sweep(
    session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
) -> int:
    """Run one sweep on a fresh session."""
    async with session_factory() as db:
        expired = await expire_overdue_payment_intents(db)

    if expired:
        logger.info(f"Expiry sweep expired {expired} payment intents")
    return expired


async def expiry_sweep_loop(
    interval_seconds: Optional[float] = None,
    session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
) -> None:
    """Sweep every ``interval_seconds`` until cancelled."""
    interval = interval_seconds or settings.EXPIRY_SWEEP_INTERVAL_SECONDS
    logger.info(f"Expiry sweep started (every {interval}s)")

    while True:
        try:
            await run_expiry_sweep(session_factory)
        except Exception:
            logger.exception("Expiry sweep failed")
        await asyncio.sleep(interval)
