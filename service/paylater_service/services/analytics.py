"""Admin analytics over merchants, transactions and refunds.

Aggregation happens in the ledger store; this module turns the grouped rows
into response models and logs what was found.
"""

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from paylater_service.core.config import settings
from paylater_service.core.exceptions import ValidationFailed
from paylater_service.schemas.analytics import (
    CreatedBucket,
    MerchantHealth,
    MerchantsOverviewResponse,
    RefundHealth,
    RefundOverviewResponse,
    SystemHealthResponse,
    TransactionHealth,
    TransactionOverviewResponse,
)
from paylater_service.services import ledger_store
from paylater_service.services.ledger_store import RefundSummaryFilter, TransactionFilter
from paylater_service.utils.date_utils import utcnow

logger = logging.getLogger(__name__)


async def get_merchants_overview(
    db: AsyncSession,
    created_start: Optional[datetime] = None,
    created_end: Optional[datetime] = None,
) -> MerchantsOverviewResponse:
    """Merchant counts and monthly sign-ups, optionally for a creation window."""
    active, inactive = await ledger_store.count_merchants_by_activity(
        db, created_start, created_end
    )
    total = active + inactive

    created_times = await ledger_store.find_merchant_creation_times(db, created_start, created_end)
    buckets = Counter(created_at.strftime("%Y-%m") for created_at in created_times)

    return MerchantsOverviewResponse(
        total=total,
        active=active,
        inactive=inactive,
        active_ratio=active / total if total else 0.0,
        created_trend=[
            CreatedBucket(bucket_start=month, count=count) for month, count in sorted(buckets.items())
        ],
    )


async def get_transactions_overview(
    db: AsyncSession,
    filter: TransactionFilter,
    page: int,
    size: int,
) -> tuple[list[TransactionOverviewResponse], int]:
    summaries, total = await ledger_store.summarize_transactions(db, filter, page, size)
    logger.info(f"Found {total} transaction overviews")
    return [TransactionOverviewResponse.from_summary(summary) for summary in summaries], total


async def get_refunds_overview(
    db: AsyncSession,
    filter: RefundSummaryFilter,
    page: int,
    size: int,
) -> tuple[list[RefundOverviewResponse], int]:
    summaries, total = await ledger_store.summarize_refunds(db, filter, page, size)
    logger.info(f"Found {total} refund overviews")
    return [RefundOverviewResponse.from_summary(summary) for summary in summaries], total


async def get_system_health(
    db: AsyncSession,
    window_hours: Optional[int] = None,
    now: Optional[datetime] = None,
) -> SystemHealthResponse:
    """Activity over the last ``window_hours`` hours.

    Pending refunds and merchant counts are current totals, not bound to the
    window.
    """
    window_hours = window_hours if window_hours is not None else settings.HEALTH_WINDOW_HOURS
    if window_hours < 1:
        raise ValidationFailed(
            "window_hours must be at least 1",
            details={"field": "window_hours"},
        )

    since = (now or utcnow()) - timedelta(hours=window_hours)

    by_status = await ledger_store.count_transactions_by_status(db, since)
    pending, approved, rejected = await ledger_store.count_refund_activity(db, since)
    active, inactive = await ledger_store.count_merchants_by_activity(db)

    logger.info(f"Retrieved system health metrics for a {window_hours} hour window")
    return SystemHealthResponse(
        window_hours=window_hours,
        transactions=TransactionHealth(
            total=sum(by_status.values()),
            by_status={status.value: count for status, count in by_status.items()},
        ),
        refunds=RefundHealth(
            pending=pending,
            approved_last_window=approved,
            rejected_last_window=rejected,
        ),
        merchants=MerchantHealth(active=active, inactive=inactive),
    )
