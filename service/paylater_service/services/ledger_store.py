"""Persistence for payment intents, transactions, refunds and merchants.

Every lookup re-reads the row from the database instead of trusting the
session identity map, so decisions are always made on current state.
Saves flush immediately: a stale version raises ConcurrencyConflict, any
other database failure raises PersistenceFailure.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, TypeVar
from uuid import UUID

from sqlalchemy import Select, and_, case, func, inspect, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from paylater_service.core.exceptions import ConcurrencyConflict, NotFound, PersistenceFailure
from paylater_service.models import (
    Currency,
    Merchant,
    PaymentIntent,
    PaymentIntentStatus,
    Refund,
    RefundStatus,
    Transaction,
    TransactionStatus,
)
from paylater_service.utils.date_utils import as_utc

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class PaymentIntentFilter:
    """Search criteria for payment intents."""

    merchant_id: Optional[UUID] = None
    statuses: Optional[list[PaymentIntentStatus]] = None
    currencies: Optional[list[Currency]] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None


@dataclass
class TransactionFilter:
    """Search criteria for transactions (date window on confirmed_at)."""

    merchant_id: Optional[UUID] = None
    payment_intent_id: Optional[UUID] = None
    statuses: Optional[list[TransactionStatus]] = None
    currencies: Optional[list[Currency]] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None


@dataclass
class RefundFilter:
    """Search criteria for refunds."""

    merchant_id: Optional[UUID] = None
    statuses: Optional[list[RefundStatus]] = None
    currencies: Optional[list[Currency]] = None
    approved_start: Optional[datetime] = None
    approved_end: Optional[datetime] = None
    rejected_start: Optional[datetime] = None
    rejected_end: Optional[datetime] = None


@dataclass
class MerchantFilter:
    """Search criteria for merchants (name and email match case-insensitive substrings)."""

    name: Optional[str] = None
    email: Optional[str] = None
    is_active: Optional[bool] = None
    created_start: Optional[datetime] = None
    created_end: Optional[datetime] = None


@dataclass
class RefundSummaryFilter:
    """Criteria for refund summaries (date window on requested_at)."""

    merchant_id: Optional[UUID] = None
    currencies: Optional[list[Currency]] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None


@dataclass(frozen=True)
class TransactionSummary:
    merchant_id: UUID
    merchant_name: str
    currency: Currency
    count: int
    total_amount: Decimal
    succeeded: int


@dataclass(frozen=True)
class RefundSummary:
    merchant_id: UUID
    merchant_name: str
    currency: Currency
    count: int
    approved: int
    rejected: int
    total_refunded_amount: Decimal


async def _flush(db: AsyncSession, entity: Any) -> None:
    # Identity is read up front; a failed flush expires the instance and any
    # attribute access would need a rollback first
    entity_name = type(entity).__name__
    identity = inspect(entity).identity
    entity_id = identity[0] if identity else None

    try:
        await db.flush()
    except StaleDataError as exc:
        logger.warning(f"Stale write detected for {entity_name} {entity_id}: {exc}")
        raise ConcurrencyConflict(details={"entity": entity_name}) from exc
    except SQLAlchemyError as exc:
        logger.exception(f"Failed to persist {entity_name} {entity_id}")
        raise PersistenceFailure() from exc


async def _execute(db: AsyncSession, stmt: Select):
    try:
        return await db.execute(stmt)
    except SQLAlchemyError as exc:
        logger.exception("Ledger store query failed")
        raise PersistenceFailure() from exc


async def _find_one(
    db: AsyncSession,
    model: type[T],
    entity_id: UUID,
    error_code: str,
    for_update: bool = False,
) -> T:
    stmt = (
        select(model)
        .where(model.id == entity_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()

    result = await _execute(db, stmt)
    entity = result.scalar_one_or_none()
    if entity is None:
        raise NotFound(
            f"{model.__name__} with id {entity_id} not found",
            error_code=error_code,
        )
    return entity


async def _paginate(
    db: AsyncSession,
    stmt: Select,
    order_by: Any,
    page: int,
    size: int,
) -> tuple[list[Any], int]:
    count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
    total = (await _execute(db, count_stmt)).scalar_one()

    page_stmt = stmt.order_by(order_by.desc()).offset(page * size).limit(size)
    items = list((await _execute(db, page_stmt)).scalars().all())
    return items, total


# Payment intents


async def save_payment_intent(db: AsyncSession, intent: PaymentIntent) -> PaymentIntent:
    """Insert or update a payment intent (version-checked on update)."""
    db.add(intent)
    await _flush(db, intent)
    return intent


async def find_payment_intent(
    db: AsyncSession,
    payment_intent_id: UUID,
    for_update: bool = False,
) -> PaymentIntent:
    """Load a payment intent, optionally locking its row for the transaction."""
    return await _find_one(
        db, PaymentIntent, payment_intent_id, "PAYMENT_INTENT_NOT_FOUND", for_update
    )


async def find_overdue_pending_intents(db: AsyncSession, now: datetime) -> list[PaymentIntent]:
    """Pending intents whose expiry time is at or before ``now``."""
    result = await _execute(
        db,
        select(PaymentIntent)
        .where(
            PaymentIntent.status == PaymentIntentStatus.PENDING,
            PaymentIntent.expires_at <= as_utc(now),
        )
        .order_by(PaymentIntent.expires_at)
        .execution_options(populate_existing=True),
    )
    return list(result.scalars().all())


async def search_payment_intents(
    db: AsyncSession,
    filter: PaymentIntentFilter,
    page: int,
    size: int,
) -> tuple[list[PaymentIntent], int]:
    stmt = select(PaymentIntent)
    if filter.merchant_id is not None:
        stmt = stmt.where(PaymentIntent.merchant_id == filter.merchant_id)
    if filter.statuses:
        stmt = stmt.where(PaymentIntent.status.in_(filter.statuses))
    if filter.currencies:
        stmt = stmt.where(PaymentIntent.currency.in_(filter.currencies))
    if filter.start is not None:
        stmt = stmt.where(PaymentIntent.created_at >= as_utc(filter.start))
    if filter.end is not None:
        stmt = stmt.where(PaymentIntent.created_at <= as_utc(filter.end))

    return await _paginate(db, stmt, PaymentIntent.created_at, page, size)


# Transactions


async def save_transaction(db: AsyncSession, transaction: Transaction) -> Transaction:
    """Append a transaction to the ledger."""
    db.add(transaction)
    await _flush(db, transaction)
    return transaction


async def find_transaction(db: AsyncSession, transaction_id: UUID) -> Transaction:
    return await _find_one(db, Transaction, transaction_id, "TRANSACTION_NOT_FOUND")


async def search_transactions(
    db: AsyncSession,
    filter: TransactionFilter,
    page: int,
    size: int,
) -> tuple[list[Transaction], int]:
    stmt = select(Transaction)
    if filter.merchant_id is not None:
        stmt = stmt.join(
            PaymentIntent, Transaction.payment_intent_id == PaymentIntent.id
        ).where(PaymentIntent.merchant_id == filter.merchant_id)
    if filter.payment_intent_id is not None:
        stmt = stmt.where(Transaction.payment_intent_id == filter.payment_intent_id)
    if filter.statuses:
        stmt = stmt.where(Transaction.status.in_(filter.statuses))
    if filter.currencies:
        stmt = stmt.where(Transaction.currency.in_(filter.currencies))
    if filter.start is not None:
        stmt = stmt.where(Transaction.confirmed_at >= as_utc(filter.start))
    if filter.end is not None:
        stmt = stmt.where(Transaction.confirmed_at <= as_utc(filter.end))

    return await _paginate(db, stmt, Transaction.confirmed_at, page, size)


# Refunds


async def save_refund(db: AsyncSession, refund: Refund) -> Refund:
    db.add(refund)
    await _flush(db, refund)
    return refund


async def find_refund(db: AsyncSession, refund_id: UUID) -> Refund:
    return await _find_one(db, Refund, refund_id, "REFUND_NOT_FOUND")


async def sum_approved_refund_amount(db: AsyncSession, payment_intent_id: UUID) -> Decimal:
    """Total of approved refunds across every transaction of a payment intent."""
    result = await _execute(
        db,
        select(func.coalesce(func.sum(Refund.amount), Decimal("0")))
        .join(Transaction, Refund.transaction_id == Transaction.id)
        .where(
            Transaction.payment_intent_id == payment_intent_id,
            Refund.status == RefundStatus.APPROVED,
        ),
    )
    total = result.scalar()
    return Decimal(str(total)) if total is not None else Decimal("0")


async def search_refunds(
    db: AsyncSession,
    filter: RefundFilter,
    page: int,
    size: int,
) -> tuple[list[Refund], int]:
    stmt = select(Refund)
    if filter.merchant_id is not None:
        stmt = (
            stmt.join(Transaction, Refund.transaction_id == Transaction.id)
            .join(PaymentIntent, Transaction.payment_intent_id == PaymentIntent.id)
            .where(PaymentIntent.merchant_id == filter.merchant_id)
        )
    if filter.statuses:
        stmt = stmt.where(Refund.status.in_(filter.statuses))
    if filter.currencies:
        stmt = stmt.where(Refund.currency.in_(filter.currencies))
    if filter.approved_start is not None:
        stmt = stmt.where(Refund.approved_at >= as_utc(filter.approved_start))
    if filter.approved_end is not None:
        stmt = stmt.where(Refund.approved_at <= as_utc(filter.approved_end))
    if filter.rejected_start is not None:
        stmt = stmt.where(Refund.rejected_at >= as_utc(filter.rejected_start))
    if filter.rejected_end is not None:
        stmt = stmt.where(Refund.rejected_at <= as_utc(filter.rejected_end))

    return await _paginate(db, stmt, Refund.requested_at, page, size)


# Merchants


async def find_merchant(db: AsyncSession, merchant_id: UUID) -> Merchant:
    return await _find_one(db, Merchant, merchant_id, "MERCHANT_NOT_FOUND")


async def find_merchant_by_email(db: AsyncSession, email: str) -> Optional[Merchant]:
    result = await _execute(db, select(Merchant).where(Merchant.email == email))
    return result.scalar_one_or_none()


def _merchant_created_window(stmt: Select, start: Optional[datetime], end: Optional[datetime]) -> Select:
    if start is not None:
        stmt = stmt.where(Merchant.created_at >= as_utc(start))
    if end is not None:
        stmt = stmt.where(Merchant.created_at <= as_utc(end))
    return stmt


async def search_merchants(
    db: AsyncSession,
    filter: MerchantFilter,
    page: int,
    size: int,
) -> tuple[list[Merchant], int]:
    stmt = select(Merchant)
    if filter.name:
        stmt = stmt.where(Merchant.name.icontains(filter.name, autoescape=True))
    if filter.email:
        stmt = stmt.where(Merchant.email.icontains(filter.email, autoescape=True))
    if filter.is_active is not None:
        stmt = stmt.where(Merchant.is_active == filter.is_active)
    stmt = _merchant_created_window(stmt, filter.created_start, filter.created_end)

    return await _paginate(db, stmt, Merchant.created_at, page, size)


# Analytics


async def _paginate_groups(
    db: AsyncSession,
    stmt: Select,
    order_by: tuple[Any, ...],
    page: int,
    size: int,
) -> tuple[list[Any], int]:
    count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
    total = (await _execute(db, count_stmt)).scalar_one()

    page_stmt = stmt.order_by(*order_by).offset(page * size).limit(size)
    rows = list((await _execute(db, page_stmt)).all())
    return rows, total


def _as_decimal(value: Any) -> Decimal:
    return Decimal(str(value)) if value is not None else Decimal("0")


def _count_where(condition: Any) -> Any:
    return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)


async def count_merchants_by_activity(
    db: AsyncSession,
    created_start: Optional[datetime] = None,
    created_end: Optional[datetime] = None,
) -> tuple[int, int]:
    """Active and inactive merchant counts, optionally for a creation window."""
    stmt = select(Merchant.is_active, func.count(Merchant.id)).group_by(Merchant.is_active)
    stmt = _merchant_created_window(stmt, created_start, created_end)

    counts = {is_active: count for is_active, count in (await _execute(db, stmt)).all()}
    return counts.get(True, 0), counts.get(False, 0)


async def find_merchant_creation_times(
    db: AsyncSession,
    created_start: Optional[datetime] = None,
    created_end: Optional[datetime] = None,
) -> list[datetime]:
    stmt = select(Merchant.created_at).order_by(Merchant.created_at)
    stmt = _merchant_created_window(stmt, created_start, created_end)
    result = await _execute(db, stmt)
    return [as_utc(created_at) for created_at in result.scalars().all()]


async def summarize_transactions(
    db: AsyncSession,
    filter: TransactionFilter,
    page: int,
    size: int,
) -> tuple[list[TransactionSummary], int]:
    """Transaction volume per merchant and currency, largest total first.

    Amounts in different currencies are never added together.
    """
    total_amount = func.coalesce(func.sum(Transaction.amount), 0).label("total_amount")
    stmt = (
        select(
            PaymentIntent.merchant_id,
            Merchant.name,
            Transaction.currency,
            func.count(Transaction.id),
            total_amount,
            _count_where(
                Transaction.status.in_([TransactionStatus.SUCCESS, TransactionStatus.REFUNDED])
            ),
        )
        .select_from(Transaction)
        .join(PaymentIntent, Transaction.payment_intent_id == PaymentIntent.id)
        .join(Merchant, PaymentIntent.merchant_id == Merchant.id)
        .group_by(PaymentIntent.merchant_id, Merchant.name, Transaction.currency)
    )
    if filter.merchant_id is not None:
        stmt = stmt.where(PaymentIntent.merchant_id == filter.merchant_id)
    if filter.statuses:
        stmt = stmt.where(Transaction.status.in_(filter.statuses))
    if filter.currencies:
        stmt = stmt.where(Transaction.currency.in_(filter.currencies))
    if filter.start is not None:
        stmt = stmt.where(Transaction.confirmed_at >= as_utc(filter.start))
    if filter.end is not None:
        stmt = stmt.where(Transaction.confirmed_at <= as_utc(filter.end))

    rows, total = await _paginate_groups(
        db, stmt, (total_amount.desc(), Merchant.name, Transaction.currency), page, size
    )
    summaries = [
        TransactionSummary(
            merchant_id=merchant_id,
            merchant_name=merchant_name,
            currency=currency,
            count=count,
            total_amount=_as_decimal(amount),
            succeeded=int(succeeded),
        )
        for merchant_id, merchant_name, currency, count, amount, succeeded in rows
    ]
    return summaries, total


async def summarize_refunds(
    db: AsyncSession,
    filter: RefundSummaryFilter,
    page: int,
    size: int,
) -> tuple[list[RefundSummary], int]:
    """Refund outcomes per merchant and currency, largest refunded total first.

    Only approved refunds count towards the refunded total.
    """
    refunded_amount = func.coalesce(
        func.sum(case((Refund.status == RefundStatus.APPROVED, Refund.amount), else_=0)), 0
    ).label("refunded_amount")
    stmt = (
        select(
            PaymentIntent.merchant_id,
            Merchant.name,
            Refund.currency,
            func.count(Refund.id),
            _count_where(Refund.status == RefundStatus.APPROVED),
            _count_where(Refund.status == RefundStatus.REJECTED),
            refunded_amount,
        )
        .select_from(Refund)
        .join(Transaction, Refund.transaction_id == Transaction.id)
        .join(PaymentIntent, Transaction.payment_intent_id == PaymentIntent.id)
        .join(Merchant, PaymentIntent.merchant_id == Merchant.id)
        .group_by(PaymentIntent.merchant_id, Merchant.name, Refund.currency)
    )
    if filter.merchant_id is not None:
        stmt = stmt.where(PaymentIntent.merchant_id == filter.merchant_id)
    if filter.currencies:
        stmt = stmt.where(Refund.currency.in_(filter.currencies))
    if filter.start is not None:
        stmt = stmt.where(Refund.requested_at >= as_utc(filter.start))
    if filter.end is not None:
        stmt = stmt.where(Refund.requested_at <= as_utc(filter.end))

    rows, total = await _paginate_groups(
        db, stmt, (refunded_amount.desc(), Merchant.name, Refund.currency), page, size
    )
    summaries = [
        RefundSummary(
            merchant_id=merchant_id,
            merchant_name=merchant_name,
            currency=currency,
            count=count,
            approved=int(approved),
            rejected=int(rejected),
            total_refunded_amount=_as_decimal(amount),
        )
        for merchant_id, merchant_name, currency, count, approved, rejected, amount in rows
    ]
    return summaries, total


async def count_transactions_by_status(
    db: AsyncSession, since: datetime
) -> dict[TransactionStatus, int]:
    """Transactions confirmed at or after ``since``, counted per status."""
    stmt = (
        select(Transaction.status, func.count(Transaction.id))
        .where(Transaction.confirmed_at >= as_utc(since))
        .group_by(Transaction.status)
    )
    return {status: count for status, count in (await _execute(db, stmt)).all()}


async def count_refund_activity(db: AsyncSession, since: datetime) -> tuple[int, int, int]:
    """Pending refunds overall, plus refunds approved and rejected since ``since``."""
    since = as_utc(since)
    stmt = select(
        _count_where(Refund.status == RefundStatus.PENDING),
        _count_where(
            and_(Refund.status == RefundStatus.APPROVED, Refund.approved_at >= since)
        ),
        _count_where(
            and_(Refund.status == RefundStatus.REJECTED, Refund.rejected_at >= since)
        ),
    )
    pending, approved, rejected = (await _execute(db, stmt)).one()
    return int(pending), int(approved), int(rejected)


async def commit(db: AsyncSession) -> None:
    """Commit the unit of work, translating database failures."""
    try:
        await db.commit()
    except StaleDataError as exc:
        raise ConcurrencyConflict() from exc
    except SQLAlchemyError as exc:
        logger.exception("Commit failed")
        raise PersistenceFailure() from exc
