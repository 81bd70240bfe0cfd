"""Tests for the refund workflow."""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from paylater_service.core.actors import Actor
from paylater_service.core.exceptions import (
    ConcurrencyConflict,
    Forbidden,
    InvalidState,
    NotFound,
    RefundExceedsBalance,
    ValidationFailed,
)
from paylater_service.models import (
    PaymentIntentStatus,
    RefundStatus,
    TransactionStatus,
)
from paylater_service.services import ledger_store, refunds
from paylater_service.services.events import RefundApproved, RefundRejected
from paylater_service.services.ledger_store import RefundFilter, TransactionFilter
from paylater_service.services.refunds import (
    approve_refund,
    get_refund,
    list_refunds,
    reject_refund,
    request_refund,
)
from paylater_service.utils.date_utils import utcnow


@pytest.mark.asyncio
async def test_request_refund_creates_pending_refund(
    db_session: AsyncSession, paid_intent: dict, merchant_actor: Actor
):
    transaction = paid_intent["transaction"]

    refund = await request_refund(db_session, transaction.id, "40.00", "Damaged item", merchant_actor)

    assert refund.status == RefundStatus.PENDING
    assert refund.amount == Decimal("40.00")
    assert refund.currency == transaction.currency
    assert refund.requested_by == merchant_actor.id

    # Requesting does not touch the intent
    intent = await ledger_store.find_payment_intent(db_session, paid_intent["intent"].id)
    assert intent.status == PaymentIntentStatus.COMPLETED
    assert intent.refunded_amount == Decimal("0")


@pytest.mark.asyncio
async def test_partial_then_full_refund(
    db_session: AsyncSession,
    paid_intent: dict,
    merchant_actor: Actor,
    admin_actor: Actor,
    publisher,
):
    intent = paid_intent["intent"]
    transaction = paid_intent["transaction"]

    first = await request_refund(db_session, transaction.id, "40.00", "Partial", merchant_actor)
    approved = await approve_refund(db_session, first.id, admin_actor, publisher)

    assert approved.status == RefundStatus.APPROVED
    assert approved.approved_by == admin_actor.id
    assert approved.approved_at is not None

    intent = await ledger_store.find_payment_intent(db_session, intent.id)
    assert intent.status == PaymentIntentStatus.PARTIALLY_REFUNDED
    assert intent.refunded_amount == Decimal("40.00")

    second = await request_refund(db_session, transaction.id, "60.00", "Rest", merchant_actor)
    await approve_refund(db_session, second.id, admin_actor, publisher)

    intent = await ledger_store.find_payment_intent(db_session, intent.id)
    assert intent.status == PaymentIntentStatus.REFUNDED
    assert intent.refunded_amount == Decimal("100.00")

    # One refund transaction per approval, each pointing at the original payment
    refund_transactions, total = await ledger_store.search_transactions(
        db_session,
        TransactionFilter(payment_intent_id=intent.id, statuses=[TransactionStatus.REFUNDED]),
        page=0,
        size=10,
    )
    assert total == 2
    assert {tx.parent_transaction_id for tx in refund_transactions} == {transaction.id}
    assert sorted(tx.amount for tx in refund_transactions) == [Decimal("40.00"), Decimal("60.00")]

    events = publisher.of_type(RefundApproved)
    assert len(events) == 2
    assert events[-1].payment_intent.status == PaymentIntentStatus.REFUNDED
    assert events[-1].transaction.parent_transaction_id == str(transaction.id)


@pytest.mark.asyncio
async def test_refund_transaction_keeps_original_details(
    db_session: AsyncSession,
    paid_intent: dict,
    merchant_actor: Actor,
    admin_actor: Actor,
    publisher,
):
    original = paid_intent["transaction"]
    refund = await request_refund(db_session, original.id, "25.00", "Late delivery", merchant_actor)
    await approve_refund(db_session, refund.id, admin_actor, publisher)

    refund_tx = publisher.of_type(RefundApproved)[0].transaction
    assert refund_tx.status == TransactionStatus.REFUNDED
    assert refund_tx.amount == "25.0000"
    assert refund_tx.currency == original.currency
    assert refund_tx.payment_method == original.payment_method
    assert refund_tx.confirmed_by == str(admin_actor.id)
    assert refund_tx.metadata.reference_id == original.transaction_metadata["reference_id"]
    assert refund_tx.metadata.refund_reason == "Late delivery"


@pytest.mark.asyncio
async def test_request_refund_exceeding_payment(
    db_session: AsyncSession, paid_intent: dict, merchant_actor: Actor
):
    with pytest.raises(RefundExceedsBalance):
        await request_refund(
            db_session, paid_intent["transaction"].id, "100.01", "Too much", merchant_actor
        )


@pytest.mark.asyncio
async def test_pending_refunds_may_overcommit_but_approval_does_not(
    db_session: AsyncSession,
    paid_intent: dict,
    merchant_actor: Actor,
    admin_actor: Actor,
    publisher,
):
    """Only approved refunds count against the balance."""
    transaction_id = paid_intent["transaction"].id
    intent_id = paid_intent["intent"].id

    first = await request_refund(db_session, transaction_id, "70.00", "First", merchant_actor)
    second = await request_refund(db_session, transaction_id, "70.00", "Second", merchant_actor)
    first_id, second_id = first.id, second.id

    await approve_refund(db_session, first_id, admin_actor, publisher)

    with pytest.raises(RefundExceedsBalance):
        await approve_refund(db_session, second_id, admin_actor, publisher)

    refund = await ledger_store.find_refund(db_session, second_id)
    assert refund.status == RefundStatus.PENDING

    intent = await ledger_store.find_payment_intent(db_session, intent_id)
    assert intent.refunded_amount == Decimal("70.00")
    assert await ledger_store.sum_approved_refund_amount(db_session, intent_id) == Decimal("70.00")


@pytest.mark.asyncio
async def test_request_refund_rejects_bad_amount_and_reason(
    db_session: AsyncSession, paid_intent: dict, merchant_actor: Actor
):
    transaction_id = paid_intent["transaction"].id

    with pytest.raises(ValidationFailed):
        await request_refund(db_session, transaction_id, "0", "Zero", merchant_actor)

    with pytest.raises(ValidationFailed):
        await request_refund(db_session, transaction_id, "-5", "Negative", merchant_actor)

    with pytest.raises(ValidationFailed):
        await request_refund(db_session, transaction_id, "10.00", "   ", merchant_actor)


@pytest.mark.asyncio
async def test_only_owning_merchant_can_request_refund(
    db_session: AsyncSession,
    paid_intent: dict,
    other_merchant_actor: Actor,
    admin_actor: Actor,
):
    transaction_id = paid_intent["transaction"].id

    with pytest.raises(Forbidden):
        await request_refund(db_session, transaction_id, "10.00", "Not mine", other_merchant_actor)

    with pytest.raises(Forbidden):
        await request_refund(db_session, transaction_id, "10.00", "Admins approve", admin_actor)


@pytest.mark.asyncio
async def test_request_refund_unknown_transaction(db_session: AsyncSession, merchant_actor: Actor):
    with pytest.raises(NotFound) as exc_info:
        await request_refund(db_session, uuid4(), "10.00", "Missing", merchant_actor)

    assert exc_info.value.error_code == "TRANSACTION_NOT_FOUND"


@pytest.mark.asyncio
async def test_merchants_cannot_approve_or_reject(
    db_session: AsyncSession, paid_intent: dict, merchant_actor: Actor, publisher
):
    refund = await request_refund(
        db_session, paid_intent["transaction"].id, "10.00", "Please", merchant_actor
    )

    with pytest.raises(Forbidden):
        await approve_refund(db_session, refund.id, merchant_actor, publisher)

    with pytest.raises(Forbidden):
        await reject_refund(db_session, refund.id, "No", merchant_actor, publisher)

    assert publisher.events == []


@pytest.mark.asyncio
async def test_reject_refund(
    db_session: AsyncSession,
    paid_intent: dict,
    merchant_actor: Actor,
    admin_actor: Actor,
    publisher,
):
    refund = await request_refund(
        db_session, paid_intent["transaction"].id, "10.00", "Changed mind", merchant_actor
    )

    rejected = await reject_refund(db_session, refund.id, "Outside window", admin_actor, publisher)

    assert rejected.status == RefundStatus.REJECTED
    assert rejected.rejected_reason == "Outside window"
    assert rejected.rejected_by == admin_actor.id
    assert rejected.rejected_at is not None

    # The ledger is untouched
    intent = await ledger_store.find_payment_intent(db_session, paid_intent["intent"].id)
    assert intent.status == PaymentIntentStatus.COMPLETED
    assert intent.refunded_amount == Decimal("0")

    events = publisher.of_type(RefundRejected)
    assert len(events) == 1
    assert events[0].transaction.id == str(paid_intent["transaction"].id)


@pytest.mark.asyncio
async def test_resolved_refunds_are_final(
    db_session: AsyncSession,
    paid_intent: dict,
    merchant_actor: Actor,
    admin_actor: Actor,
    publisher,
):
    transaction_id = paid_intent["transaction"].id
    intent_id = paid_intent["intent"].id
    rejected = await request_refund(db_session, transaction_id, "10.00", "One", merchant_actor)
    approved = await request_refund(db_session, transaction_id, "10.00", "Two", merchant_actor)
    rejected_id, approved_id = rejected.id, approved.id

    await reject_refund(db_session, rejected_id, "No", admin_actor, publisher)
    await approve_refund(db_session, approved_id, admin_actor, publisher)

    with pytest.raises(InvalidState):
        await reject_refund(db_session, rejected_id, "Again", admin_actor, publisher)
    with pytest.raises(InvalidState):
        await approve_refund(db_session, rejected_id, admin_actor, publisher)
    with pytest.raises(InvalidState):
        await approve_refund(db_session, approved_id, admin_actor, publisher)
    with pytest.raises(InvalidState):
        await reject_refund(db_session, approved_id, "Too late", admin_actor, publisher)

    refund = await ledger_store.find_refund(db_session, rejected_id)
    assert refund.status == RefundStatus.REJECTED
    assert refund.rejected_reason == "No"

    intent = await ledger_store.find_payment_intent(db_session, intent_id)
    assert intent.refunded_amount == Decimal("10.00")


@pytest.mark.asyncio
async def test_reject_requires_reason(
    db_session: AsyncSession,
    paid_intent: dict,
    merchant_actor: Actor,
    admin_actor: Actor,
    publisher,
):
    refund = await request_refund(
        db_session, paid_intent["transaction"].id, "10.00", "Please", merchant_actor
    )

    with pytest.raises(ValidationFailed):
        await reject_refund(db_session, refund.id, "  ", admin_actor, publisher)


@pytest.mark.asyncio
async def test_fully_refunded_intent_accepts_no_more_refunds(
    db_session: AsyncSession,
    paid_intent: dict,
    merchant_actor: Actor,
    admin_actor: Actor,
    publisher,
):
    transaction_id = paid_intent["transaction"].id
    refund = await request_refund(db_session, transaction_id, "100.00", "Everything", merchant_actor)
    await approve_refund(db_session, refund.id, admin_actor, publisher)

    with pytest.raises(InvalidState):
        await request_refund(db_session, transaction_id, "0.01", "One more", merchant_actor)


@pytest.mark.asyncio
async def test_approve_retries_after_concurrency_conflict(
    db_session: AsyncSession,
    paid_intent: dict,
    merchant_actor: Actor,
    admin_actor: Actor,
    publisher,
    monkeypatch,
):
    refund = await request_refund(
        db_session, paid_intent["transaction"].id, "30.00", "Retry me", merchant_actor
    )

    original_approve_once = refunds._approve_once
    attempts = []

    async def flaky_approve_once(db, refund_id, actor):
        attempts.append(refund_id)
        if len(attempts) == 1:
            raise ConcurrencyConflict()
        return await original_approve_once(db, refund_id, actor)

    monkeypatch.setattr(refunds, "_approve_once", flaky_approve_once)

    approved = await approve_refund(db_session, refund.id, admin_actor, publisher)

    assert len(attempts) == 2
    assert approved.status == RefundStatus.APPROVED
    assert len(publisher.of_type(RefundApproved)) == 1


@pytest.mark.asyncio
async def test_approve_gives_up_after_max_attempts(
    db_session: AsyncSession,
    paid_intent: dict,
    merchant_actor: Actor,
    admin_actor: Actor,
    publisher,
    monkeypatch,
):
    refund = await request_refund(
        db_session, paid_intent["transaction"].id, "30.00", "Never", merchant_actor
    )

    attempts = []

    async def always_conflicting(db, refund_id, actor):
        attempts.append(refund_id)
        raise ConcurrencyConflict()

    monkeypatch.setattr(refunds, "_approve_once", always_conflicting)
    monkeypatch.setattr(refunds.settings, "REFUND_APPROVAL_MAX_ATTEMPTS", 3)

    with pytest.raises(ConcurrencyConflict):
        await approve_refund(db_session, refund.id, admin_actor, publisher)

    assert len(attempts) == 3
    assert publisher.events == []


@pytest.mark.asyncio
async def test_approve_rechecks_refund_after_locking_intent(
    session_factory: async_sessionmaker[AsyncSession],
    db_session: AsyncSession,
    paid_intent: dict,
    merchant_actor: Actor,
    admin_actor: Actor,
    publisher,
    monkeypatch,
):
    refund = await request_refund(
        db_session, paid_intent["transaction"].id, "30.00", "Too late", merchant_actor
    )

    original_lookup = refunds.get_transaction_and_payment_intent
    lookups = []

    async def lookup_after_rejection(db, transaction_id, for_update=False):
        lookups.append(transaction_id)
        # Another admin rejects the refund while this approval waits for the lock
        async with session_factory() as other:
            competing = await ledger_store.find_refund(other, refund.id)
            competing.status = RefundStatus.REJECTED
            competing.rejected_reason = "Duplicate request"
            competing.rejected_by = admin_actor.id
            competing.rejected_at = utcnow()
            await ledger_store.save_refund(other, competing)
            await ledger_store.commit(other)
        return await original_lookup(db, transaction_id, for_update=for_update)

    monkeypatch.setattr(refunds, "get_transaction_and_payment_intent", lookup_after_rejection)

    with pytest.raises(InvalidState) as exc_info:
        await approve_refund(db_session, refund.id, admin_actor, publisher)

    assert exc_info.value.details == {"status": "rejected"}
    assert len(lookups) == 1
    assert publisher.events == []

    monkeypatch.undo()
    intent = await ledger_store.find_payment_intent(db_session, paid_intent["intent"].id)
    assert intent.refunded_amount == Decimal("0")
    assert intent.status == PaymentIntentStatus.COMPLETED


@pytest.mark.asyncio
async def test_refund_visibility(
    db_session: AsyncSession,
    paid_intent: dict,
    merchant_actor: Actor,
    other_merchant_actor: Actor,
    admin_actor: Actor,
):
    refund = await request_refund(
        db_session, paid_intent["transaction"].id, "10.00", "Visible", merchant_actor
    )

    assert (await get_refund(db_session, refund.id, merchant_actor)).id == refund.id
    assert (await get_refund(db_session, refund.id, admin_actor)).id == refund.id
    with pytest.raises(Forbidden):
        await get_refund(db_session, refund.id, other_merchant_actor)

    _, own_total = await list_refunds(db_session, RefundFilter(), merchant_actor, 0, 20)
    _, other_total = await list_refunds(db_session, RefundFilter(), other_merchant_actor, 0, 20)
    _, admin_total = await list_refunds(db_session, RefundFilter(), admin_actor, 0, 20)

    assert own_total == 1
    assert other_total == 0
    assert admin_total == 1


@pytest.mark.asyncio
async def test_list_refunds_filters_by_status(
    db_session: AsyncSession,
    paid_intent: dict,
    merchant_actor: Actor,
    admin_actor: Actor,
    publisher,
):
    transaction_id = paid_intent["transaction"].id
    approved = await request_refund(db_session, transaction_id, "10.00", "A", merchant_actor)
    rejected = await request_refund(db_session, transaction_id, "10.00", "B", merchant_actor)
    await request_refund(db_session, transaction_id, "10.00", "C", merchant_actor)

    await approve_refund(db_session, approved.id, admin_actor, publisher)
    await reject_refund(db_session, rejected.id, "No", admin_actor, publisher)

    items, total = await list_refunds(
        db_session, RefundFilter(statuses=[RefundStatus.PENDING]), admin_actor, 0, 20
    )
    assert total == 1
    assert items[0].reason == "C"

    items, total = await list_refunds(
        db_session,
        RefundFilter(statuses=[RefundStatus.APPROVED, RefundStatus.REJECTED]),
        admin_actor,
        0,
        20,
    )
    assert total == 2
    assert {item.id for item in items} == {approved.id, rejected.id}
