"""Test configuration and fixtures."""

import os
from decimal import Decimal
from typing import AsyncGenerator, Awaitable, Callable, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from paylater_service.core.actors import Actor, ActorRole
from paylater_service.db import Base, get_db
from paylater_service.main import app
from paylater_service.middleware.auth import hash_api_key, key_prefix_of
from paylater_service.models import (
    APIKey,
    APIKeyStatus,
    Currency,
    Merchant,
    PaymentIntent,
    PaymentMethod,
    Transaction,
)
from paylater_service.schemas.payment_intent import BillableItem, PaymentIntentMetadata
from paylater_service.schemas.transaction import TransactionMetadata
from paylater_service.services import ledger_store
from paylater_service.services.events import Event, get_event_publisher
from paylater_service.services.payment_intents import create_payment_intent
from paylater_service.services.transactions import record_confirmation

# Point TEST_DATABASE_URL at a PostgreSQL database to run against it instead
TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL")

MERCHANT_SCOPES = [
    "merchant:*",
    "payment_intent:*",
    "transaction:read",
    "refund:create",
    "refund:read",
]
ADMIN_SCOPES = [
    "admin:*",
    "payment_intent:read",
    "payment_intent:cancel",
    "transaction:read",
    "refund:read",
]


class RecordingPublisher:
    """Keeps published events in memory."""

    def __init__(self) -> None:
        self.events: list[Event] = []

    def publish(self, event: Event) -> None:
        self.events.append(event)

    def of_type(self, event_type: type) -> list[Event]:
        return [event for event in self.events if isinstance(event, event_type)]


@pytest_asyncio.fixture
async def test_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Create test database engine."""
    url = TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'paylater_test.db'}"
    engine = create_async_engine(url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    publisher: RecordingPublisher,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client bound to the test database."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_event_publisher] = lambda: publisher

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def test_merchants(db_session: AsyncSession) -> dict[str, Merchant]:
    """Create two merchants with webhooks and one without."""
    merchant = Merchant(
        name="Test Merchant",
        email="merchant@example.com",
        webhook_url="https://merchant.example/webhooks",
    )
    other = Merchant(
        name="Other Merchant",
        email="other@example.com",
        webhook_url="https://other.example/webhooks",
    )
    no_webhook = Merchant(
        name="Quiet Merchant",
        email="quiet@example.com",
    )
    db_session.add_all([merchant, other, no_webhook])
    await db_session.commit()

    return {"merchant": merchant, "other": other, "no_webhook": no_webhook}


def _api_key(
    raw: str, role: ActorRole, scopes: list[str], merchant: Optional[Merchant] = None
) -> APIKey:
    return APIKey(
        key_prefix=key_prefix_of(raw),
        key_hash=hash_api_key(raw),
        role=role,
        merchant_id=merchant.id if merchant else None,
        scopes=scopes,
        status=APIKeyStatus.ACTIVE,
    )


@pytest_asyncio.fixture
async def test_api_keys(db_session: AsyncSession, test_merchants: dict) -> dict:
    """Create test API keys."""
    raw_keys = {
        "admin": "pl_admin001_test_key_1234567890123456",
        "merchant": "pl_merch001_test_key_1234567890123456",
        "other": "pl_other001_test_key_1234567890123456",
        "no_webhook": "pl_quiet001_test_key_1234567890123456",
        "limited": "pl_limit001_test_key_1234567890123456",
    }
    keys = {
        "admin": _api_key(raw_keys["admin"], ActorRole.ADMIN, ADMIN_SCOPES),
        "merchant": _api_key(
            raw_keys["merchant"], ActorRole.MERCHANT, MERCHANT_SCOPES, test_merchants["merchant"]
        ),
        "other": _api_key(
            raw_keys["other"], ActorRole.MERCHANT, MERCHANT_SCOPES, test_merchants["other"]
        ),
        "no_webhook": _api_key(
            raw_keys["no_webhook"], ActorRole.MERCHANT, MERCHANT_SCOPES, test_merchants["no_webhook"]
        ),
        # Merchant key that can only read its profile
        "limited": _api_key(
            raw_keys["limited"], ActorRole.MERCHANT, ["merchant:read"], test_merchants["merchant"]
        ),
    }
    db_session.add_all(keys.values())
    await db_session.commit()

    return {name: {"key": keys[name], "raw": raw_keys[name]} for name in keys}


@pytest.fixture
def auth_headers(test_api_keys: dict) -> Callable[[str], dict[str, str]]:
    def headers(name: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {test_api_keys[name]['raw']}"}

    return headers


@pytest.fixture
def merchant_actor(test_merchants: dict) -> Actor:
    return Actor.merchant(test_merchants["merchant"].id)


@pytest.fixture
def other_merchant_actor(test_merchants: dict) -> Actor:
    return Actor.merchant(test_merchants["other"].id)


@pytest.fixture
def admin_actor(test_api_keys: dict) -> Actor:
    return Actor.admin(test_api_keys["admin"]["key"].id)


@pytest.fixture
def intent_metadata() -> PaymentIntentMetadata:
    return PaymentIntentMetadata(
        reference_id="order-1001",
        email="customer@example.com",
        description="Two widgets",
    )


@pytest.fixture
def pay_intent(
    db_session: AsyncSession,
    merchant_actor: Actor,
    intent_metadata: PaymentIntentMetadata,
) -> Callable[..., Awaitable[tuple[PaymentIntent, Transaction]]]:
    """Create a payment intent and record a successful payment for it."""

    async def pay(
        amount: str = "100.00",
        currency: Currency = Currency.USD,
        actor: Actor = merchant_actor,
    ) -> tuple[PaymentIntent, Transaction]:
        intent = await create_payment_intent(
            db_session,
            actor,
            items=[BillableItem(name="Widget", unit_amount=amount, quantity=1)],
            currency=currency,
            metadata=intent_metadata,
        )
        transaction = await record_confirmation(
            db_session,
            payment_intent_id=intent.id,
            amount=Decimal(amount),
            currency=currency,
            method=PaymentMethod.CARD,
            actor=actor,
            metadata=TransactionMetadata(reference_id=intent_metadata.reference_id),
        )
        await ledger_store.commit(db_session)
        return intent, transaction

    return pay


@pytest_asyncio.fixture
async def paid_intent(pay_intent) -> dict:
    """A completed payment intent of 100.00 USD and its successful transaction."""
    intent, transaction = await pay_intent()
    return {"intent": intent, "transaction": transaction}
