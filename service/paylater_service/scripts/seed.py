"""Seed script for creating test data."""

import asyncio

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from paylater_service.core.actors import ActorRole
from paylater_service.core.config import settings
from paylater_service.db import Base
from paylater_service.middleware.auth import hash_api_key, key_prefix_of
from paylater_service.models import APIKey, APIKeyStatus, Merchant


# Predefined API keys for testing (in production, these would be generated)
ADMIN_API_KEY = "pl_admin_test_key_123456789012345678901"
MERCHANT_API_KEY = "pl_merch_test_key_123456789012345678901"

MERCHANT_SCOPES = [
    "merchant:read",
    "merchant:write",
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


async def seed_database(session: AsyncSession) -> None:
    """Seed the database with test data."""
    print("Starting database seed...")

    # Check if already seeded
    result = await session.execute(select(Merchant).where(Merchant.email == "billing@acme.example"))
    if result.scalar_one_or_none():
        print("Database already seeded. Skipping...")
        return

    print("Creating merchant Acme Store...")
    merchant = Merchant(
        name="Acme Store",
        email="billing@acme.example",
        webhook_url=None,
        is_active=True,
    )
    session.add(merchant)
    await session.flush()

    print("Creating admin API key...")
    admin_key = APIKey(
        key_prefix=key_prefix_of(ADMIN_API_KEY),
        key_hash=hash_api_key(ADMIN_API_KEY),
        role=ActorRole.ADMIN,
        label="seed admin",
        scopes=ADMIN_SCOPES,
        status=APIKeyStatus.ACTIVE,
    )
    session.add(admin_key)

    print("Creating merchant's API key...")
    merchant_key = APIKey(
        key_prefix=key_prefix_of(MERCHANT_API_KEY),
        key_hash=hash_api_key(MERCHANT_API_KEY),
        role=ActorRole.MERCHANT,
        merchant_id=merchant.id,
        label="seed merchant",
        scopes=MERCHANT_SCOPES,
        status=APIKeyStatus.ACTIVE,
    )
    session.add(merchant_key)

    await session.commit()

    print("\n" + "=" * 60)
    print("DATABASE SEEDED SUCCESSFULLY!")
    print("=" * 60)
    print(f"\nMerchant: {merchant.name} (ID: {merchant.id})")
    print("\nAPI Keys (save these, they won't be shown again):")
    print(f"  - Admin key: {ADMIN_API_KEY}")
    print(f"  - Merchant's key: {MERCHANT_API_KEY}")
    print(f"\nAdmin scopes: {', '.join(ADMIN_SCOPES)}")
    print(f"Merchant's scopes: {', '.join(MERCHANT_SCOPES)}")
    print("=" * 60)


async def main() -> None:
    """Main entry point."""
    engine = create_async_engine(settings.DATABASE_URL_ASYNC, echo=False)
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    # SQLite databases are not migrated with Alembic
    if engine.dialect.name == "sqlite":
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async with async_session() as session:
        await seed_database(session)

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
