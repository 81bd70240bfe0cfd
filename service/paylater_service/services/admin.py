"""Admin service for merchant and API key management."""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from paylater_service.core.actors import ActorRole
from paylater_service.core.exceptions import AlreadyExists, NotFound, ValidationFailed
from paylater_service.middleware.auth import generate_api_key, hash_api_key, key_prefix_of
from paylater_service.models import APIKey, Merchant
from paylater_service.models.api_key import APIKeyStatus
from paylater_service.schemas.admin import CreateAPIKeyResponse
from paylater_service.schemas.merchant import MerchantResponse
from paylater_service.services import ledger_store
from paylater_service.services.ledger_store import MerchantFilter
from paylater_service.utils.date_utils import as_utc

logger = logging.getLogger(__name__)


async def admin_create_merchant(
    db: AsyncSession,
    name: str,
    email: str,
    webhook_url: Optional[str] = None,
) -> MerchantResponse:
    """Create a new merchant.

    Args:
        db: Database session
        name: Display name
        email: Contact address, unique across merchants
        webhook_url: Optional webhook URL

    Returns:
        MerchantResponse
    """
    email = email.strip().lower()

    if await ledger_store.find_merchant_by_email(db, email) is not None:
        raise AlreadyExists(
            f"Merchant with email {email} already exists",
            error_code="MERCHANT_EXISTS",
        )

    merchant = Merchant(
        name=name.strip(),
        email=email,
        webhook_url=webhook_url,
        is_active=True,
    )
    db.add(merchant)
    await ledger_store.commit(db)

    logger.info(f"Created merchant {merchant.id} ({merchant.email})")
    return MerchantResponse.from_model(merchant)


async def admin_set_merchant_active(
    db: AsyncSession,
    merchant_id: UUID,
    is_active: bool,
) -> MerchantResponse:
    """Activate or deactivate a merchant.

    Inactive merchants can no longer authenticate.
    """
    merchant = await ledger_store.find_merchant(db, merchant_id)
    merchant.is_active = is_active
    await ledger_store.commit(db)

    logger.info(f"Merchant {merchant.id} is now {'active' if is_active else 'inactive'}")
    return MerchantResponse.from_model(merchant)


async def admin_list_merchants(
    db: AsyncSession,
    filter: MerchantFilter,
    page: int,
    size: int,
) -> tuple[list[Merchant], int]:
    """Search merchants, newest first."""
    merchants, total = await ledger_store.search_merchants(db, filter, page, size)
    logger.info(f"Found {total} merchants")
    return merchants, total


async def admin_get_merchant(db: AsyncSession, merchant_id: UUID) -> MerchantResponse:
    merchant = await ledger_store.find_merchant(db, merchant_id)
    return MerchantResponse.from_model(merchant)


async def admin_update_merchant(
    db: AsyncSession,
    merchant_id: UUID,
    name: Optional[str] = None,
    email: Optional[str] = None,
    webhook_url: Optional[str] = None,
) -> MerchantResponse:
    """Update a merchant's name, email or webhook URL.

    Only the fields given are changed. A new email must not belong to
    another merchant.
    """
    merchant = await ledger_store.find_merchant(db, merchant_id)

    if name is not None:
        merchant.name = name.strip()
    if email is not None:
        email = email.strip().lower()
        existing = await ledger_store.find_merchant_by_email(db, email)
        if existing is not None and existing.id != merchant.id:
            raise AlreadyExists(
                f"Merchant with email {email} already exists",
                error_code="MERCHANT_EXISTS",
            )
        merchant.email = email
    if webhook_url is not None:
        merchant.webhook_url = webhook_url

    await ledger_store.commit(db)

    logger.info(f"Updated merchant {merchant.id}")
    return MerchantResponse.from_model(merchant)


async def admin_create_api_key(
    db: AsyncSession,
    role: ActorRole,
    scopes: list[str],
    merchant_id: Optional[UUID] = None,
    label: Optional[str] = None,
) -> CreateAPIKeyResponse:
    """Create a new API key.

    Args:
        db: Database session
        role: merchant or admin
        scopes: List of scopes
        merchant_id: Merchant the key acts for (merchant keys only)
        label: Optional label

    Returns:
        CreateAPIKeyResponse with the raw API key (only shown once)
    """
    if role is ActorRole.MERCHANT:
        if merchant_id is None:
            raise ValidationFailed(
                "merchant_id is required for merchant keys",
                details={"field": "merchant_id"},
            )
        await ledger_store.find_merchant(db, merchant_id)
    elif merchant_id is not None:
        raise ValidationFailed(
            "Admin keys cannot be bound to a merchant",
            details={"field": "merchant_id"},
        )

    # Generate API key
    raw_key = generate_api_key()

    api_key = APIKey(
        key_prefix=key_prefix_of(raw_key),
        key_hash=hash_api_key(raw_key),
        role=role,
        merchant_id=merchant_id,
        label=label,
        scopes=scopes,
        status=APIKeyStatus.ACTIVE,
    )
    db.add(api_key)
    await ledger_store.commit(db)

    logger.info(f"Created {role.value} API key {api_key.id}")
    return CreateAPIKeyResponse(
        id=str(api_key.id),
        api_key=raw_key,
        role=api_key.role,
        merchant_id=str(api_key.merchant_id) if api_key.merchant_id else None,
        scopes=api_key.scopes,
        created_at=as_utc(api_key.created_at),
    )


async def admin_revoke_api_key(
    db: AsyncSession,
    key_id: UUID,
) -> None:
    """Revoke an API key.

    Args:
        db: Database session
        key_id: API key ID to revoke
    """
    result = await db.execute(select(APIKey).where(APIKey.id == key_id))
    api_key = result.scalar_one_or_none()

    if api_key is None:
        raise NotFound("API key not found", error_code="API_KEY_NOT_FOUND")

    api_key.status = APIKeyStatus.REVOKED
    await ledger_store.commit(db)

    logger.info(f"Revoked API key {key_id}")
