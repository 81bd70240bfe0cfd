"""API key authentication middleware."""

import secrets
from typing import Callable, Optional

import argon2
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from paylater_service.core.actors import Actor, ActorRole
from paylater_service.core.config import settings
from paylater_service.db import get_db
from paylater_service.models import APIKey, Merchant
from paylater_service.models.api_key import APIKeyStatus
from paylater_service.utils.date_utils import utcnow

# Password hasher for API keys
ph = argon2.PasswordHasher()

# HTTP Bearer security scheme
security = HTTPBearer()

# Characters after API_KEY_PREFIX stored in clear for lookup
KEY_LOOKUP_LENGTH = 8


def generate_api_key() -> str:
    """Generate a new API key."""
    random_part = secrets.token_urlsafe(32)
    return f"{settings.API_KEY_PREFIX}{random_part}"


def key_prefix_of(raw_key: str) -> str:
    """Lookup prefix stored alongside the hash."""
    return raw_key[: len(settings.API_KEY_PREFIX) + KEY_LOOKUP_LENGTH]


def hash_api_key(api_key: str) -> str:
    """Hash an API key using Argon2."""
    return ph.hash(api_key)


def verify_api_key(api_key: str, key_hash: str) -> bool:
    """Verify an API key against its hash."""
    try:
        ph.verify(key_hash, api_key)
        return True
    except argon2.exceptions.VerifyMismatchError:
        return False


async def get_api_key_by_raw_key(db: AsyncSession, raw_key: str) -> Optional[APIKey]:
    """Look up an API key by its raw value.

    Only keys sharing the raw key's lookup prefix are hash-checked.
    """
    result = await db.execute(
        select(APIKey).where(APIKey.key_prefix == key_prefix_of(raw_key))
    )
    candidates = result.scalars().all()

    for api_key in candidates:
        if verify_api_key(raw_key, api_key.key_hash):
            return api_key

    return None


async def get_current_api_key(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> APIKey:
    """Get the current API key from the request.

    Raises HTTPException if the key is invalid or revoked.
    """
    raw_key = credentials.credentials

    api_key = await get_api_key_by_raw_key(db, raw_key)

    if api_key is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error_code": "INVALID_API_KEY", "message": "Invalid API key"},
        )

    if api_key.status != APIKeyStatus.ACTIVE:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error_code": "API_KEY_REVOKED", "message": "API key has been revoked"},
        )

    # Update last_used_at
    api_key.last_used_at = utcnow()
    await db.commit()

    return api_key


def require_scope(required_scope: str) -> Callable[..., APIKey]:
    """Create a dependency that requires a specific scope.

    Usage:
        @router.get("/endpoint")
        async def endpoint(api_key: APIKey = Depends(require_scope("refund:read"))):
            ...
    """

    async def dependency(
        api_key: APIKey = Depends(get_current_api_key),
    ) -> APIKey:
        if not api_key.has_scope(required_scope):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "error_code": "FORBIDDEN_SCOPE",
                    "message": f"API key does not have required scope: {required_scope}",
                },
            )
        return api_key

    return dependency


def require_actor(required_scope: str) -> Callable[..., Actor]:
    """Create a dependency resolving the caller into an Actor.

    Merchant keys must belong to an active merchant.
    """

    async def dependency(
        api_key: APIKey = Depends(require_scope(required_scope)),
        db: AsyncSession = Depends(get_db),
    ) -> Actor:
        if api_key.role is ActorRole.MERCHANT:
            merchant = None
            if api_key.merchant_id is not None:
                merchant = await db.get(Merchant, api_key.merchant_id)

            if merchant is None:
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail={"error_code": "INVALID_API_KEY", "message": "API key has no merchant"},
                )
            if not merchant.is_active:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail={"error_code": "MERCHANT_INACTIVE", "message": "Merchant account is inactive"},
                )

        return api_key.to_actor()

    return dependency


def require_admin(required_scope: str) -> Callable[..., Actor]:
    """Like require_actor, but only admin keys pass."""

    async def dependency(
        actor: Actor = Depends(require_actor(required_scope)),
    ) -> Actor:
        if not actor.is_admin:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"error_code": "FORBIDDEN", "message": "Administrator API key required"},
            )
        return actor

    return dependency
