"""Admin-related schemas."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, HttpUrl

from paylater_service.core.actors import ActorRole


class CreateMerchantRequest(BaseModel):
    """Create merchant request body."""

    name: str = Field(..., min_length=1, max_length=128)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    webhook_url: Optional[str] = Field(None, description="Optional webhook URL")


class CreateAPIKeyRequest(BaseModel):
    """Create API key request body."""

    role: ActorRole = Field(ActorRole.MERCHANT, description="merchant or admin")
    merchant_id: Optional[UUID] = Field(
        None,
        description="Merchant to associate with the key (required for merchant keys)",
    )
    scopes: list[str] = Field(..., description="List of scopes for the key")
    label: Optional[str] = Field(None, max_length=128)


class CreateAPIKeyResponse(BaseModel):
    """Create API key response."""

    id: str
    api_key: str = Field(..., description="The raw API key (only shown once)")
    role: ActorRole
    merchant_id: Optional[str] = None
    scopes: list[str]
    created_at: datetime


class SetMerchantStatusRequest(BaseModel):
    """Activate/deactivate merchant request body."""

    is_active: bool = Field(..., description="False to block the merchant's API keys")


class UpdateMerchantRequest(BaseModel):
    """Update merchant request body; omitted fields are left unchanged."""

    name: Optional[str] = Field(None, min_length=1, max_length=128)
    email: Optional[str] = Field(None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    webhook_url: Optional[HttpUrl] = Field(None, description="URL that receives event notifications")
