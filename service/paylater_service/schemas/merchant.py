"""Merchant-related schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, HttpUrl

from paylater_service.models.merchant import Merchant
from paylater_service.utils.date_utils import as_utc


class SetWebhookRequest(BaseModel):
    """Set webhook URL request body."""

    webhook_url: HttpUrl = Field(..., description="URL that receives event notifications")


class MerchantResponse(BaseModel):
    """Merchant response."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    email: str
    webhook_url: Optional[str] = None
    is_active: bool
    created_at: datetime

    @classmethod
    def from_model(cls, merchant: Merchant) -> "MerchantResponse":
        return cls(
            id=str(merchant.id),
            name=merchant.name,
            email=merchant.email,
            webhook_url=merchant.webhook_url,
            is_active=merchant.is_active,
            created_at=as_utc(merchant.created_at),
        )
