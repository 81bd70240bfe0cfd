"""Common schemas used across the API."""

from decimal import Decimal
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

AMOUNT_QUANTUM = Decimal("0.0001")


class ErrorResponse(BaseModel):
    """Standard error response."""

    error_code: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class PageResponse(BaseModel, Generic[T]):
    """Page of results, newest first."""

    items: list[T]
    page: int
    size: int
    total: int


def format_amount(value: Decimal) -> str:
    """Render an amount with the four fractional digits it is stored with."""
    return f"{Decimal(value).quantize(AMOUNT_QUANTUM):f}"
