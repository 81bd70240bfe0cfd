"""SQLAlchemy models for the PayLater service."""

from paylater_service.models.api_key import APIKey, APIKeyStatus
from paylater_service.models.merchant import Merchant
from paylater_service.models.payment_intent import Currency, PaymentIntent, PaymentIntentStatus
from paylater_service.models.refund import Refund, RefundStatus
from paylater_service.models.transaction import (
    ImmutableTransactionError,
    PaymentMethod,
    Transaction,
    TransactionStatus,
)

__all__ = [
    "APIKey",
    "APIKeyStatus",
    "Currency",
    "ImmutableTransactionError",
    "Merchant",
    "PaymentIntent",
    "PaymentIntentStatus",
    "PaymentMethod",
    "Refund",
    "RefundStatus",
    "Transaction",
    "TransactionStatus",
]
