"""Domain events and the boundary they are published through.

Events carry frozen response snapshots taken after the unit of work
committed, so consumers never touch live ORM state. Publishing never fails
the operation that produced the event.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol, Union

from paylater_service.core.config import settings
from paylater_service.schemas.merchant import MerchantResponse
from paylater_service.schemas.payment_intent import PaymentIntentResponse
from paylater_service.schemas.refund import RefundResponse
from paylater_service.schemas.transaction import TransactionResponse

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentConfirmed:
    payment_intent: PaymentIntentResponse
    transaction: TransactionResponse
    merchant: MerchantResponse


@dataclass(frozen=True)
class RefundApproved:
    """A refund was approved; ``transaction`` is the new refund transaction."""

    refund: RefundResponse
    transaction: TransactionResponse
    payment_intent: PaymentIntentResponse
    merchant: MerchantResponse


@dataclass(frozen=True)
class RefundRejected:
    """A refund was rejected; ``transaction`` is the original payment."""

    refund: RefundResponse
    transaction: TransactionResponse
    payment_intent: PaymentIntentResponse
    merchant: MerchantResponse


Event = Union[PaymentConfirmed, RefundApproved, RefundRejected]


class EventPublisher(Protocol):
    def publish(self, event: Event) -> None:
        ...


class QueueEventPublisher:
    """Hands events to an asyncio queue drained by the notification dispatcher."""

    def __init__(self, queue: "asyncio.Queue[Event]") -> None:
        self.queue = queue

    def publish(self, event: Event) -> None:
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.error(f"Event queue full, dropping {type(event).__name__}")


event_queue: "asyncio.Queue[Event]" = asyncio.Queue(maxsize=settings.EVENT_QUEUE_MAXSIZE)

_publisher = QueueEventPublisher(event_queue)


def get_event_publisher() -> EventPublisher:
    """FastAPI dependency returning the process-wide publisher."""
    return _publisher
