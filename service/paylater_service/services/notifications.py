"""Merchant notifications: webhooks and email.

The dispatcher drains the event queue and, for every event, POSTs a JSON
webhook to the merchant's URL and sends an email to the merchant's address.
Each channel is retried with exponential backoff; a delivery that still
fails is logged and dropped so one bad receiver never stalls the queue.
"""

import asyncio
import enum
import logging
import smtplib
from email.message import EmailMessage
from typing import Any, Awaitable, Callable, Optional, Protocol

import httpx

from paylater_service.core.config import Settings, settings
from paylater_service.core.retry import RETRYABLE_EXCEPTIONS, call_with_retry
from paylater_service.services.events import Event, PaymentConfirmed, RefundApproved, RefundRejected

logger = logging.getLogger(__name__)


class WebhookEventType(str, enum.Enum):
    """Webhook event type enumeration."""

    PAYMENT_INTENT_CONFIRMED = "payment_intent_confirmed"
    REFUND_APPROVED = "refund_approved"
    REFUND_REJECTED = "refund_rejected"


def build_webhook_payload(event: Event) -> dict[str, Any]:
    """Render the camelCase JSON body posted to the merchant."""
    if isinstance(event, PaymentConfirmed):
        return {
            "eventType": WebhookEventType.PAYMENT_INTENT_CONFIRMED.value,
            "paymentIntentId": event.payment_intent.id,
            "transactionId": event.transaction.id,
            "amount": event.transaction.amount,
            "currency": event.transaction.currency.value,
            "status": event.payment_intent.status.value,
        }

    refund = event.refund
    event_type = (
        WebhookEventType.REFUND_APPROVED
        if isinstance(event, RefundApproved)
        else WebhookEventType.REFUND_REJECTED
    )
    payload: dict[str, Any] = {
        "eventType": event_type.value,
        "paymentIntentId": event.payment_intent.id,
        "transactionId": event.transaction.id,
        "refundId": refund.id,
        "amount": refund.amount,
        "currency": refund.currency.value,
        "status": refund.status.value,
        "reason": refund.reason,
    }
    if isinstance(event, RefundApproved) and refund.approved_at is not None:
        payload["approvedAt"] = refund.approved_at.isoformat()
    if isinstance(event, RefundRejected) and refund.rejected_reason is not None:
        payload["rejectedReason"] = refund.rejected_reason
        payload["rejectedAt"] = refund.rejected_at.isoformat() if refund.rejected_at else None
    return payload


def build_email(event: Event) -> tuple[str, str]:
    """Subject and plain-text body of the merchant email for an event."""
    name = event.merchant.name

    if isinstance(event, PaymentConfirmed):
        intent = event.payment_intent
        status = intent.status.value.upper()
        description = intent.metadata.description or "No description provided."
        return (
            f"Payment {status} - PayLater",
            f"Hello {name},\n\n"
            f"Payment {intent.id} for {intent.amount} {intent.currency.value} "
            f"was marked {status}.\n"
            f"Reference: {intent.metadata.reference_id}\n"
            f"Description: {description}\n",
        )

    refund = event.refund
    if isinstance(event, RefundApproved):
        return (
            "Refund approved - PayLater",
            f"Hello {name},\n\n"
            f"Your refund of {refund.amount} {refund.currency.value} was approved.\n"
            f"Reason: {refund.reason}\n",
        )

    return (
        "Refund rejected - PayLater",
        f"Hello {name},\n\n"
        f"Your refund of {refund.amount} {refund.currency.value} was rejected.\n"
        f"Reason: {refund.reason}\n"
        f"Rejection reason: {refund.rejected_reason}\n",
    )


class Mailer(Protocol):
    async def send(self, to: str, subject: str, body: str) -> None:
        ...


class LoggingMailer:
    """Mailer used when no SMTP server is configured; only logs the message."""

    async def send(self, to: str, subject: str, body: str) -> None:
        logger.info(f"Email to {to}: {subject}")


class SmtpMailer:
    """Sends plain-text mail through an SMTP server."""

    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def _send_message(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password or "")
            smtp.send_message(message)

    async def send(self, to: str, subject: str, body: str) -> None:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)

        # smtplib blocks
        await asyncio.to_thread(self._send_message, message)


def build_mailer(config: Settings = settings) -> Mailer:
    if not config.SMTP_HOST:
        return LoggingMailer()
    return SmtpMailer(
        host=config.SMTP_HOST,
        port=config.SMTP_PORT,
        sender=config.MAIL_FROM,
        username=config.SMTP_USERNAME,
        password=config.SMTP_PASSWORD,
        use_tls=config.SMTP_USE_TLS,
    )


class NotificationDispatcher:
    """Consumes published events and notifies the merchant they concern."""

    def __init__(
        self,
        queue: "asyncio.Queue[Event]",
        http_client: httpx.AsyncClient,
        mailer: Mailer,
        *,
        max_attempts: int = 3,
        base_delay: float = 2.0,
        multiplier: float = 2.0,
        max_delay: float = 10.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.queue = queue
        self.http_client = http_client
        self.mailer = mailer
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.multiplier = multiplier
        self.max_delay = max_delay
        self.sleep = sleep

    @classmethod
    def from_settings(
        cls,
        queue: "asyncio.Queue[Event]",
        http_client: httpx.AsyncClient,
        config: Settings = settings,
    ) -> "NotificationDispatcher":
        return cls(
            queue,
            http_client,
            build_mailer(config),
            max_attempts=config.WEBHOOK_MAX_ATTEMPTS,
            base_delay=config.WEBHOOK_BACKOFF_BASE_SECONDS,
            multiplier=config.WEBHOOK_BACKOFF_MULTIPLIER,
            max_delay=config.WEBHOOK_BACKOFF_MAX_SECONDS,
        )

    async def _retry(self, func: Callable[[], Awaitable[Any]], description: str) -> Any:
        return await call_with_retry(
            func,
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            multiplier=self.multiplier,
            max_delay=self.max_delay,
            sleep=self.sleep,
            description=description,
        )

    async def deliver_webhook(self, event: Event) -> bool:
        """POST the event to the merchant's webhook URL.

        Returns:
            True if the receiver answered 2xx within the allowed attempts
        """
        url = event.merchant.webhook_url
        event_name = type(event).__name__
        if not url:
            logger.warning(f"Merchant {event.merchant.id} has no webhook URL, skipping {event_name}")
            return False

        payload = build_webhook_payload(event)

        async def post() -> httpx.Response:
            response = await self.http_client.post(url, json=payload)
            response.raise_for_status()
            return response

        try:
            await self._retry(post, f"Webhook {event_name} to {url}")
        except RETRYABLE_EXCEPTIONS:
            logger.exception(f"Webhook {event_name} to {url} failed after {self.max_attempts} attempts")
            return False

        logger.info(f"Delivered {event_name} webhook to merchant {event.merchant.id}")
        return True

    async def send_email(self, event: Event) -> bool:
        """Email the merchant about the event."""
        subject, body = build_email(event)
        to = event.merchant.email

        try:
            await self._retry(lambda: self.mailer.send(to, subject, body), f"Email to {to}")
        except RETRYABLE_EXCEPTIONS:
            logger.exception(f"Email '{subject}' to {to} failed after {self.max_attempts} attempts")
            return False
        return True

    async def dispatch(self, event: Event) -> None:
        await self.deliver_webhook(event)
        await self.send_email(event)

    async def run(self) -> None:
        """Drain the queue until cancelled."""
        logger.info("Notification dispatcher started")
        while True:
            event = await self.queue.get()
            try:
                await self.dispatch(event)
            except Exception:
                logger.exception(f"Unexpected error dispatching {type(event).__name__}")
            finally:
                self.queue.task_done()
