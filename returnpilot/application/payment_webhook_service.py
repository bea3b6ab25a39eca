"""Payment webhook processing.

Handles payment gateway webhooks with:
- HMAC signature verification over the raw body
- Event deduplication by gateway event id
- Payment confirmation through the lifecycle service
"""

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog

from returnpilot.application.lifecycle_service import RequestLifecycleService
from returnpilot.infrastructure.payment_client import (
    PaymentSignatureVerifier,
    PaymentVerification,
)

logger = structlog.get_logger()

PAYMENT_EVENTS = {"payment.captured", "payment.authorized"}


class EventStatus(str, Enum):
    """Status of a webhook event in the event log."""

    PROCESSING = "processing"
    PROCESSED = "processed"
    IGNORED = "ignored"
    FAILED = "failed"
    DUPLICATE = "duplicate"


@dataclass
class WebhookResult:
    """Result of webhook processing.

    Attributes:
        success: Whether processing succeeded.
        event_id: The event ID.
        status: Final event status.
        message: Status message.
        request_id: Request the event referred to, if any.
        duplicate: Whether this was a duplicate event.
    """

    success: bool
    event_id: str
    status: EventStatus
    message: str
    request_id: str | None = None
    duplicate: bool = False


class InvalidSignatureError(Exception):
    """Raised when a webhook signature does not verify."""


class InMemoryEventLog:
    """In-memory log of received webhook events for deduplication."""

    def __init__(self) -> None:
        self._events: dict[str, dict[str, Any]] = {}

    async def seen(self, event_id: str) -> bool:
        """Check whether an event was already handled or is in flight.

        Failed events are not counted so gateway retries get through.
        """
        event = self._events.get(event_id)
        return event is not None and event["status"] != EventStatus.FAILED.value

    async def record(self, event_id: str, event_type: str, status: EventStatus) -> None:
        self._events[event_id] = {
            "event_id": event_id,
            "event_type": event_type,
            "status": status.value,
            "received_at": datetime.now(timezone.utc),
        }

    async def update_status(
        self, event_id: str, status: EventStatus, error_message: str | None = None
    ) -> None:
        if event_id in self._events:
            self._events[event_id]["status"] = status.value
            if error_message:
                self._events[event_id]["error_message"] = error_message


def _payment_entity(payload: dict[str, Any]) -> dict[str, Any]:
    entity = payload.get("payload", {}).get("payment", {}).get("entity", {})
    return entity if isinstance(entity, dict) else {}


class PaymentWebhookService:
    """Service for processing payment gateway webhooks."""

    def __init__(
        self,
        lifecycle: RequestLifecycleService,
        verifier: PaymentSignatureVerifier | None,
        event_log: InMemoryEventLog | None = None,
    ) -> None:
        """Initialize webhook service.

        Args:
            lifecycle: Lifecycle service that confirms payments.
            verifier: Signature verifier; None rejects every webhook.
            event_log: Event log for deduplication.
        """
        self.lifecycle = lifecycle
        self.verifier = verifier
        self.event_log = event_log or InMemoryEventLog()

    async def handle(
        self, body: bytes, signature: str | None, event_id: str | None = None
    ) -> WebhookResult:
        """Verify and process a raw webhook delivery.

        Args:
            body: Raw request body, exactly as received.
            signature: Signature header value.
            event_id: Gateway event id header, used for deduplication.

        Returns:
            Processing result.

        Raises:
            InvalidSignatureError: If the signature does not verify.
            ValueError: If the body is not a JSON object.
        """
        if self.verifier is None or not self.verifier.verify(body, signature):
            logger.warning("Payment webhook signature rejected")
            raise InvalidSignatureError("Invalid webhook signature")

        payload = json.loads(body)
        if not isinstance(payload, dict):
            raise ValueError("Webhook body must be a JSON object")

        event_type = payload.get("event", "")
        entity = _payment_entity(payload)
        event_id = event_id or f"{event_type}:{entity.get('id', '')}"

        if await self.event_log.seen(event_id):
            logger.info("Duplicate payment webhook ignored", event_id=event_id)
            return WebhookResult(
                success=True,
                event_id=event_id,
                status=EventStatus.DUPLICATE,
                message="Event already processed",
                duplicate=True,
            )

        notes = entity.get("notes") if isinstance(entity.get("notes"), dict) else {}
        request_id = notes.get("request_id")

        if event_type not in PAYMENT_EVENTS or not request_id or not entity.get("id"):
            await self.event_log.record(event_id, event_type, EventStatus.IGNORED)
            logger.info("Payment webhook ignored", event_id=event_id, event_type=event_type)
            return WebhookResult(
                success=True,
                event_id=event_id,
                status=EventStatus.IGNORED,
                message="Event not relevant",
                request_id=request_id,
            )

        await self.event_log.record(event_id, event_type, EventStatus.PROCESSING)

        # The signed event is authoritative; no second gateway fetch
        verification = PaymentVerification.from_api_response(entity)
        result = await self.lifecycle.confirm_payment(
            request_id,
            verification.payment_id,
            amount=verification.amount,
            verification=verification,
        )

        if not result.success:
            await self.event_log.update_status(event_id, EventStatus.FAILED, result.error)
            logger.warning(
                "Payment webhook not applied",
                event_id=event_id,
                request_id=request_id,
                error_code=result.error_code,
            )
            return WebhookResult(
                success=False,
                event_id=event_id,
                status=EventStatus.FAILED,
                message=result.error or "Payment confirmation failed",
                request_id=request_id,
            )

        await self.event_log.update_status(event_id, EventStatus.PROCESSED)
        logger.info(
            "Payment webhook processed",
            event_id=event_id,
            request_id=request_id,
            status=result.request.status.value if result.request else None,
        )
        return WebhookResult(
            success=True,
            event_id=event_id,
            status=EventStatus.PROCESSED,
            message="Payment confirmed",
            request_id=request_id,
        )


# Global event log shared by webhook service instances
_event_log: InMemoryEventLog | None = None


def get_payment_webhook_service() -> PaymentWebhookService:
    """Get webhook service wired to the configured lifecycle service."""
    global _event_log
    from returnpilot.application.lifecycle_service import get_lifecycle_service
    from returnpilot.infrastructure.payment_client import get_signature_verifier

    if _event_log is None:
        _event_log = InMemoryEventLog()
    return PaymentWebhookService(
        lifecycle=get_lifecycle_service(),
        verifier=get_signature_verifier(),
        event_log=_event_log,
    )


def reset_event_log() -> None:
    """Reset the shared event log (for testing)."""
    global _event_log
    _event_log = None
