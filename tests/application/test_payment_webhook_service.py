"""Tests for payment webhook processing.

Tests:
- Signature verification over the raw body
- Deduplication by event id, with failed events retryable
- Payment confirmation through the lifecycle service
"""

import json
from typing import Any

import pytest
import pytest_asyncio

from factories import submit_command
from returnpilot.application.payment_webhook_service import (
    EventStatus,
    InMemoryEventLog,
    InvalidSignatureError,
    PaymentWebhookService,
)
from returnpilot.domain import RequestStatus
from returnpilot.infrastructure.payment_client import PaymentSignatureVerifier

SECRET = "whsec_test"


def webhook_body(
    request_id: str | None,
    event: str = "payment.captured",
    payment_id: str = "pay_1",
    status: str = "captured",
) -> bytes:
    notes: dict[str, Any] = {"request_id": request_id} if request_id else {}
    payload = {
        "event": event,
        "payload": {
            "payment": {
                "entity": {
                    "id": payment_id,
                    "status": status,
                    "amount": 10000,
                    "currency": "INR",
                    "notes": notes,
                }
            }
        },
    }
    return json.dumps(payload).encode()


@pytest.fixture
def verifier() -> PaymentSignatureVerifier:
    return PaymentSignatureVerifier(SECRET)


@pytest.fixture
def webhooks(service, verifier) -> PaymentWebhookService:
    return PaymentWebhookService(service, verifier, InMemoryEventLog())


@pytest_asyncio.fixture
async def waiting_request_id(service) -> str:
    result = await service.submit(submit_command())
    assert result.request.status == RequestStatus.WAITING_PAYMENT
    return result.request.request_id


class TestSignature:
    @pytest.mark.asyncio
    async def test_bad_signature_is_rejected(self, webhooks) -> None:
        with pytest.raises(InvalidSignatureError):
            await webhooks.handle(webhook_body("REQ-1"), "deadbeef")

    @pytest.mark.asyncio
    async def test_missing_signature_is_rejected(self, webhooks) -> None:
        with pytest.raises(InvalidSignatureError):
            await webhooks.handle(webhook_body("REQ-1"), None)

    @pytest.mark.asyncio
    async def test_unconfigured_secret_rejects_everything(self, service, verifier) -> None:
        body = webhook_body("REQ-1")
        webhooks = PaymentWebhookService(service, None)

        with pytest.raises(InvalidSignatureError):
            await webhooks.handle(body, verifier.sign(body))

    @pytest.mark.asyncio
    async def test_signature_covers_raw_body(self, webhooks, verifier) -> None:
        body = webhook_body("REQ-1")
        reformatted = json.dumps(json.loads(body), indent=2).encode()

        with pytest.raises(InvalidSignatureError):
            await webhooks.handle(reformatted, verifier.sign(body))

    @pytest.mark.asyncio
    async def test_non_object_body(self, webhooks, verifier) -> None:
        body = b"[1, 2, 3]"

        with pytest.raises(ValueError):
            await webhooks.handle(body, verifier.sign(body))


class TestProcessing:
    @pytest.mark.asyncio
    async def test_captured_payment_confirms_request(
        self, webhooks, verifier, waiting_request_id, shipping, payments
    ) -> None:
        body = webhook_body(waiting_request_id)

        result = await webhooks.handle(body, verifier.sign(body), event_id="evt_1")

        assert result.success
        assert result.status == EventStatus.PROCESSED
        assert result.request_id == waiting_request_id
        stored = await webhooks.lifecycle.store.get(waiting_request_id)
        assert stored.status == RequestStatus.SCHEDULED
        assert stored.payment_id == "pay_1"
        shipping.create_reverse_pickup.assert_awaited_once()
        # The signed event is trusted without a gateway round trip
        payments.verify.assert_not_called()

    @pytest.mark.asyncio
    async def test_duplicate_event_is_acknowledged_once(
        self, webhooks, verifier, waiting_request_id, shipping
    ) -> None:
        body = webhook_body(waiting_request_id)
        signature = verifier.sign(body)

        first = await webhooks.handle(body, signature, event_id="evt_1")
        second = await webhooks.handle(body, signature, event_id="evt_1")

        assert first.status == EventStatus.PROCESSED
        assert second.duplicate
        assert second.status == EventStatus.DUPLICATE
        assert shipping.create_reverse_pickup.await_count == 1

    @pytest.mark.asyncio
    async def test_event_id_falls_back_to_payment(
        self, webhooks, verifier, waiting_request_id
    ) -> None:
        body = webhook_body(waiting_request_id)

        result = await webhooks.handle(body, verifier.sign(body))

        assert result.event_id == "payment.captured:pay_1"

    @pytest.mark.asyncio
    async def test_webhook_after_client_confirmation(
        self, webhooks, verifier, waiting_request_id, service, shipping
    ) -> None:
        await service.confirm_payment(waiting_request_id, "pay_1")
        body = webhook_body(waiting_request_id)

        result = await webhooks.handle(body, verifier.sign(body), event_id="evt_1")

        assert result.status == EventStatus.PROCESSED
        assert shipping.create_reverse_pickup.await_count == 1

    @pytest.mark.asyncio
    async def test_failed_event_can_be_retried(
        self, webhooks, verifier, waiting_request_id, payments
    ) -> None:
        payments.verify.return_value = None
        unpaid = webhook_body(waiting_request_id, status="failed")

        failed = await webhooks.handle(unpaid, verifier.sign(unpaid), event_id="evt_1")

        assert not failed.success
        assert failed.status == EventStatus.FAILED

        paid = webhook_body(waiting_request_id)
        retried = await webhooks.handle(paid, verifier.sign(paid), event_id="evt_1")

        assert retried.status == EventStatus.PROCESSED

    @pytest.mark.asyncio
    async def test_unknown_request_fails(self, webhooks, verifier) -> None:
        body = webhook_body("REQ-MISSING")

        result = await webhooks.handle(body, verifier.sign(body), event_id="evt_1")

        assert not result.success
        assert result.status == EventStatus.FAILED

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [
            webhook_body("REQ-1", event="order.paid"),
            webhook_body(None),
        ],
    )
    async def test_irrelevant_events_are_ignored(self, webhooks, verifier, body) -> None:
        result = await webhooks.handle(body, verifier.sign(body), event_id="evt_x")

        assert result.success
        assert result.status == EventStatus.IGNORED
