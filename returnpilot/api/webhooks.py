"""Payment webhook receiver.

Provides:
- POST /payment-webhook - payment gateway events
- HMAC signature verification over the raw body
- Deduplication by gateway event id
"""

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import BaseModel, Field

from returnpilot.application.payment_webhook_service import (
    InvalidSignatureError,
    PaymentWebhookService,
    get_payment_webhook_service,
)

logger = structlog.get_logger()

router = APIRouter(tags=["Webhooks"])


class WebhookResponse(BaseModel):
    """Response to webhook delivery."""

    success: bool = Field(..., description="Whether event was accepted")
    event_id: str = Field(..., description="Event ID")
    status: str = Field(..., description="Event status (processed, duplicate, ignored, failed)")
    message: str = Field(..., description="Status message")
    request_id: str | None = Field(None, description="Request the event referred to")


class WebhookErrorResponse(BaseModel):
    """Error response for webhook failures."""

    error_code: str = Field(..., description="Error code")
    message: str = Field(..., description="Error message")


def get_service() -> PaymentWebhookService:
    """Get webhook service."""
    return get_payment_webhook_service()


@router.post(
    "/payment-webhook",
    response_model=WebhookResponse,
    responses={
        400: {"model": WebhookErrorResponse},
        401: {"model": WebhookErrorResponse},
    },
    summary="Receive payment gateway webhook",
)
async def receive_payment_webhook(
    request: Request,
    service: Annotated[PaymentWebhookService, Depends(get_service)],
    x_razorpay_signature: Annotated[str | None, Header()] = None,
    x_razorpay_event_id: Annotated[str | None, Header()] = None,
) -> WebhookResponse:
    """Receive a payment event.

    The signature is checked against the raw body before anything is
    parsed. Captured or authorized payments carrying a ``request_id``
    note confirm that request's payment. Events not applied (unknown
    request, unpaid status) are acknowledged with ``success=false`` so
    the gateway does not retry forever.

    Raises:
        HTTPException: 401 on a bad signature, 400 on a malformed body.
    """
    body = await request.body()

    try:
        result = await service.handle(body, x_razorpay_signature, event_id=x_razorpay_event_id)
    except InvalidSignatureError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error_code": "INVALID_SIGNATURE", "message": str(e)},
        ) from e
    except ValueError as e:
        logger.warning("Malformed payment webhook", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error_code": "INVALID_PAYLOAD", "message": "Webhook body must be a JSON object"},
        ) from e

    return WebhookResponse(
        success=result.success,
        event_id=result.event_id,
        status=result.status.value,
        message=result.message,
        request_id=result.request_id,
    )
