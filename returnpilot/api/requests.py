"""Customer request endpoints.

Provides:
- POST /requests - submit a return or exchange
- POST /requests/{id}/confirm-payment - client-side payment callback
- GET /requests/{id} - request status with live tracking
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from returnpilot.api.errors import service_error
from returnpilot.api.schemas import (
    ActionResponse,
    ConfirmPaymentBody,
    ErrorResponse,
    RequestResponse,
    SubmitRequestBody,
    SubmitRequestResponse,
    get_result_to_response,
    request_to_response,
)
from returnpilot.application.lifecycle_service import (
    RequestLifecycleService,
    SubmitRequestCommand,
    get_lifecycle_service,
)

router = APIRouter(prefix="/requests", tags=["Requests"])


# ============================================================================
# Dependencies
# ============================================================================


def get_service() -> RequestLifecycleService:
    """Get lifecycle service."""
    return get_lifecycle_service()


# ============================================================================
# Endpoints
# ============================================================================


@router.post(
    "",
    response_model=SubmitRequestResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
    summary="Submit return or exchange",
)
async def submit_request(
    body: SubmitRequestBody,
    service: Annotated[RequestLifecycleService, Depends(get_service)],
) -> SubmitRequestResponse:
    """Submit a return or exchange request.

    Succeeds once the request is stored, even if pickup scheduling
    failed; such failures are listed in ``warnings``. A request whose
    processing fee is still unpaid comes back as ``waiting_payment``.

    Raises:
        HTTPException: If the submission is invalid or its payment id
            is not confirmed by the gateway.
    """
    command = SubmitRequestCommand(
        type=body.type,
        order_number=body.order_number,
        items=[item.model_dump() for item in body.items],
        reason=body.reason,
        email=body.email,
        customer_name=body.customer_name,
        customer_phone=body.customer_phone,
        shipping_address=body.shipping_address,
        new_address=body.new_address,
        new_city=body.new_city,
        new_pincode=body.new_pincode,
        comments=body.comments,
        images=body.images,
        payment_id=body.payment_id,
        payment_amount=body.payment_amount,
    )
    result = await service.submit(command)

    if not result.success or not result.request:
        raise service_error(result.error_code, result.error, "SUBMIT_FAILED")

    return SubmitRequestResponse(
        request_id=result.request.request_id,
        status=result.request.status,
        warnings=result.warnings,
    )


@router.post(
    "/{request_id}/confirm-payment",
    response_model=ActionResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
    summary="Confirm processing-fee payment",
)
async def confirm_payment(
    request_id: str,
    body: ConfirmPaymentBody,
    service: Annotated[RequestLifecycleService, Depends(get_service)],
) -> ActionResponse:
    """Confirm the processing-fee payment of a waiting request.

    Idempotent: calling it for a request that already left
    ``waiting_payment`` returns the request unchanged.
    """
    result = await service.confirm_payment(request_id, body.payment_id, amount=body.amount)

    if not result.success or not result.request:
        raise service_error(result.error_code, result.error, "CONFIRM_FAILED")

    return ActionResponse(
        request=request_to_response(result.request),
        warnings=result.warnings,
    )


@router.get(
    "/{request_id}",
    response_model=RequestResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get request status",
)
async def get_request(
    request_id: str,
    service: Annotated[RequestLifecycleService, Depends(get_service)],
) -> RequestResponse:
    """Get a request with live tracking of its shipments."""
    result = await service.get_request(request_id)

    if not result.success or not result.request:
        raise service_error(result.error_code, result.error)

    return get_result_to_response(result)
