"""API schemas for ReturnPilot.

Pydantic models for request/response validation and serialization.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from returnpilot.application.lifecycle_service import (
    GetRequestResult,
    TrackingSnapshot,
)
from returnpilot.domain.entities import ReturnRequest
from returnpilot.domain.state_machines import ForwardStatus, RequestStatus, RequestType


# ============================================================================
# Common Schemas
# ============================================================================


class ErrorDetail(BaseModel):
    """Detailed error information."""

    field: str | None = Field(default=None, description="Field that caused the error")
    message: str = Field(..., description="Error message")


class ErrorResponse(BaseModel):
    """Standard error response.

    All API errors follow this format for consistency.
    """

    error_code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    details: list[ErrorDetail] = Field(
        default_factory=list, description="Additional error details"
    )
    request_id: str | None = Field(
        default=None, description="Request ID for correlation"
    )


class ClientConfigResponse(BaseModel):
    """Public configuration for the storefront client."""

    payment_key_id: str | None = Field(None, description="Public payment gateway key id")
    processing_fee: int = Field(..., description="Processing fee in minor units")
    fee_waiver_reasons: list[str] = Field(default_factory=list)
    eligibility_window_days: int


# ============================================================================
# Order Lookup Schemas
# ============================================================================


class OrderLookupRequest(BaseModel):
    """Customer order lookup."""

    order_number: str = Field(..., min_length=1, description="Order number, with or without #")
    contact: str = Field(..., min_length=1, description="Email or phone on the order")


class VariantSchema(BaseModel):
    """Product variant available as a replacement."""

    id: str
    title: str
    price: str | None = None
    inventory_quantity: int | None = None
    inventory_policy: str | None = None
    inventory_management: str | None = None


class OrderLineSchema(BaseModel):
    """Line of a looked-up order."""

    id: str
    product_id: str | None = None
    variant_id: str | None = None
    name: str
    variant_title: str | None = None
    sku: str | None = None
    quantity: int
    price: str
    image_url: str | None = None
    variants: list[VariantSchema] = Field(default_factory=list)


class OrderLookupResponse(BaseModel):
    """Order details with return/exchange eligibility."""

    order_id: str
    order_number: str
    email: str | None = None
    customer_name: str | None = None
    customer_phone: str | None = None
    shipping_address: str | None = None
    created_at: datetime | None = None
    fulfillment_status: str | None = None
    total_price: str | None = None
    is_eligible: bool
    eligibility_message: str
    line_items: list[OrderLineSchema] = Field(default_factory=list)


class VariantListResponse(BaseModel):
    """Variants of one product."""

    product_id: str
    variants: list[VariantSchema]


# ============================================================================
# Request Schemas
# ============================================================================


class LineItemSchema(BaseModel):
    """Item being returned or exchanged."""

    id: str = Field(..., description="Order line item id")
    product_id: str | None = None
    variant_id: str | None = None
    name: str = ""
    quantity: int = Field(default=1, ge=1)
    price: float = 0.0
    variant_title: str | None = None
    sku: str | None = None
    replacement_variant: str | None = Field(
        None, description="Requested replacement option (exchange only)"
    )


class SubmitRequestBody(BaseModel):
    """Customer submission of a return or exchange."""

    type: str = Field(..., description="'return' or 'exchange'")
    order_number: str
    items: list[LineItemSchema]
    reason: str
    email: str | None = None
    customer_name: str | None = None
    customer_phone: str | None = None
    shipping_address: str | None = None
    new_address: str | None = None
    new_city: str | None = None
    new_pincode: str | None = None
    comments: str | None = None
    images: list[str] = Field(default_factory=list, description="Uploaded image URLs")
    payment_id: str | None = None
    payment_amount: int | None = Field(None, description="Amount paid in minor units")


class SubmitRequestResponse(BaseModel):
    """Created request."""

    request_id: str
    status: RequestStatus
    warnings: list[str] = Field(default_factory=list)


class ConfirmPaymentBody(BaseModel):
    """Client-side payment callback."""

    payment_id: str = Field(..., min_length=1)
    amount: int | None = Field(None, description="Amount paid in minor units")


class TrackingActivitySchema(BaseModel):
    status: str | None = None
    activity: str | None = None
    date: str | None = None
    location: str | None = None


class TrackingSchema(BaseModel):
    """Live tracking of one shipment."""

    tracking_id: str
    current_status: str | None = None
    origin: str | None = None
    destination: str | None = None
    edd: str | None = None
    courier_name: str | None = None
    activities: list[TrackingActivitySchema] = Field(default_factory=list)


class TrackedItemSchema(BaseModel):
    name: str
    variant_title: str | None = None
    quantity: int
    price: str
    image_url: str | None = None


class OrderTrackingResponse(BaseModel):
    """Delivery progress of a customer's order."""

    order_number: str
    customer_name: str | None = None
    created_at: datetime | None = None
    total_price: str | None = None
    status: str = Field(..., description="'pending_shipment' or 'shipped'")
    message: str | None = None
    current_status: str | None = None
    courier_name: str | None = None
    awb_number: str | None = None
    tracking_url: str | None = None
    estimated_delivery: str | None = None
    origin: str | None = None
    destination: str | None = None
    is_delivered: bool = False
    items: list[TrackedItemSchema] = Field(default_factory=list)
    activities: list[TrackingActivitySchema] = Field(default_factory=list)


class RequestResponse(BaseModel):
    """Full view of a request."""

    request_id: str
    type: RequestType
    status: RequestStatus
    order_number: str
    email: str | None = None
    customer_name: str | None = None
    customer_phone: str | None = None
    shipping_address: str | None = None
    new_address: str | None = None
    new_city: str | None = None
    new_pincode: str | None = None
    items: list[LineItemSchema] = Field(default_factory=list)
    reason: str
    comments: str | None = None
    images: list[str] = Field(default_factory=list)
    payment_id: str | None = None
    payment_amount: int | None = None
    fee_waived: bool = False
    awb_number: str | None = None
    shipment_id: str | None = None
    pickup_date: str | None = None
    forward_shipment_id: str | None = None
    forward_awb_number: str | None = None
    forward_status: ForwardStatus | None = None
    forward_delivered_at: datetime | None = None
    replacement_order_id: str | None = None
    replacement_order_name: str | None = None
    admin_notes: str | None = None
    picked_up_at: datetime | None = None
    in_transit_at: datetime | None = None
    delivered_at: datetime | None = None
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    reverse_tracking: TrackingSchema | None = None
    forward_tracking: TrackingSchema | None = None


class ActionResponse(BaseModel):
    """Result of an action on a request."""

    request: RequestResponse
    warnings: list[str] = Field(default_factory=list)


# ============================================================================
# Admin Schemas
# ============================================================================


class AdminLoginRequest(BaseModel):
    password: str


class AdminLoginResponse(BaseModel):
    token: str
    expires_at: datetime


class AdminNotesBody(BaseModel):
    """Optional notes attached to an admin decision."""

    notes: str | None = None


class ApproveBody(AdminNotesBody):
    """Approval notes; ``override`` allows approving a rejected request."""

    override: bool = False


class RequestListResponse(BaseModel):
    """Filtered requests plus counts per status."""

    requests: list[RequestResponse]
    stats: dict[str, int]


class SyncResponse(BaseModel):
    """Outcome of a reconciliation sweep."""

    updated: int
    checked: int
    failed: int


class DeleteRequestsBody(BaseModel):
    request_ids: list[str] = Field(..., min_length=1)


class DeleteRequestsResponse(BaseModel):
    deleted: int


# ============================================================================
# Converters
# ============================================================================


def _tracking_to_schema(snapshot: TrackingSnapshot | None) -> TrackingSchema | None:
    if snapshot is None:
        return None
    return TrackingSchema(
        tracking_id=snapshot.tracking_id,
        current_status=snapshot.current_status,
        origin=snapshot.origin,
        destination=snapshot.destination,
        edd=snapshot.edd,
        courier_name=snapshot.courier_name,
        activities=[TrackingActivitySchema(**a) for a in snapshot.activities],
    )


def request_to_response(
    request: ReturnRequest,
    reverse_tracking: TrackingSnapshot | None = None,
    forward_tracking: TrackingSnapshot | None = None,
) -> RequestResponse:
    """Convert a ReturnRequest entity to its response schema."""
    data: dict[str, Any] = {
        name: getattr(request, name)
        for name in RequestResponse.model_fields
        if name not in ("items", "reverse_tracking", "forward_tracking")
    }
    return RequestResponse(
        **data,
        items=[LineItemSchema(**item.to_dict()) for item in request.items],
        reverse_tracking=_tracking_to_schema(reverse_tracking),
        forward_tracking=_tracking_to_schema(forward_tracking),
    )


def get_result_to_response(result: GetRequestResult) -> RequestResponse:
    return request_to_response(
        result.request,
        reverse_tracking=result.reverse_tracking,
        forward_tracking=result.forward_tracking,
    )
