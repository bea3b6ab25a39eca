"""Storefront endpoints.

Provides:
- GET /config - public client configuration
- POST /orders/lookup - order with eligibility and replacement options
- POST /orders/track - fulfillment and live courier tracking of an order
- GET /products/{id}/variants - variants of one product
"""

from datetime import datetime, timedelta, timezone
from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from returnpilot.api.schemas import (
    ClientConfigResponse,
    ErrorResponse,
    OrderLineSchema,
    OrderLookupRequest,
    OrderLookupResponse,
    OrderTrackingResponse,
    TrackedItemSchema,
    TrackingActivitySchema,
    VariantListResponse,
    VariantSchema,
)
from returnpilot.domain.policies import check_eligibility
from returnpilot.infrastructure.commerce_client import (
    CommerceClient,
    CommerceClientError,
    CommerceOrder,
    ProductCatalogEntry,
    get_commerce_client,
)
from returnpilot.infrastructure.config import settings
from returnpilot.infrastructure.shipping_client import (
    ShippingClient,
    ShippingClientError,
    TrackingInfo,
    get_shipping_client,
)

logger = structlog.get_logger()

router = APIRouter(tags=["Storefront"])

PENDING_SHIPMENT = "pending_shipment"
SHIPPED = "shipped"

# Orders older than this may have expired carrier tracking
OLD_ORDER_DAYS = 60


# ============================================================================
# Dependencies
# ============================================================================


def get_commerce() -> CommerceClient:
    """Get the commerce client, or fail if it is not configured."""
    client = get_commerce_client()
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "error_code": "COMMERCE_NOT_CONFIGURED",
                "message": "Commerce platform is not configured",
            },
        )
    return client


def get_shipping() -> ShippingClient | None:
    """Get the shipping client; None leaves tracking to the commerce platform."""
    return get_shipping_client()


def _upstream_error(e: CommerceClientError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail={"error_code": "COMMERCE_ERROR", "message": e.message},
    )


# ============================================================================
# Endpoints
# ============================================================================


@router.get("/config", response_model=ClientConfigResponse, summary="Client configuration")
async def get_client_config() -> ClientConfigResponse:
    """Return the values the storefront needs to collect the fee."""
    return ClientConfigResponse(
        payment_key_id=settings.razorpay_key_id,
        processing_fee=settings.processing_fee_amount,
        fee_waiver_reasons=settings.fee_waiver_reasons,
        eligibility_window_days=settings.eligibility_window_days,
    )


@router.post(
    "/orders/lookup",
    response_model=OrderLookupResponse,
    responses={
        404: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
    summary="Look up an order",
)
async def lookup_order(
    body: OrderLookupRequest,
    commerce: Annotated[CommerceClient, Depends(get_commerce)],
) -> OrderLookupResponse:
    """Look up an order by number and customer email or phone.

    The answer says whether the order may be returned or exchanged
    and lists, per line, the product image and its variants so the
    customer can pick a replacement.

    Raises:
        HTTPException: 404 when no order matches the number and contact.
    """
    try:
        order = await commerce.find_order(body.order_number, body.contact)
    except CommerceClientError as e:
        logger.error("Order lookup failed", order_number=body.order_number, error=e.message)
        raise _upstream_error(e) from e

    if order is None:
        logger.info("Order lookup found no match", order_number=body.order_number)
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "error_code": "ORDER_NOT_FOUND",
                "message": "Order not found. Please check your order number and email/phone.",
            },
        )

    eligibility = check_eligibility(
        order.created_at,
        order.fulfillment_status,
        settings.eligibility_window_days,
    )

    product_ids = sorted({line.product_id for line in order.line_items if line.product_id})
    catalog: dict[str, ProductCatalogEntry] = {}
    try:
        catalog = await commerce.fetch_product_catalog(product_ids)
    except CommerceClientError as e:
        # Lookup still answers without images and variants
        logger.warning("Product catalog fetch failed", order_id=order.id, error=e.message)

    lines = []
    for line in order.line_items:
        entry = catalog.get(line.product_id or "")
        lines.append(
            OrderLineSchema(
                id=line.id,
                product_id=line.product_id,
                variant_id=line.variant_id,
                name=line.name,
                variant_title=line.variant_title,
                sku=line.sku,
                quantity=line.quantity,
                price=line.price,
                image_url=(entry.image_url if entry else None) or line.image_url,
                variants=[VariantSchema(**v.to_dict()) for v in entry.variants] if entry else [],
            )
        )

    return OrderLookupResponse(
        order_id=order.id,
        order_number=order.name,
        email=order.customer_email,
        customer_name=order.customer_name,
        customer_phone=order.contact_phone,
        shipping_address=order.formatted_shipping_address(),
        created_at=order.created_at,
        fulfillment_status=order.fulfillment_status,
        total_price=order.total_price,
        is_eligible=eligibility.is_eligible,
        eligibility_message=eligibility.message,
        line_items=lines,
    )


@router.get(
    "/products/{product_id}/variants",
    response_model=VariantListResponse,
    responses={502: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
    summary="List product variants",
)
async def list_variants(
    product_id: str,
    commerce: Annotated[CommerceClient, Depends(get_commerce)],
) -> VariantListResponse:
    """List the variants of a product."""
    try:
        variants = await commerce.fetch_variants(product_id)
    except CommerceClientError as e:
        logger.error("Variant fetch failed", product_id=product_id, error=e.message)
        raise _upstream_error(e) from e

    return VariantListResponse(
        product_id=product_id,
        variants=[VariantSchema(**v.to_dict()) for v in variants],
    )


@router.post(
    "/orders/track",
    response_model=OrderTrackingResponse,
    responses={
        404: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
    summary="Track an order",
)
async def track_order(
    body: OrderLookupRequest,
    commerce: Annotated[CommerceClient, Depends(get_commerce)],
    shipping: Annotated[ShippingClient | None, Depends(get_shipping)],
) -> OrderTrackingResponse:
    """Show where a customer's order is.

    Uses the first fulfillment's courier and AWB and, when the shipping
    aggregator is configured, merges its live tracking. An order with
    no fulfillment yet comes back as ``pending_shipment``.

    Raises:
        HTTPException: 404 when no order matches the number and contact.
    """
    try:
        order = await commerce.find_order(body.order_number, body.contact)
    except CommerceClientError as e:
        logger.error(
            "Order tracking lookup failed", order_number=body.order_number, error=e.message
        )
        raise _upstream_error(e) from e

    if order is None:
        logger.info("Order tracking found no match", order_number=body.order_number)
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "error_code": "ORDER_NOT_FOUND",
                "message": "Order not found with this email/phone.",
            },
        )

    fulfillment = order.shipment
    if fulfillment is None:
        return OrderTrackingResponse(
            order_number=order.name,
            customer_name=order.customer_name,
            created_at=order.created_at,
            total_price=order.total_price,
            status=PENDING_SHIPMENT,
            message="Your order is being processed and will be shipped soon.",
        )

    response = OrderTrackingResponse(
        order_number=order.name,
        customer_name=order.customer_name,
        created_at=order.created_at,
        total_price=order.total_price,
        status=SHIPPED,
        current_status=fulfillment.shipment_status or "Shipped",
        courier_name=fulfillment.tracking_company,
        awb_number=fulfillment.tracking_number,
        tracking_url=fulfillment.tracking_url,
        items=await _tracked_items(commerce, order),
    )

    if shipping is not None and fulfillment.tracking_number:
        try:
            info = await shipping.track(awb_number=fulfillment.tracking_number)
        except ShippingClientError as e:
            # Answer with the commerce platform's view alone
            logger.warning(
                "Live tracking unavailable",
                order_id=order.id,
                awb_number=fulfillment.tracking_number,
                error=e.message,
            )
            info = None
        if info is not None:
            _merge_tracking(response, info)

    if response.is_delivered:
        response.message = "Your order has been delivered."
    elif _is_old(order.created_at):
        response.message = (
            f"This order is older than {OLD_ORDER_DAYS} days. "
            "Some tracking details may no longer be available."
        )
    return response


async def _tracked_items(
    commerce: CommerceClient, order: CommerceOrder
) -> list[TrackedItemSchema]:
    product_ids = sorted({line.product_id for line in order.line_items if line.product_id})
    catalog: dict[str, ProductCatalogEntry] = {}
    try:
        catalog = await commerce.fetch_product_catalog(product_ids)
    except CommerceClientError as e:
        logger.warning("Product catalog fetch failed", order_id=order.id, error=e.message)

    items = []
    for line in order.line_items:
        entry = catalog.get(line.product_id or "")
        items.append(
            TrackedItemSchema(
                name=line.name,
                variant_title=line.variant_title,
                quantity=line.quantity,
                price=line.price,
                image_url=(entry.image_url if entry else None) or line.image_url,
            )
        )
    return items


def _merge_tracking(response: OrderTrackingResponse, info: TrackingInfo) -> None:
    response.current_status = info.current_status or response.current_status
    response.courier_name = info.courier_name or response.courier_name
    response.estimated_delivery = info.edd
    response.origin = info.origin
    response.destination = info.destination
    response.is_delivered = info.is_delivered
    response.activities = [
        TrackingActivitySchema(
            status=a.status,
            activity=a.activity,
            date=a.date,
            location=a.location,
        )
        for a in info.activities
    ]


def _is_old(created_at: datetime | None) -> bool:
    if created_at is None:
        return False
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return datetime.now(timezone.utc) - created_at > timedelta(days=OLD_ORDER_DAYS)
