"""Domain entities.

``ReturnRequest`` is the central record of the service. It is a plain
dataclass; persistence adapters map it to and from storage and all
mutation goes through the lifecycle service.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from returnpilot.domain.address import PostalAddress
from returnpilot.domain.state_machines import ForwardStatus, RequestStatus, RequestType


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_request_id() -> str:
    """Generate a new public request identifier (e.g. ``REQ-3F9A0C21D4``)."""
    return f"REQ-{uuid4().hex[:10].upper()}"


@dataclass
class LineItem:
    """An order line the customer wants to return or exchange.

    Attributes:
        id: Commerce-platform line item id.
        product_id: Product identifier.
        variant_id: Purchased variant identifier.
        name: Display name.
        quantity: Units being returned.
        price: Unit price as charged.
        variant_title: Purchased variant title (e.g. "M / Blue").
        sku: Stock keeping unit.
        replacement_variant: Requested replacement option (exchange only).
    """

    id: str
    product_id: str | None = None
    variant_id: str | None = None
    name: str = ""
    quantity: int = 1
    price: float = 0.0
    variant_title: str | None = None
    sku: str | None = None
    replacement_variant: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LineItem":
        """Create from a dictionary, tolerating loose client payloads."""

        def _opt(key: str) -> str | None:
            value = data.get(key)
            return None if value in (None, "") else str(value)

        try:
            quantity = int(data.get("quantity") or 1)
        except (TypeError, ValueError):
            quantity = 1
        try:
            price = float(data.get("price") or 0)
        except (TypeError, ValueError):
            price = 0.0

        return cls(
            id=str(data.get("id", "")),
            product_id=_opt("product_id"),
            variant_id=_opt("variant_id"),
            name=str(data.get("name") or ""),
            quantity=max(quantity, 1),
            price=price,
            variant_title=_opt("variant_title"),
            sku=_opt("sku"),
            replacement_variant=_opt("replacement_variant"),
        )


@dataclass
class ReturnRequest:
    """A customer's return or exchange request.

    The status field drives the visible lifecycle; the forward_* fields
    form the parallel replacement-shipment track for exchanges. Claim
    fields hold short-lived tokens that serialise side effects across
    concurrent callers.
    """

    request_id: str
    type: RequestType
    order_number: str
    status: RequestStatus
    email: str | None = None
    customer_name: str | None = None
    customer_phone: str | None = None
    shipping_address: str | None = None
    shipping_address_details: dict[str, Any] | None = None
    new_address: str | None = None
    new_city: str | None = None
    new_pincode: str | None = None
    items: list[LineItem] = field(default_factory=list)
    reason: str = ""
    comments: str | None = None
    images: list[str] = field(default_factory=list)

    # Payment
    payment_id: str | None = None
    payment_amount: int | None = None
    fee_waived: bool = False

    # Reverse shipment
    awb_number: str | None = None
    shipment_id: str | None = None
    pickup_date: str | None = None

    # Forward shipment (exchange only)
    forward_shipment_id: str | None = None
    forward_awb_number: str | None = None
    forward_status: ForwardStatus | None = None
    forward_delivered_at: datetime | None = None

    # Replacement order (exchange only)
    replacement_order_id: str | None = None
    replacement_order_name: str | None = None

    # Side-effect claims
    pickup_claim: str | None = None
    replacement_claim: str | None = None
    forward_claim: str | None = None

    # Audit
    admin_notes: str | None = None
    picked_up_at: datetime | None = None
    in_transit_at: datetime | None = None
    delivered_at: datetime | None = None
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def is_exchange(self) -> bool:
        return self.type == RequestType.EXCHANGE

    @property
    def reverse_tracking_id(self) -> str | None:
        """AWB if assigned, else the aggregator shipment id."""
        return self.awb_number or self.shipment_id

    @property
    def forward_tracking_id(self) -> str | None:
        return self.forward_awb_number or self.forward_shipment_id

    @property
    def stored_address(self) -> PostalAddress | None:
        """Structured original shipping address captured at submission."""
        return PostalAddress.from_dict(self.shipping_address_details)

    def is_logically_terminal(self) -> bool:
        """Check whether no further automatic work remains.

        A request is done once it is approved or rejected and, for an
        exchange with a forward shipment, that shipment was delivered.
        """
        if self.status not in {RequestStatus.APPROVED, RequestStatus.REJECTED}:
            return False
        if self.is_exchange and self.forward_shipment_id:
            return self.forward_status == ForwardStatus.DELIVERED
        return True
