"""Request lifecycle service.

Single authority for return/exchange request state. Every contended
write is a compare-and-set on the request store, and every external
side effect (reverse pickup, replacement order, forward shipment) is
guarded twice:

1. its identifier on the record must still be unset, and
2. a claim token must be taken on the record before the adapter call.

Claims are released when the side effect fails and expire after a
configurable TTL so a crashed worker does not block retries forever.
Adapter failures never fail the primary action; they come back as
warnings.
"""

from collections.abc import Collection
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

import structlog

from returnpilot.domain.address import PostalAddress, parse_address_string
from returnpilot.domain.carrier_status import classify_carrier_status
from returnpilot.domain.entities import (
    LineItem,
    ReturnRequest,
    generate_request_id,
    utc_now,
)
from returnpilot.domain.exceptions import (
    DuplicateRequestIdError,
    InvalidStateTransitionError,
    RequestNotFoundError,
    RequestValidationError,
)
from returnpilot.domain.policies import (
    PLACEHOLDER_NAMES,
    PLACEHOLDER_PHONES,
    first_real,
    is_fee_waived,
)
from returnpilot.domain.state_machines import (
    STATUS_TIMESTAMP_FIELDS,
    ForwardStatus,
    RequestStatus,
    RequestType,
    ShipmentTrack,
    validate_request_transition,
)
from returnpilot.infrastructure.commerce_client import (
    CommerceClient,
    CommerceClientError,
    CommerceOrder,
    ReplacementOrder,
    find_variant,
)
from returnpilot.infrastructure.config import settings
from returnpilot.infrastructure.payment_client import (
    PaymentClient,
    PaymentClientError,
    PaymentVerification,
)
from returnpilot.infrastructure.request_store import RequestFilter, RequestStore
from returnpilot.infrastructure.shipping_client import (
    ShippingClient,
    ShippingClientError,
    ShippingParty,
    TrackingInfo,
)

logger = structlog.get_logger()

# Error codes
VALIDATION_ERROR = "VALIDATION_ERROR"
REQUEST_NOT_FOUND = "REQUEST_NOT_FOUND"
PAYMENT_NOT_VERIFIED = "PAYMENT_NOT_VERIFIED"
INVALID_TRANSITION = "INVALID_TRANSITION"

# Warning codes
PICKUP_NOT_SCHEDULED = "PICKUP_NOT_SCHEDULED"
REPLACEMENT_ORDER_FAILED = "REPLACEMENT_ORDER_FAILED"
FORWARD_SHIPMENT_FAILED = "FORWARD_SHIPMENT_FAILED"

FALLBACK_EMAIL = "noreply@example.com"
_MAX_ID_ATTEMPTS = 5
_MAX_APPROVE_ATTEMPTS = 3


# ============================================================================
# Commands and Results
# ============================================================================


@dataclass
class SubmitRequestCommand:
    """Customer submission of a return or exchange."""

    type: str
    order_number: str
    items: list[dict[str, Any]]
    reason: str
    email: str | None = None
    customer_name: str | None = None
    customer_phone: str | None = None
    shipping_address: str | None = None
    new_address: str | None = None
    new_city: str | None = None
    new_pincode: str | None = None
    comments: str | None = None
    images: list[str] = field(default_factory=list)
    payment_id: str | None = None
    payment_amount: int | None = None


@dataclass
class RequestResult:
    """Result of a lifecycle operation on a single request."""

    request: ReturnRequest | None = None
    success: bool = True
    error: str | None = None
    error_code: str | None = None
    warnings: list[str] = field(default_factory=list)


@dataclass
class TrackingSnapshot:
    """Live tracking view of one shipment. Fetched on read, never stored."""

    tracking_id: str
    current_status: str | None
    origin: str | None = None
    destination: str | None = None
    edd: str | None = None
    courier_name: str | None = None
    activities: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_tracking(cls, tracking_id: str, info: TrackingInfo) -> "TrackingSnapshot":
        return cls(
            tracking_id=tracking_id,
            current_status=info.current_status,
            origin=info.origin,
            destination=info.destination,
            edd=info.edd,
            courier_name=info.courier_name,
            activities=[
                {
                    "status": a.status,
                    "activity": a.activity,
                    "date": a.date,
                    "location": a.location,
                }
                for a in info.activities
            ],
        )


@dataclass
class GetRequestResult:
    """Result of reading a request with its live tracking."""

    request: ReturnRequest | None = None
    reverse_tracking: TrackingSnapshot | None = None
    forward_tracking: TrackingSnapshot | None = None
    success: bool = True
    error: str | None = None
    error_code: str | None = None


@dataclass
class ListRequestsResult:
    """Result of listing requests."""

    requests: list[ReturnRequest] = field(default_factory=list)
    stats: dict[str, int] = field(default_factory=dict)


def _not_found(request_id: str) -> RequestResult:
    return RequestResult(
        success=False,
        error=RequestNotFoundError(request_id).message,
        error_code=REQUEST_NOT_FOUND,
    )


def _refuse_approval(request: ReturnRequest, override: bool) -> RequestResult | None:
    if override and request.status == RequestStatus.REJECTED:
        return None
    try:
        validate_request_transition(request.request_id, request.status, RequestStatus.APPROVED)
    except InvalidStateTransitionError as e:
        logger.info(
            "Approval refused",
            request_id=request.request_id,
            status=request.status.value,
        )
        return RequestResult(
            request=request,
            success=False,
            error=e.message,
            error_code=INVALID_TRANSITION,
        )
    return None


# ============================================================================
# Side-Effect Claims
# ============================================================================


def new_claim_token(now: datetime | None = None) -> str:
    """Create a claim token of the form ``<uuid hex>@<iso timestamp>``."""
    return f"{uuid4().hex}@{(now or utc_now()).isoformat()}"


def claim_issued_at(token: str) -> datetime | None:
    """Parse the issue time out of a claim token."""
    _, _, issued = token.partition("@")
    try:
        issued_at = datetime.fromisoformat(issued)
    except ValueError:
        return None
    if issued_at.tzinfo is None:
        issued_at = issued_at.replace(tzinfo=timezone.utc)
    return issued_at


# ============================================================================
# Lifecycle Service
# ============================================================================


class RequestLifecycleService:
    """Application service owning the request lifecycle.

    Handles:
    - Submission, with identity normalisation and fee checks
    - Payment confirmation from the client callback and the webhook
    - Carrier status reconciliation on both shipment tracks
    - Admin approve/reject/override actions and their side effects
    """

    def __init__(
        self,
        store: RequestStore,
        commerce: CommerceClient | None = None,
        shipping: ShippingClient | None = None,
        payments: PaymentClient | None = None,
        fee_waiver_reasons: Collection[str] | None = None,
        claim_ttl: timedelta | None = None,
    ) -> None:
        """Initialize service.

        Args:
            store: Request store.
            commerce: Commerce platform client (None if not configured).
            shipping: Shipping aggregator client (None if not configured).
            payments: Payment gateway client (None if not configured).
            fee_waiver_reasons: Reason codes that waive the processing fee.
            claim_ttl: Age after which a side-effect claim may be re-taken.
        """
        self.store = store
        self.commerce = commerce
        self.shipping = shipping
        self.payments = payments
        self.fee_waiver_reasons = list(
            settings.fee_waiver_reasons if fee_waiver_reasons is None else fee_waiver_reasons
        )
        self.claim_ttl = claim_ttl or timedelta(seconds=settings.side_effect_claim_ttl_seconds)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(self, command: SubmitRequestCommand) -> RequestResult:
        """Create a request from a customer submission.

        A request whose fee is due and comes without a payment id is
        stored as ``waiting_payment`` and nothing else happens. A payment
        id the gateway does not confirm fails the submission. Otherwise
        the request is stored as ``pending`` and a reverse pickup is
        scheduled.

        Args:
            command: Submission data.

        Returns:
            RequestResult with the created request. Validation failures
            return ``VALIDATION_ERROR`` and an unconfirmed payment returns
            ``PAYMENT_NOT_VERIFIED``; neither creates anything.
        """
        try:
            request_type = self._validate(command)
        except RequestValidationError as e:
            logger.info("Submission rejected", field=e.field, error=e.message)
            return RequestResult(
                success=False,
                error=e.message,
                error_code=VALIDATION_ERROR,
            )

        warnings: list[str] = []
        order = await self._lookup_order(command.order_number)

        fee_waived = is_fee_waived(command.reason, self.fee_waiver_reasons)
        status = RequestStatus.PENDING
        payment_id: str | None = None
        payment_amount: int | None = None

        if not fee_waived:
            status = RequestStatus.WAITING_PAYMENT
            if command.payment_id:
                verification = await self._verify_payment(command.payment_id)
                if verification is None:
                    logger.info(
                        "Submission rejected, payment not verified",
                        payment_id=command.payment_id,
                    )
                    return RequestResult(
                        success=False,
                        error=f"Payment {command.payment_id} is not captured or authorized",
                        error_code=PAYMENT_NOT_VERIFIED,
                    )
                status = RequestStatus.PENDING
                payment_id = command.payment_id
                payment_amount = verification.amount or command.payment_amount

        request = self._build_request(
            command, request_type, order, status, fee_waived, payment_id, payment_amount
        )
        request = await self._create_with_unique_id(request)

        logger.info(
            "Request submitted",
            request_id=request.request_id,
            type=request.type.value,
            status=request.status.value,
            fee_waived=fee_waived,
        )

        if request.status == RequestStatus.PENDING:
            request, warning = await self._schedule_pickup(request)
            if warning:
                warnings.append(warning)

        return RequestResult(request=request, warnings=warnings)

    def _validate(self, command: SubmitRequestCommand) -> RequestType:
        if not (command.order_number or "").strip():
            raise RequestValidationError("order_number", "is required")
        if not command.items:
            raise RequestValidationError("items", "at least one item is required")
        if not (command.reason or "").strip():
            raise RequestValidationError("reason", "is required")
        try:
            return RequestType((command.type or "").strip().lower())
        except ValueError:
            raise RequestValidationError("type", "must be 'return' or 'exchange'") from None

    async def _lookup_order(self, order_number: str) -> CommerceOrder | None:
        if self.commerce is None:
            return None
        try:
            return await self.commerce.get_order_by_number(order_number)
        except CommerceClientError as e:
            logger.warning(
                "Order lookup failed, using submitted values",
                order_number=order_number,
                error=e.message,
            )
            return None

    def _build_request(
        self,
        command: SubmitRequestCommand,
        request_type: RequestType,
        order: CommerceOrder | None,
        status: RequestStatus,
        fee_waived: bool,
        payment_id: str | None,
        payment_amount: int | None,
    ) -> ReturnRequest:
        customer_name = first_real(
            [command.customer_name, order.customer_name if order else None],
            PLACEHOLDER_NAMES,
        )
        customer_phone = first_real(
            [command.customer_phone, order.contact_phone if order else None],
            PLACEHOLDER_PHONES,
        )
        email = (command.email or "").strip() or (order.customer_email if order else None)

        address = order.postal_address() if order else None
        shipping_address = address.format() if address else command.shipping_address

        items = [LineItem.from_dict(item) for item in command.items]
        if order:
            items = [self._enrich_item(item, order) for item in items]

        return ReturnRequest(
            request_id=generate_request_id(),
            type=request_type,
            order_number=command.order_number.strip(),
            status=status,
            email=email,
            customer_name=customer_name or "Customer",
            customer_phone=customer_phone,
            shipping_address=shipping_address,
            shipping_address_details=address.to_dict() if address else None,
            new_address=command.new_address or None,
            new_city=command.new_city or None,
            new_pincode=command.new_pincode or None,
            items=items,
            reason=command.reason.strip(),
            comments=command.comments,
            images=list(command.images),
            payment_id=payment_id,
            payment_amount=payment_amount,
            fee_waived=fee_waived,
        )

    @staticmethod
    def _enrich_item(item: LineItem, order: CommerceOrder) -> LineItem:
        """Fill identity fields the client omitted from the order line."""
        for line in order.line_items:
            if line.id == item.id:
                item.product_id = item.product_id or line.product_id
                item.variant_id = item.variant_id or line.variant_id
                item.name = item.name or line.name
                item.variant_title = item.variant_title or line.variant_title
                item.sku = item.sku or line.sku
                if not item.price:
                    try:
                        item.price = float(line.price)
                    except ValueError:
                        pass
                break
        return item

    async def _create_with_unique_id(self, request: ReturnRequest) -> ReturnRequest:
        for _ in range(_MAX_ID_ATTEMPTS - 1):
            try:
                return await self.store.create(request)
            except DuplicateRequestIdError:
                logger.warning("Request id collision", request_id=request.request_id)
                request.request_id = generate_request_id()
        return await self.store.create(request)

    # ------------------------------------------------------------------
    # Payment
    # ------------------------------------------------------------------

    async def _verify_payment(self, payment_id: str) -> PaymentVerification | None:
        """Return the payment if the gateway confirms it, else None."""
        if self.payments is None:
            logger.warning("Payment gateway not configured", payment_id=payment_id)
            return None
        try:
            verification = await self.payments.verify(payment_id)
        except PaymentClientError as e:
            logger.error("Payment verification failed", payment_id=payment_id, error=e.message)
            return None
        if verification is None or not verification.is_paid:
            logger.info(
                "Payment not paid",
                payment_id=payment_id,
                status=verification.status if verification else None,
            )
            return None
        return verification

    async def confirm_payment(
        self,
        request_id: str,
        payment_id: str,
        amount: int | None = None,
        verification: PaymentVerification | None = None,
    ) -> RequestResult:
        """Record a verified payment and schedule the reverse pickup.

        Safe to call concurrently from the client callback and the
        payment webhook: the ``waiting_payment -> pending`` move is a
        compare-and-set, so only one caller proceeds to scheduling and
        every other caller gets the current record back unchanged.

        Args:
            request_id: Request identifier.
            payment_id: Gateway payment identifier.
            amount: Amount reported by the client (minor units).
            verification: Already verified payment, e.g. from a signed
                webhook. Fetched from the gateway when omitted.

        Returns:
            RequestResult with the resulting request.
        """
        request = await self.store.get(request_id)
        if request is None:
            return _not_found(request_id)

        if request.status != RequestStatus.WAITING_PAYMENT:
            logger.info(
                "Payment already handled",
                request_id=request_id,
                status=request.status.value,
            )
            return RequestResult(request=request)

        if verification is None or not verification.is_paid:
            verification = await self._verify_payment(payment_id)
        if verification is None:
            return RequestResult(
                request=request,
                success=False,
                error=f"Payment {payment_id} could not be verified",
                error_code=PAYMENT_NOT_VERIFIED,
            )

        updated = await self.store.compare_and_set(
            request_id,
            {"status": RequestStatus.WAITING_PAYMENT},
            {
                "status": RequestStatus.PENDING,
                "payment_id": payment_id,
                "payment_amount": verification.amount or amount,
            },
        )
        if updated is None:
            logger.info("Payment confirmation lost race", request_id=request_id)
            return RequestResult(request=await self.store.get(request_id))

        logger.info("Payment confirmed", request_id=request_id, payment_id=payment_id)

        updated, warning = await self._schedule_pickup(updated)
        return RequestResult(request=updated, warnings=[warning] if warning else [])

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------

    def _claim_is_stale(self, token: str) -> bool:
        issued_at = claim_issued_at(token)
        return issued_at is None or utc_now() - issued_at > self.claim_ttl

    async def _acquire_claim(
        self, request: ReturnRequest, claim_field: str, id_field: str
    ) -> str | None:
        """Take the claim for one side effect, None if someone holds it."""
        held = getattr(request, claim_field)
        if held is not None and not self._claim_is_stale(held):
            return None

        token = new_claim_token()
        taken = await self.store.compare_and_set(
            request.request_id,
            {claim_field: held, id_field: None},
            {claim_field: token},
        )
        if taken is None:
            return None
        if held is not None:
            logger.warning(
                "Took over stale claim",
                request_id=request.request_id,
                claim=claim_field,
            )
        return token

    async def _release_claim(self, request_id: str, claim_field: str, token: str) -> None:
        await self.store.compare_and_set(request_id, {claim_field: token}, {claim_field: None})

    # ------------------------------------------------------------------
    # Reverse pickup
    # ------------------------------------------------------------------

    def _pickup_party(self, request: ReturnRequest) -> ShippingParty | None:
        address = request.stored_address or parse_address_string(request.shipping_address)
        if address is None:
            return None
        return ShippingParty(
            name=request.customer_name or "Customer",
            address=address,
            phone=request.customer_phone or "",
            email=request.email or FALLBACK_EMAIL,
        )

    async def _schedule_pickup(
        self, request: ReturnRequest
    ) -> tuple[ReturnRequest, str | None]:
        """Create the reverse pickup at most once.

        Returns:
            The latest request and a warning if no pickup was created.
        """
        if request.shipment_id:
            return request, None
        if self.shipping is None:
            return request, f"{PICKUP_NOT_SCHEDULED}: shipping aggregator not configured"

        pickup = self._pickup_party(request)
        if pickup is None:
            logger.warning("No pickup address", request_id=request.request_id)
            return request, f"{PICKUP_NOT_SCHEDULED}: no pickup address on record"

        token = await self._acquire_claim(request, "pickup_claim", "shipment_id")
        if token is None:
            logger.info("Pickup already in progress", request_id=request.request_id)
            return (await self.store.get(request.request_id)) or request, None

        try:
            shipment = await self.shipping.create_reverse_pickup(request, pickup)
        except ShippingClientError as e:
            logger.error(
                "Reverse pickup failed",
                request_id=request.request_id,
                error=e.message,
            )
            shipment = None
            reason = e.message
        except Exception:
            await self._release_claim(request.request_id, "pickup_claim", token)
            raise
        else:
            reason = "rejected by shipping aggregator"

        if shipment is None:
            await self._release_claim(request.request_id, "pickup_claim", token)
            current = await self.store.get(request.request_id)
            return current or request, f"{PICKUP_NOT_SCHEDULED}: {reason}"

        recorded = await self.store.compare_and_set(
            request.request_id,
            {"pickup_claim": token, "shipment_id": None},
            {
                "shipment_id": shipment.shipment_id,
                "awb_number": shipment.awb_code,
                "pickup_date": shipment.pickup_scheduled_date,
                "pickup_claim": None,
            },
        )
        if recorded is None:
            logger.error(
                "Pickup created but claim was lost",
                request_id=request.request_id,
                shipment_id=shipment.shipment_id,
            )
            return (await self.store.get(request.request_id)) or request, None

        logger.info(
            "Reverse pickup scheduled",
            request_id=request.request_id,
            shipment_id=shipment.shipment_id,
            awb_number=shipment.awb_code,
        )

        scheduled = await self.store.compare_and_set(
            request.request_id,
            {"status": RequestStatus.PENDING},
            {"status": RequestStatus.SCHEDULED},
        )
        return scheduled or recorded, None

    async def retry_pickup(self, request_id: str) -> RequestResult:
        """Retry a reverse pickup that failed earlier.

        Returns:
            RequestResult with the request; already scheduled requests
            come back unchanged.
        """
        request = await self.store.get(request_id)
        if request is None:
            return _not_found(request_id)
        if request.shipment_id:
            return RequestResult(request=request)

        try:
            validate_request_transition(request_id, request.status, RequestStatus.SCHEDULED)
        except InvalidStateTransitionError as e:
            return RequestResult(
                request=request,
                success=False,
                error=e.message,
                error_code=INVALID_TRANSITION,
            )

        request, warning = await self._schedule_pickup(request)
        return RequestResult(request=request, warnings=[warning] if warning else [])

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    async def advance_from_tracking(
        self,
        request_id: str,
        raw_status: str | None,
        awb_number: str | None = None,
        track: ShipmentTrack = ShipmentTrack.REVERSE,
    ) -> ReturnRequest | None:
        """Apply a carrier status update to one shipment track.

        Writes only when the classified status moves the track forward
        or the carrier (re)assigned a different AWB. Never moves a track
        backwards and never touches a track in a terminal state.

        Args:
            request_id: Request identifier.
            raw_status: Carrier status text.
            awb_number: AWB reported with the update, if any.
            track: Shipment the update belongs to.

        Returns:
            The updated request, or None if nothing was written.
        """
        request = await self.store.get(request_id)
        if request is None:
            return None

        target = classify_carrier_status(raw_status)
        if track == ShipmentTrack.FORWARD:
            expected, changes = self._forward_changes(request, target, awb_number)
        else:
            expected, changes = self._reverse_changes(request, target, awb_number)

        if not changes:
            return None

        updated = await self.store.compare_and_set(request_id, expected, changes)
        if updated is None:
            logger.info("Tracking update superseded", request_id=request_id, track=track.value)
            return None

        logger.info(
            "Tracking update applied",
            request_id=request_id,
            track=track.value,
            raw_status=raw_status,
            changes=sorted(changes),
        )
        return updated

    @staticmethod
    def _reverse_changes(
        request: ReturnRequest,
        target: RequestStatus | None,
        awb_number: str | None,
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        current = request.status
        if current.is_terminal() or current == RequestStatus.WAITING_PAYMENT:
            return {}, {}

        changes: dict[str, Any] = {}
        if target is not None and target != current and current.can_transition_to(target):
            if target == RequestStatus.REJECTED:
                # Carrier-side failures count only before the goods arrive
                advance = current != RequestStatus.DELIVERED
            else:
                advance = target.progress > current.progress
            if advance:
                changes["status"] = target
                timestamp_field = STATUS_TIMESTAMP_FIELDS.get(target)
                if timestamp_field:
                    changes[timestamp_field] = utc_now()

        if awb_number and awb_number != request.awb_number:
            changes["awb_number"] = awb_number

        expected = {"status": current, "awb_number": request.awb_number}
        return expected, changes

    @staticmethod
    def _forward_changes(
        request: ReturnRequest,
        target: RequestStatus | None,
        awb_number: str | None,
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        if not request.is_exchange or not request.forward_tracking_id:
            return {}, {}

        current = request.forward_status
        if current is not None and current.is_terminal():
            return {}, {}

        changes: dict[str, Any] = {}
        forward_target = ForwardStatus.from_request_status(target) if target else None
        if forward_target is not None and (
            current is None or current.can_transition_to(forward_target)
        ):
            changes["forward_status"] = forward_target
            if forward_target == ForwardStatus.DELIVERED:
                changes["forward_delivered_at"] = utc_now()

        if awb_number and awb_number != request.forward_awb_number:
            changes["forward_awb_number"] = awb_number

        expected = {
            "forward_status": current,
            "forward_awb_number": request.forward_awb_number,
        }
        return expected, changes

    async def _snapshot(self, tracking_id: str | None, awb: str | None) -> TrackingSnapshot | None:
        if self.shipping is None or tracking_id is None:
            return None
        try:
            if awb:
                info = await self.shipping.track(awb_number=awb)
            else:
                info = await self.shipping.track(shipment_id=tracking_id)
        except ShippingClientError as e:
            logger.warning("Tracking lookup failed", tracking_id=tracking_id, error=e.message)
            return None
        return TrackingSnapshot.from_tracking(tracking_id, info) if info else None

    async def get_request(
        self, request_id: str, include_tracking: bool = True
    ) -> GetRequestResult:
        """Get a request together with live tracking of its shipments."""
        request = await self.store.get(request_id)
        if request is None:
            return GetRequestResult(
                success=False,
                error=f"Request not found: {request_id}",
                error_code=REQUEST_NOT_FOUND,
            )

        result = GetRequestResult(request=request)
        if include_tracking:
            result.reverse_tracking = await self._snapshot(
                request.reverse_tracking_id, request.awb_number
            )
            if request.is_exchange:
                result.forward_tracking = await self._snapshot(
                    request.forward_tracking_id, request.forward_awb_number
                )
        return result

    # ------------------------------------------------------------------
    # Admin actions
    # ------------------------------------------------------------------

    async def approve(
        self, request_id: str, notes: str | None = None, override: bool = False
    ) -> RequestResult:
        """Approve a request.

        For exchanges the replacement order and the forward shipment are
        created first, each at most once. Their failures are folded into
        the admin notes and never block the approval. Approving an
        approved request is a no-op without external calls.

        Unpaid requests cannot be approved. A rejected request can only
        be approved with ``override``.

        Args:
            request_id: Request identifier.
            notes: Admin notes.
            override: Allow approving a rejected request.

        Returns:
            RequestResult with the approved request and side-effect
            warnings, or ``INVALID_TRANSITION`` before any side effect.
        """
        request = await self.store.get(request_id)
        if request is None:
            return _not_found(request_id)
        if request.status == RequestStatus.APPROVED:
            return RequestResult(request=request)

        refused = _refuse_approval(request, override)
        if refused:
            return refused

        warnings: list[str] = []
        note_lines = [notes] if notes else []

        if request.is_exchange:
            original = await self._lookup_order(request.order_number)

            request, line = await self._create_replacement_order(request, original)
            if line:
                note_lines.append(line)
                if line.startswith(REPLACEMENT_ORDER_FAILED):
                    warnings.append(line)

            request, line = await self._create_forward_shipment(request, original)
            if line:
                note_lines.append(line)
                if line.startswith(FORWARD_SHIPMENT_FAILED):
                    warnings.append(line)

        admin_notes = "\n".join(note_lines) or request.admin_notes

        for _ in range(_MAX_APPROVE_ATTEMPTS):
            current = await self.store.get(request_id)
            if current is None:
                return _not_found(request_id)
            if current.status == RequestStatus.APPROVED:
                return RequestResult(request=current, warnings=warnings)
            refused = _refuse_approval(current, override)
            if refused:
                refused.warnings = warnings
                return refused

            approved = await self.store.compare_and_set(
                request_id,
                {"status": current.status},
                {
                    "status": RequestStatus.APPROVED,
                    "approved_at": utc_now(),
                    "admin_notes": admin_notes,
                },
            )
            if approved is not None:
                logger.info(
                    "Request approved",
                    request_id=request_id,
                    from_status=current.status.value,
                    warnings=len(warnings),
                )
                return RequestResult(request=approved, warnings=warnings)

        return RequestResult(
            request=await self.store.get(request_id),
            success=False,
            error="Request changed concurrently, try again",
            error_code=INVALID_TRANSITION,
            warnings=warnings,
        )

    def _delivery_party(
        self, request: ReturnRequest, original: CommerceOrder | None
    ) -> ShippingParty | None:
        """Recipient of the replacement.

        Address priority: explicit new address, the original order's
        shipping address, the structured address stored at submission,
        then a parse of the stored address string.
        """
        address: PostalAddress | None = None
        if request.new_address:
            address = PostalAddress(
                line1=request.new_address,
                city=request.new_city or "",
                pincode=request.new_pincode or "",
            )
        if address is None and original is not None:
            address = original.postal_address()
        if address is None:
            address = request.stored_address
        if address is None:
            address = parse_address_string(request.shipping_address)
        if address is None:
            return None

        return ShippingParty(
            name=request.customer_name
            or (original.customer_name if original else None)
            or "Customer",
            address=address,
            phone=request.customer_phone or (original.contact_phone if original else "") or "",
            email=request.email
            or (original.customer_email if original else None)
            or FALLBACK_EMAIL,
        )

    @staticmethod
    def _commerce_address(party: ShippingParty) -> dict[str, Any]:
        first_name, _, last_name = party.name.partition(" ")
        return {
            "first_name": first_name or "Customer",
            "last_name": last_name,
            "address1": party.address.line1,
            "address2": party.address.line2,
            "city": party.address.city,
            "province": party.address.state,
            "zip": party.address.pincode,
            "country": party.address.country or "India",
            "phone": party.phone,
        }

    async def _replacement_line_items(self, request: ReturnRequest) -> list[dict[str, Any]]:
        line_items = []
        for item in request.items:
            if not item.product_id:
                logger.warning("Item has no product", request_id=request.request_id, item_id=item.id)
                continue
            try:
                variants = await self.commerce.fetch_variants(item.product_id)
            except CommerceClientError as e:
                logger.error(
                    "Variant lookup failed",
                    request_id=request.request_id,
                    product_id=item.product_id,
                    error=e.message,
                )
                variants = []

            variant = find_variant(variants, item.replacement_variant, item.variant_id)
            variant_id = variant.id if variant else item.variant_id
            if not variant_id:
                logger.warning(
                    "Replacement variant not resolved",
                    request_id=request.request_id,
                    product_id=item.product_id,
                    option=item.replacement_variant,
                )
                continue
            line_items.append(
                {
                    "variant_id": int(variant_id) if variant_id.isdigit() else variant_id,
                    "quantity": item.quantity,
                }
            )
        return line_items

    async def _place_replacement_order(
        self, request: ReturnRequest, original: CommerceOrder
    ) -> tuple[ReplacementOrder | None, str | None]:
        """Call the commerce platform; returns the order or a failure reason."""
        line_items = await self._replacement_line_items(request)
        if not line_items:
            return None, "no replacement items could be resolved"

        shipping_address: dict[str, Any] | None = None
        party = self._delivery_party(request, original)
        if original.shipping_address and not request.new_address:
            shipping_address = original.shipping_address
        elif party is not None:
            shipping_address = self._commerce_address(party)
        if shipping_address is None:
            return None, "no delivery address"

        try:
            order = await self.commerce.create_replacement_order(
                request, original, line_items, shipping_address
            )
        except CommerceClientError as e:
            logger.error(
                "Replacement order failed",
                request_id=request.request_id,
                error=e.message,
            )
            return None, e.message
        return order, None

    async def _create_replacement_order(
        self, request: ReturnRequest, original: CommerceOrder | None
    ) -> tuple[ReturnRequest, str | None]:
        """Create the replacement order at most once.

        Returns:
            The latest request and a note line for the admin notes.
        """
        if request.replacement_order_id:
            return request, None
        if self.commerce is None:
            return request, f"{REPLACEMENT_ORDER_FAILED}: commerce platform not configured"
        if original is None:
            return request, f"{REPLACEMENT_ORDER_FAILED}: original order {request.order_number} not found"

        token = await self._acquire_claim(request, "replacement_claim", "replacement_order_id")
        if token is None:
            return (await self.store.get(request.request_id)) or request, None

        try:
            order, failure = await self._place_replacement_order(request, original)
        except Exception:
            await self._release_claim(request.request_id, "replacement_claim", token)
            raise

        if order is None:
            await self._release_claim(request.request_id, "replacement_claim", token)
            current = await self.store.get(request.request_id)
            return current or request, f"{REPLACEMENT_ORDER_FAILED}: {failure}"

        recorded = await self.store.compare_and_set(
            request.request_id,
            {"replacement_claim": token, "replacement_order_id": None},
            {
                "replacement_order_id": order.id,
                "replacement_order_name": order.name,
                "replacement_claim": None,
            },
        )
        current = recorded or await self.store.get(request.request_id)
        return current or request, f"Replacement order created: {order.name}"

    async def _create_forward_shipment(
        self, request: ReturnRequest, original: CommerceOrder | None
    ) -> tuple[ReturnRequest, str | None]:
        """Create the forward shipment at most once.

        Returns:
            The latest request and a note line for the admin notes.
        """
        if request.forward_shipment_id:
            return request, None
        if self.shipping is None:
            return request, f"{FORWARD_SHIPMENT_FAILED}: shipping aggregator not configured"

        delivery = self._delivery_party(request, original)
        if delivery is None:
            return request, f"{FORWARD_SHIPMENT_FAILED}: no delivery address"

        token = await self._acquire_claim(request, "forward_claim", "forward_shipment_id")
        if token is None:
            return (await self.store.get(request.request_id)) or request, None

        failure = "rejected by shipping aggregator"
        try:
            shipment = await self.shipping.create_forward_shipment(request, delivery)
        except ShippingClientError as e:
            logger.error(
                "Forward shipment failed",
                request_id=request.request_id,
                error=e.message,
            )
            shipment = None
            failure = e.message
        except Exception:
            await self._release_claim(request.request_id, "forward_claim", token)
            raise

        if shipment is None:
            await self._release_claim(request.request_id, "forward_claim", token)
            current = await self.store.get(request.request_id)
            return current or request, f"{FORWARD_SHIPMENT_FAILED}: {failure}"

        recorded = await self.store.compare_and_set(
            request.request_id,
            {"forward_claim": token, "forward_shipment_id": None},
            {
                "forward_shipment_id": shipment.shipment_id,
                "forward_awb_number": shipment.awb_code,
                "forward_status": ForwardStatus.SCHEDULED,
                "forward_claim": None,
            },
        )
        logger.info(
            "Forward shipment created",
            request_id=request.request_id,
            shipment_id=shipment.shipment_id,
        )
        current = recorded or await self.store.get(request.request_id)
        return current or request, (
            f"Forward shipment created: ID {shipment.shipment_id}, "
            f"AWB: {shipment.awb_code or 'Pending'}"
        )

    async def reject(self, request_id: str, notes: str | None = None) -> RequestResult:
        """Reject a request. Unconditional; no shipment is cancelled."""
        changes: dict[str, Any] = {
            "status": RequestStatus.REJECTED,
            "rejected_at": utc_now(),
        }
        if notes:
            changes["admin_notes"] = notes

        request = await self.store.update(request_id, changes)
        if request is None:
            return _not_found(request_id)

        logger.info("Request rejected", request_id=request_id)
        return RequestResult(request=request)

    async def mark_delivered(self, request_id: str) -> RequestResult:
        """Force the request to ``delivered`` when tracking lags reality."""
        request = await self.store.update(
            request_id,
            {"status": RequestStatus.DELIVERED, "delivered_at": utc_now()},
        )
        if request is None:
            return _not_found(request_id)

        logger.info("Request marked delivered", request_id=request_id)
        return RequestResult(request=request)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list_requests(self, criteria: RequestFilter | None = None) -> ListRequestsResult:
        """List requests newest first, with counts per status."""
        return ListRequestsResult(
            requests=await self.store.list_all(criteria),
            stats=await self.store.stats(),
        )

    async def delete_requests(self, request_ids: Collection[str]) -> int:
        """Hard-delete requests. Returns how many existed."""
        deleted = await self.store.delete_many(request_ids)
        logger.info("Requests deleted", count=deleted)
        return deleted


# ============================================================================
# Service Factory
# ============================================================================


def get_lifecycle_service() -> RequestLifecycleService:
    """Get lifecycle service wired to the configured store and clients."""
    from returnpilot.infrastructure.commerce_client import get_commerce_client
    from returnpilot.infrastructure.payment_client import get_payment_client
    from returnpilot.infrastructure.request_store import get_request_store
    from returnpilot.infrastructure.shipping_client import get_shipping_client

    return RequestLifecycleService(
        store=get_request_store(),
        commerce=get_commerce_client(),
        shipping=get_shipping_client(),
        payments=get_payment_client(),
    )
