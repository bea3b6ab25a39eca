"""Shipping aggregator client (Shiprocket API).

Creates reverse pickups and forward shipments and reads tracking. The
bearer token is cached per client instance and refreshed on expiry or
on a 401 response.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
import structlog

from returnpilot.domain.address import PostalAddress
from returnpilot.domain.entities import LineItem, ReturnRequest
from returnpilot.domain.policies import sanitize_phone
from returnpilot.infrastructure.config import settings

logger = structlog.get_logger()

_PARCEL_DIMENSIONS = {"length": 10, "breadth": 10, "height": 10, "weight": 0.5}


class ShippingClientError(Exception):
    """Error from a shipping aggregator API call."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def _decode_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as e:
        raise ShippingClientError(
            f"Shipping API returned a non-JSON body (HTTP {response.status_code})",
            response.status_code,
        ) from e


# ============================================================================
# Token Cache
# ============================================================================


class ShippingTokenCache:
    """Bearer token with an expiry time.

    Refreshes are serialised by ``lock``; callers re-check validity
    after acquiring it so concurrent refreshes collapse into one login.
    """

    def __init__(self, ttl: timedelta = timedelta(days=10)) -> None:
        self.ttl = ttl
        self.lock = asyncio.Lock()
        self._token: str | None = None
        self._expires_at: datetime | None = None

    def valid_token(self, now: datetime | None = None) -> str | None:
        """Return the cached token if it has not expired."""
        now = now or datetime.now(timezone.utc)
        if self._token and self._expires_at and now < self._expires_at:
            return self._token
        return None

    def store(self, token: str, now: datetime | None = None) -> None:
        now = now or datetime.now(timezone.utc)
        self._token = token
        self._expires_at = now + self.ttl

    def invalidate(self, token: str | None = None) -> None:
        """Drop the cached token (only if it is still ``token`` when given)."""
        if token is None or token == self._token:
            self._token = None
            self._expires_at = None


# ============================================================================
# Request/Response Types
# ============================================================================


@dataclass(frozen=True)
class ShippingParty:
    """Sender or recipient of a shipment."""

    name: str
    address: PostalAddress
    phone: str
    email: str


@dataclass
class ShipmentCreated:
    """Identifiers returned when a shipment is created."""

    shipment_id: str
    awb_code: str | None
    order_id: str | None
    pickup_scheduled_date: str | None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "ShipmentCreated":
        """Create from API response data."""
        return cls(
            shipment_id=str(data["shipment_id"]),
            awb_code=str(data["awb_code"]) if data.get("awb_code") else None,
            order_id=str(data["order_id"]) if data.get("order_id") else None,
            pickup_scheduled_date=data.get("pickup_scheduled_date"),
        )


@dataclass
class TrackingActivity:
    """A single scan event on a shipment."""

    status: str | None
    activity: str | None
    date: str | None
    location: str | None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "TrackingActivity":
        """Create from API response data."""
        return cls(
            status=data.get("sr-status-label") or data.get("current_status") or data.get("status"),
            activity=data.get("activity") or data.get("sr-status-label"),
            date=data.get("date"),
            location=data.get("location"),
        )


@dataclass
class TrackingInfo:
    """Tracking snapshot for a shipment."""

    current_status: str | None
    awb_code: str | None = None
    origin: str | None = None
    destination: str | None = None
    edd: str | None = None
    courier_name: str | None = None
    activities: list[TrackingActivity] = field(default_factory=list)

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "TrackingInfo | None":
        """Create from a track response, None if it has no tracking data."""
        tracking = data.get("tracking_data")
        if not isinstance(tracking, dict):
            return None

        tracks = tracking.get("shipment_track") or []
        first = tracks[0] if tracks and isinstance(tracks[0], dict) else {}
        activities = tracking.get("shipment_track_activities") or []

        return cls(
            current_status=first.get("current_status") or tracking.get("current_status"),
            awb_code=_str(first.get("awb_code")),
            origin=first.get("origin") or tracking.get("origin"),
            destination=first.get("destination") or tracking.get("destination"),
            edd=first.get("edd") or tracking.get("edd"),
            courier_name=first.get("courier_name") or tracking.get("courier_name"),
            activities=[
                TrackingActivity.from_api_response(a)
                for a in activities
                if isinstance(a, dict)
            ],
        )

    @property
    def is_delivered(self) -> bool:
        return "delivered" in (self.current_status or "").lower()


def _str(value: Any) -> str | None:
    return None if value in (None, "") else str(value)


def _order_date(now: datetime | None = None) -> str:
    return (now or datetime.now(timezone.utc)).strftime("%Y-%m-%d %H:%M:%S")


def _sku(item: LineItem) -> str:
    return item.sku or item.variant_id or item.id


def _order_items(items: list[LineItem], forward: bool = False) -> list[dict[str, Any]]:
    result = []
    for item in items:
        name = item.name
        if forward and item.replacement_variant:
            name = f"{name} ({item.replacement_variant})"
        result.append(
            {
                "name": name,
                "sku": f"{item.variant_id or item.id}-EXCH" if forward else _sku(item),
                "units": item.quantity,
                "selling_price": item.price,
                "discount": 0,
                "tax": 0,
            }
        )
    return result


def _split_name(name: str) -> tuple[str, str]:
    first, _, last = name.strip().partition(" ")
    return first or "Customer", last


def _is_rejection(data: Any) -> bool:
    """Shiprocket reports validation failures in the body."""
    if not isinstance(data, dict):
        return True
    return data.get("status_code") == 422 or bool(data.get("errors"))


# ============================================================================
# Shipping Client
# ============================================================================


class ShippingClient:
    """HTTP client for the Shiprocket external API."""

    def __init__(
        self,
        email: str,
        password: str,
        warehouse: ShippingParty,
        pickup_location: str = "warehouse 1",
        base_url: str = "https://apiv2.shiprocket.in/v1/external",
        timeout: float = 15.0,
        token_cache: ShippingTokenCache | None = None,
    ) -> None:
        """Initialize shipping client.

        Args:
            email: API user email.
            password: API user password.
            warehouse: Return destination.
            pickup_location: Registered pickup location name for forward
                shipments.
            base_url: API base URL.
            timeout: Request timeout in seconds.
            token_cache: Token cache (a fresh one if not provided).
        """
        self.email = email
        self.password = password
        self.warehouse = warehouse
        self.pickup_location = pickup_location
        self.base_url = base_url
        self.timeout = timeout
        self.token_cache = token_cache or ShippingTokenCache()
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _get_token(self) -> str:
        token = self.token_cache.valid_token()
        if token:
            return token

        async with self.token_cache.lock:
            token = self.token_cache.valid_token()
            if token:
                return token

            client = await self._get_client()
            try:
                response = await client.post(
                    "/auth/login",
                    json={"email": self.email, "password": self.password},
                )
            except httpx.RequestError as e:
                raise ShippingClientError(f"Auth request failed: {str(e)}") from e

            if response.status_code != 200:
                raise ShippingClientError(
                    f"Shipping auth failed: {response.status_code}", response.status_code
                )

            data = _decode_json(response)
            token = data.get("token") if isinstance(data, dict) else None
            if not token:
                raise ShippingClientError("Shipping auth returned no token")
            self.token_cache.store(token)
            logger.info("Shipping token refreshed")
            return token

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send an authenticated request, re-authenticating once on 401."""
        client = await self._get_client()
        for attempt in range(2):
            token = await self._get_token()
            try:
                response = await client.request(
                    method,
                    path,
                    headers={"Authorization": f"Bearer {token}"},
                    **kwargs,
                )
            except httpx.RequestError as e:
                logger.error("Shipping API request failed", path=path, error=str(e))
                raise ShippingClientError(f"Request failed: {str(e)}") from e

            if response.status_code == 401 and attempt == 0:
                logger.info("Shipping token rejected, re-authenticating")
                self.token_cache.invalidate(token)
                continue
            return response

        return response

    async def _create(self, path: str, payload: dict[str, Any]) -> ShipmentCreated | None:
        response = await self._request("POST", path, json=payload)

        if response.status_code == 422:
            logger.warning(
                "Shipment rejected by aggregator",
                order_id=payload.get("order_id"),
                body=response.text,
            )
            return None
        if response.status_code >= 400:
            raise ShippingClientError(
                f"Shipping API error: {response.text}", response.status_code
            )

        data = _decode_json(response)
        if _is_rejection(data) or not data.get("shipment_id"):
            logger.warning(
                "Shipment rejected by aggregator",
                order_id=payload.get("order_id"),
                body=data,
            )
            return None
        return ShipmentCreated.from_api_response(data)

    async def create_reverse_pickup(
        self, request: ReturnRequest, pickup: ShippingParty
    ) -> ShipmentCreated | None:
        """Create a reverse pickup from the customer to the warehouse.

        Args:
            request: The return/exchange request.
            pickup: Customer contact and pickup address.

        Returns:
            The created shipment, or None if the aggregator rejected the
            payload (validation error).

        Raises:
            ShippingClientError: On transport, auth or server errors.
        """
        first_name, last_name = _split_name(pickup.name)
        items = _order_items(request.items)
        warehouse = self.warehouse
        payload = {
            "order_id": request.request_id,
            "order_date": _order_date(),
            "channel_id": "",
            "pickup_customer_name": first_name,
            "pickup_last_name": last_name,
            "pickup_address": pickup.address.line1,
            "pickup_address_2": pickup.address.line2,
            "pickup_city": pickup.address.city,
            "pickup_state": pickup.address.state,
            "pickup_country": pickup.address.country or "India",
            "pickup_pincode": pickup.address.pincode,
            "pickup_email": pickup.email,
            "pickup_phone": sanitize_phone(pickup.phone),
            "shipping_customer_name": warehouse.name,
            "shipping_last_name": "",
            "shipping_address": warehouse.address.line1,
            "shipping_address_2": warehouse.address.line2,
            "shipping_city": warehouse.address.city,
            "shipping_state": warehouse.address.state,
            "shipping_country": warehouse.address.country,
            "shipping_pincode": warehouse.address.pincode,
            "shipping_email": warehouse.email,
            "shipping_phone": warehouse.phone,
            "order_items": items,
            "payment_method": "Prepaid",
            "total_discount": 0,
            "sub_total": sum(i["selling_price"] * i["units"] for i in items),
            **_PARCEL_DIMENSIONS,
        }

        logger.info("Creating reverse pickup", request_id=request.request_id)
        return await self._create("/orders/create/return", payload)

    async def create_forward_shipment(
        self, request: ReturnRequest, delivery: ShippingParty
    ) -> ShipmentCreated | None:
        """Create the forward shipment of replacement items.

        Args:
            request: The exchange request.
            delivery: Recipient and delivery address.

        Returns:
            The created shipment, or None on a validation rejection.

        Raises:
            ShippingClientError: On transport, auth or server errors.
        """
        items = _order_items(request.items, forward=True)
        payload = {
            "order_id": f"{request.request_id}-FWD",
            "order_date": _order_date(),
            "pickup_location": self.pickup_location,
            "billing_customer_name": delivery.name,
            "billing_last_name": "",
            "billing_address": delivery.address.line1,
            "billing_address_2": delivery.address.line2,
            "billing_city": delivery.address.city,
            "billing_pincode": delivery.address.pincode,
            "billing_state": delivery.address.state,
            "billing_country": delivery.address.country or "India",
            "billing_email": delivery.email,
            "billing_phone": sanitize_phone(delivery.phone),
            "shipping_is_billing": True,
            "order_items": items,
            "payment_method": "Prepaid",
            "sub_total": sum(i["selling_price"] * i["units"] for i in items),
            **_PARCEL_DIMENSIONS,
        }

        logger.info("Creating forward shipment", request_id=request.request_id)
        return await self._create("/orders/create/adhoc", payload)

    async def track(
        self, awb_number: str | None = None, shipment_id: str | None = None
    ) -> TrackingInfo | None:
        """Fetch tracking by AWB, or by shipment id when no AWB exists.

        Returns:
            Tracking snapshot, or None if the carrier has no data yet.

        Raises:
            ShippingClientError: On transport, auth or server errors.
        """
        if awb_number:
            path = f"/courier/track/awb/{awb_number}"
        elif shipment_id:
            path = f"/courier/track/shipment/{shipment_id}"
        else:
            return None

        response = await self._request("GET", path)
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise ShippingClientError(
                f"Tracking failed: {response.text}", response.status_code
            )

        data = _decode_json(response)
        # Shipment-id tracking wraps the payload in a one-key dict
        if isinstance(data, dict) and "tracking_data" not in data and len(data) == 1:
            data = next(iter(data.values()))
        if not isinstance(data, dict):
            return None
        return TrackingInfo.from_api_response(data)


def _warehouse_from_settings() -> ShippingParty:
    return ShippingParty(
        name=settings.warehouse_name,
        address=PostalAddress(
            line1=settings.warehouse_address,
            city=settings.warehouse_city,
            state=settings.warehouse_state,
            pincode=settings.warehouse_pincode,
            country=settings.warehouse_country,
        ),
        phone=settings.warehouse_phone,
        email=settings.warehouse_email,
    )


# Global client instance
_shipping_client: ShippingClient | None = None


def get_shipping_client() -> ShippingClient | None:
    """Get the shipping client singleton, None if not configured."""
    global _shipping_client
    if _shipping_client is None and settings.shipping_configured:
        _shipping_client = ShippingClient(
            email=settings.shiprocket_email,
            password=settings.shiprocket_password,
            warehouse=_warehouse_from_settings(),
            pickup_location=settings.shiprocket_pickup_location,
            base_url=settings.shiprocket_base_url,
            timeout=settings.http_timeout_seconds,
            token_cache=ShippingTokenCache(
                ttl=timedelta(hours=settings.shiprocket_token_ttl_hours)
            ),
        )
    return _shipping_client


async def close_shipping_client() -> None:
    """Close and drop the shipping client singleton."""
    global _shipping_client
    if _shipping_client is not None:
        await _shipping_client.close()
    _shipping_client = None
