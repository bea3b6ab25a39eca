"""Commerce platform client (Shopify Admin REST API).

Looks up orders and product variants and creates replacement orders
for approved exchanges.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import httpx
import structlog

from returnpilot.domain.address import PostalAddress
from returnpilot.domain.entities import ReturnRequest
from returnpilot.domain.policies import contact_matches
from returnpilot.infrastructure.config import settings

logger = structlog.get_logger()


class CommerceClientError(Exception):
    """Error from a commerce platform API call."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)


# ============================================================================
# Response Types
# ============================================================================


def _str_or_none(value: Any) -> str | None:
    return None if value in (None, "") else str(value)


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass
class CommerceLineItem:
    """A line on a commerce order."""

    id: str
    product_id: str | None
    variant_id: str | None
    name: str
    variant_title: str | None
    sku: str | None
    quantity: int
    price: str
    image_url: str | None = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "CommerceLineItem":
        """Create from API response data."""
        properties = data.get("properties") or []
        image_url = None
        if isinstance(properties, dict):
            image_url = properties.get("image")
        else:
            for prop in properties:
                if isinstance(prop, dict) and prop.get("name") == "image":
                    image_url = prop.get("value")
        return cls(
            id=str(data.get("id", "")),
            product_id=_str_or_none(data.get("product_id")),
            variant_id=_str_or_none(data.get("variant_id")),
            name=data.get("name") or data.get("title") or "",
            variant_title=data.get("variant_title"),
            sku=data.get("sku"),
            quantity=int(data.get("quantity") or 1),
            price=str(data.get("price") or "0"),
            image_url=image_url,
        )


@dataclass
class CommerceFulfillment:
    """Outbound shipment of (part of) an order."""

    id: str
    status: str | None
    shipment_status: str | None
    tracking_company: str | None
    tracking_number: str | None
    tracking_url: str | None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "CommerceFulfillment":
        """Create from API response data."""
        return cls(
            id=str(data.get("id", "")),
            status=data.get("status"),
            shipment_status=data.get("shipment_status"),
            tracking_company=data.get("tracking_company") or None,
            tracking_number=_str_or_none(data.get("tracking_number")),
            tracking_url=data.get("tracking_url") or None,
        )


@dataclass
class CommerceOrder:
    """Order as returned by the commerce platform."""

    id: str
    name: str
    email: str | None
    phone: str | None
    created_at: datetime | None
    fulfillment_status: str | None
    total_price: str | None
    customer: dict[str, Any]
    shipping_address: dict[str, Any] | None
    line_items: list[CommerceLineItem] = field(default_factory=list)
    fulfillments: list[CommerceFulfillment] = field(default_factory=list)

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "CommerceOrder":
        """Create from API response data."""
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name", ""),
            email=data.get("email"),
            phone=data.get("phone"),
            created_at=_parse_datetime(data.get("created_at")),
            fulfillment_status=data.get("fulfillment_status"),
            total_price=data.get("total_price"),
            customer=data.get("customer") or {},
            shipping_address=data.get("shipping_address"),
            line_items=[
                CommerceLineItem.from_api_response(i) for i in data.get("line_items", [])
            ],
            fulfillments=[
                CommerceFulfillment.from_api_response(f)
                for f in data.get("fulfillments") or []
                if isinstance(f, dict)
            ],
        )

    @property
    def shipment(self) -> CommerceFulfillment | None:
        """First fulfillment, the one customers track."""
        return self.fulfillments[0] if self.fulfillments else None

    @property
    def customer_id(self) -> str | None:
        return _str_or_none(self.customer.get("id"))

    @property
    def customer_email(self) -> str | None:
        return self.customer.get("email") or self.email

    @property
    def customer_name(self) -> str | None:
        """Customer's full name, falling back to the shipping name."""
        name = " ".join(
            p for p in (self.customer.get("first_name"), self.customer.get("last_name")) if p
        ).strip()
        if name:
            return name
        if self.shipping_address:
            return self.shipping_address.get("name") or None
        return None

    @property
    def phones(self) -> list[str]:
        """Phone numbers that identify the customer on this order."""
        candidates = [
            self.customer.get("phone"),
            (self.shipping_address or {}).get("phone"),
        ]
        return [p for p in candidates if p]

    @property
    def contact_phone(self) -> str | None:
        return (self.shipping_address or {}).get("phone") or self.customer.get("phone") or self.phone

    def pickup_address(self) -> dict[str, Any] | None:
        """Address to collect a return from."""
        return self.shipping_address or self.customer.get("default_address")

    def postal_address(self) -> PostalAddress | None:
        """Structured shipping address, if the order has one."""
        address = self.pickup_address()
        if not address or not address.get("address1"):
            return None
        return PostalAddress(
            line1=address.get("address1") or "",
            line2=address.get("address2") or "",
            city=address.get("city") or "",
            state=address.get("province") or "",
            pincode=str(address.get("zip") or ""),
            country=address.get("country") or "India",
        )

    def formatted_shipping_address(self) -> str | None:
        address = self.postal_address()
        return address.format() if address else None


@dataclass
class ProductVariant:
    """A purchasable variant of a product."""

    id: str
    title: str
    option1: str | None = None
    option2: str | None = None
    option3: str | None = None
    price: str | None = None
    inventory_quantity: int | None = None
    inventory_policy: str | None = None
    inventory_management: str | None = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "ProductVariant":
        """Create from API response data."""
        return cls(
            id=str(data.get("id", "")),
            title=data.get("title") or "",
            option1=data.get("option1"),
            option2=data.get("option2"),
            option3=data.get("option3"),
            price=data.get("price"),
            inventory_quantity=data.get("inventory_quantity"),
            inventory_policy=data.get("inventory_policy"),
            inventory_management=data.get("inventory_management"),
        )

    def matches(self, option: str) -> bool:
        """Check whether the title or any option equals ``option``."""
        wanted = option.strip().lower()
        return any(
            (value or "").strip().lower() == wanted
            for value in (self.title, self.option1, self.option2, self.option3)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "price": self.price,
            "inventory_quantity": self.inventory_quantity,
            "inventory_policy": self.inventory_policy,
            "inventory_management": self.inventory_management,
        }


@dataclass
class ProductCatalogEntry:
    """Image and variants of a product, used by order lookup."""

    product_id: str
    image_url: str | None
    variants: list[ProductVariant]


@dataclass
class ReplacementOrder:
    """A replacement order created for an exchange."""

    id: str
    name: str

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "ReplacementOrder":
        """Create from API response data."""
        return cls(id=str(data.get("id", "")), name=data.get("name") or "")


def find_variant(
    variants: list[ProductVariant],
    option: str | None,
    fallback_variant_id: str | None = None,
) -> ProductVariant | None:
    """Pick the variant a customer asked for.

    Args:
        variants: Candidate variants of the product.
        option: Requested option ("L", "Blue", or a full title).
        fallback_variant_id: Variant to use when no option matches.

    Returns:
        The matching variant, or None.
    """
    if option:
        for variant in variants:
            if variant.matches(option):
                return variant
    if fallback_variant_id:
        for variant in variants:
            if variant.id == fallback_variant_id:
                return variant
    return None


# ============================================================================
# Commerce Client
# ============================================================================


class CommerceClient:
    """HTTP client for the Shopify Admin REST API."""

    def __init__(
        self,
        store_domain: str,
        access_token: str,
        api_version: str = "2024-01",
        timeout: float = 15.0,
    ) -> None:
        """Initialize commerce client.

        Args:
            store_domain: Shop domain (e.g. "example.myshopify.com").
            access_token: Admin API access token.
            api_version: Admin API version.
            timeout: Request timeout in seconds.
        """
        self.base_url = f"https://{store_domain}/admin/api/{api_version}"
        self.access_token = access_token
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={
                    "X-Shopify-Access-Token": self.access_token,
                    "Content-Type": "application/json",
                },
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self, method: str, path: str, **kwargs: Any
    ) -> dict[str, Any]:
        try:
            client = await self._get_client()
            response = await client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            logger.error("Commerce API request failed", path=path, error=str(e))
            raise CommerceClientError(f"Request failed: {str(e)}") from e

        if response.status_code >= 400:
            raise CommerceClientError(
                f"Commerce API error: {response.text}", response.status_code
            )
        try:
            data = response.json()
        except ValueError as e:
            raise CommerceClientError(
                f"Commerce API returned a non-JSON body (HTTP {response.status_code})",
                response.status_code,
            ) from e
        if not isinstance(data, dict):
            raise CommerceClientError("Commerce API returned an unexpected body")
        return data

    async def _orders_by_name(self, name: str, limit: int) -> list[CommerceOrder]:
        data = await self._request(
            "GET",
            "/orders.json",
            params={"name": name, "status": "any", "limit": limit},
        )
        return [CommerceOrder.from_api_response(o) for o in data.get("orders", [])]

    async def search_orders(self, order_number: str, limit: int = 5) -> list[CommerceOrder]:
        """Search orders by number, retrying with the '#' prefix toggled.

        Args:
            order_number: Order number as typed by the customer.
            limit: Maximum orders per query.

        Returns:
            Matching orders (possibly empty).

        Raises:
            CommerceClientError: On API error.
        """
        order_number = order_number.strip()
        orders = await self._orders_by_name(order_number, limit)
        if orders:
            return orders

        retry = order_number[1:] if order_number.startswith("#") else f"#{order_number}"
        logger.debug("Retrying order lookup", order_number=retry)
        return await self._orders_by_name(retry, limit)

    async def get_order_by_number(self, order_number: str) -> CommerceOrder | None:
        """Get a single order by number, or None if not found."""
        orders = await self.search_orders(order_number, limit=1)
        return orders[0] if orders else None

    async def find_order(self, order_number: str, contact: str) -> CommerceOrder | None:
        """Find the order with this number owned by ``contact``.

        Args:
            order_number: Order number.
            contact: Customer email or phone number.

        Returns:
            The first order whose customer email or phone matches.
        """
        for order in await self.search_orders(order_number):
            if contact_matches(contact, order.customer_email, order.phones):
                return order
        return None

    async def fetch_variants(self, product_id: str) -> list[ProductVariant]:
        """List variants of a product."""
        data = await self._request("GET", f"/products/{product_id}/variants.json")
        return [ProductVariant.from_api_response(v) for v in data.get("variants", [])]

    async def fetch_product_catalog(
        self, product_ids: list[str]
    ) -> dict[str, ProductCatalogEntry]:
        """Fetch image and variants for several products at once."""
        if not product_ids:
            return {}

        data = await self._request(
            "GET",
            "/products.json",
            params={"ids": ",".join(product_ids), "fields": "id,image,images,variants"},
        )

        catalog: dict[str, ProductCatalogEntry] = {}
        for product in data.get("products", []):
            image_url = None
            if product.get("image"):
                image_url = product["image"].get("src")
            elif product.get("images"):
                image_url = product["images"][0].get("src")
            product_id = str(product.get("id"))
            catalog[product_id] = ProductCatalogEntry(
                product_id=product_id,
                image_url=image_url,
                variants=[
                    ProductVariant.from_api_response(v) for v in product.get("variants", [])
                ],
            )
        return catalog

    async def create_replacement_order(
        self,
        request: ReturnRequest,
        original: CommerceOrder,
        line_items: list[dict[str, Any]],
        shipping_address: dict[str, Any],
    ) -> ReplacementOrder:
        """Create a paid replacement order for an exchange.

        Args:
            request: The exchange request.
            original: The customer's original order.
            line_items: ``{"variant_id", "quantity"}`` entries.
            shipping_address: Delivery address in commerce format.

        Returns:
            The created order.

        Raises:
            CommerceClientError: On API error or an empty response.
        """
        payload: dict[str, Any] = {
            "order": {
                "line_items": line_items,
                "shipping_address": shipping_address,
                "billing_address": shipping_address,
                "financial_status": "paid",
                "send_receipt": True,
                "tags": f"Exchange, Replacement, Orig-{request.order_number}",
                "note": f"Exchange for Request {request.request_id}. Reason: {request.reason}",
            }
        }
        if original.customer_id:
            payload["order"]["customer"] = {"id": original.customer.get("id")}

        data = await self._request("POST", "/orders.json", json=payload)
        if not data.get("order"):
            raise CommerceClientError("Replacement order missing from response")

        order = ReplacementOrder.from_api_response(data["order"])
        logger.info(
            "Replacement order created",
            request_id=request.request_id,
            order_name=order.name,
        )
        return order


# Global client instance
_commerce_client: CommerceClient | None = None


def get_commerce_client() -> CommerceClient | None:
    """Get the commerce client singleton, None if not configured."""
    global _commerce_client
    if _commerce_client is None and settings.commerce_configured:
        _commerce_client = CommerceClient(
            store_domain=settings.shopify_store,
            access_token=settings.shopify_access_token,
            api_version=settings.shopify_api_version,
            timeout=settings.http_timeout_seconds,
        )
    return _commerce_client


async def close_commerce_client() -> None:
    """Close and drop the commerce client singleton."""
    global _commerce_client
    if _commerce_client is not None:
        await _commerce_client.close()
    _commerce_client = None
