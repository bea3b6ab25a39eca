"""Tests for the commerce platform client."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from factories import make_order, make_request, order_payload
from returnpilot.infrastructure.commerce_client import (
    CommerceClient,
    CommerceClientError,
    CommerceOrder,
    ProductVariant,
    find_variant,
)


def mock_response(status_code: int = 200, json_data=None, text: str = "") -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = json_data if json_data is not None else {}
    response.text = text
    return response


@pytest.fixture
def client() -> CommerceClient:
    return CommerceClient(store_domain="shop.example.com", access_token="shpat_test")


@pytest.fixture
def http_client(client):
    with patch.object(client, "_get_client", new_callable=AsyncMock) as mock_get_client:
        http = AsyncMock()
        http.request = AsyncMock(return_value=mock_response(200, {"orders": []}))
        mock_get_client.return_value = http
        yield http


class TestCommerceOrder:
    def test_from_api_response(self) -> None:
        order = make_order()

        assert order.id == "5001"
        assert order.name == "#1001"
        assert order.customer_name == "Asha Rao"
        assert order.customer_email == "a@x.com"
        assert order.contact_phone == "+91-98765-43210"
        assert order.line_items[0].variant_id == "201"
        assert order.created_at is not None

    def test_postal_address(self) -> None:
        address = make_order().postal_address()

        assert address.line1 == "12 MG Road"
        assert address.line2 == "Indiranagar"
        assert address.state == "Karnataka"
        assert address.pincode == "560038"

    def test_name_falls_back_to_shipping_name(self) -> None:
        order = CommerceOrder.from_api_response(order_payload(customer={}))

        assert order.customer_name == "Asha Rao"
        assert order.customer_email == "a@x.com"

    def test_no_address(self) -> None:
        order = CommerceOrder.from_api_response(order_payload(shipping_address=None))

        assert order.postal_address() is None
        assert order.formatted_shipping_address() is None

    def test_fulfillments(self) -> None:
        order = make_order(
            fulfillments=[
                {"id": 1, "tracking_company": "Delhivery", "tracking_number": 12345},
                {"id": 2, "tracking_company": "", "tracking_number": None},
            ]
        )

        assert order.shipment.tracking_company == "Delhivery"
        assert order.shipment.tracking_number == "12345"
        assert order.fulfillments[1].tracking_company is None
        assert make_order().shipment is None



class TestFindVariant:
    VARIANTS = [
        ProductVariant(id="201", title="M / Blue", option1="M", option2="Blue"),
        ProductVariant(id="202", title="L / Blue", option1="L", option2="Blue"),
    ]

    def test_matches_option_case_insensitively(self) -> None:
        assert find_variant(self.VARIANTS, "l").id == "202"

    def test_matches_full_title(self) -> None:
        assert find_variant(self.VARIANTS, "M / Blue").id == "201"

    def test_falls_back_to_variant_id(self) -> None:
        assert find_variant(self.VARIANTS, "XXL", fallback_variant_id="201").id == "201"

    def test_no_match(self) -> None:
        assert find_variant(self.VARIANTS, "XXL") is None
        assert find_variant([], None) is None


class TestOrderLookup:
    @pytest.mark.asyncio
    async def test_retries_with_hash_prefix(self, client, http_client) -> None:
        http_client.request.side_effect = [
            mock_response(200, {"orders": []}),
            mock_response(200, {"orders": [order_payload()]}),
        ]

        order = await client.get_order_by_number("1001")

        assert order.name == "#1001"
        names = [call.kwargs["params"]["name"] for call in http_client.request.await_args_list]
        assert names == ["1001", "#1001"]

    @pytest.mark.asyncio
    async def test_retries_without_hash_prefix(self, client, http_client) -> None:
        await client.search_orders(" #1001 ")

        names = [call.kwargs["params"]["name"] for call in http_client.request.await_args_list]
        assert names == ["#1001", "1001"]

    @pytest.mark.asyncio
    async def test_not_found(self, client, http_client) -> None:
        assert await client.get_order_by_number("1001") is None

    @pytest.mark.asyncio
    async def test_find_order_checks_contact(self, client, http_client) -> None:
        http_client.request.return_value = mock_response(
            200,
            {
                "orders": [
                    order_payload(
                        id=1,
                        email="b@y.com",
                        customer={"email": "b@y.com", "phone": "1111111111"},
                        shipping_address=None,
                    ),
                    order_payload(id=2),
                ]
            },
        )

        order = await client.find_order("#1001", "9876543210")

        assert order.id == "2"

    @pytest.mark.asyncio
    async def test_find_order_without_match(self, client, http_client) -> None:
        http_client.request.return_value = mock_response(200, {"orders": [order_payload()]})

        assert await client.find_order("#1001", "someone@else.com") is None

    @pytest.mark.asyncio
    async def test_api_error(self, client, http_client) -> None:
        http_client.request.return_value = mock_response(401, text="Invalid API key")

        with pytest.raises(CommerceClientError) as exc_info:
            await client.get_order_by_number("1001")

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_transport_error(self, client, http_client) -> None:
        http_client.request.side_effect = httpx.ConnectError("refused")

        with pytest.raises(CommerceClientError):
            await client.get_order_by_number("1001")

    @pytest.mark.asyncio
    async def test_html_body_raises_client_error(self, client, http_client) -> None:
        response = mock_response(200, text="<html>maintenance</html>")
        response.json.side_effect = ValueError("Expecting value")
        http_client.request.return_value = response

        with pytest.raises(CommerceClientError) as exc_info:
            await client.get_order_by_number("1001")

        assert exc_info.value.status_code == 200

    @pytest.mark.asyncio
    async def test_non_object_body_raises_client_error(self, client, http_client) -> None:
        http_client.request.return_value = mock_response(200, ["unexpected"])

        with pytest.raises(CommerceClientError):
            await client.get_order_by_number("1001")


class TestCatalog:
    @pytest.mark.asyncio
    async def test_fetch_product_catalog(self, client, http_client) -> None:
        http_client.request.return_value = mock_response(
            200,
            {
                "products": [
                    {
                        "id": 101,
                        "images": [{"src": "https://cdn.example.com/tee.jpg"}],
                        "variants": [{"id": 201, "title": "M", "inventory_quantity": 4}],
                    }
                ]
            },
        )

        catalog = await client.fetch_product_catalog(["101"])

        assert catalog["101"].image_url == "https://cdn.example.com/tee.jpg"
        assert catalog["101"].variants[0].id == "201"
        assert http_client.request.await_args.kwargs["params"]["ids"] == "101"

    @pytest.mark.asyncio
    async def test_empty_catalog_makes_no_call(self, client, http_client) -> None:
        assert await client.fetch_product_catalog([]) == {}
        http_client.request.assert_not_called()

    @pytest.mark.asyncio
    async def test_fetch_variants(self, client, http_client) -> None:
        http_client.request.return_value = mock_response(
            200, {"variants": [{"id": 202, "title": "L", "option1": "L", "price": "749.50"}]}
        )

        variants = await client.fetch_variants("101")

        assert variants[0].id == "202"
        assert variants[0].price == "749.50"


class TestReplacementOrder:
    @pytest.mark.asyncio
    async def test_create_replacement_order(self, client, http_client) -> None:
        http_client.request.return_value = mock_response(
            201, {"order": {"id": 9001, "name": "#1002"}}
        )
        original = make_order()

        order = await client.create_replacement_order(
            make_request(),
            original,
            [{"variant_id": 202, "quantity": 1}],
            original.shipping_address,
        )

        assert order.id == "9001"
        assert order.name == "#1002"
        payload = http_client.request.await_args.kwargs["json"]["order"]
        assert payload["financial_status"] == "paid"
        assert payload["customer"] == {"id": 77}
        assert "REQ-TEST000001" in payload["note"]
        assert payload["tags"] == "Exchange, Replacement, Orig-#1001"

    @pytest.mark.asyncio
    async def test_missing_order_in_response(self, client, http_client) -> None:
        http_client.request.return_value = mock_response(201, {})

        with pytest.raises(CommerceClientError):
            await client.create_replacement_order(make_request(), make_order(), [], {})
