"""Shared fixtures: in-memory store and mocked gateway clients."""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from factories import FEE_WAIVER_REASONS, make_order
from returnpilot.application.lifecycle_service import RequestLifecycleService
from returnpilot.infrastructure.commerce_client import (
    CommerceClient,
    CommerceOrder,
    ProductVariant,
    ReplacementOrder,
)
from returnpilot.infrastructure.payment_client import PaymentClient, PaymentVerification
from returnpilot.infrastructure.request_store import InMemoryRequestStore
from returnpilot.infrastructure.shipping_client import ShipmentCreated, ShippingClient


@pytest.fixture
def store() -> InMemoryRequestStore:
    return InMemoryRequestStore()


@pytest.fixture
def order() -> CommerceOrder:
    return make_order()


@pytest.fixture
def commerce(order: CommerceOrder) -> MagicMock:
    client = MagicMock(spec=CommerceClient)
    client.get_order_by_number = AsyncMock(return_value=order)
    client.find_order = AsyncMock(return_value=order)
    client.fetch_variants = AsyncMock(
        return_value=[
            ProductVariant(id="201", title="M", option1="M"),
            ProductVariant(id="202", title="L", option1="L"),
        ]
    )
    client.fetch_product_catalog = AsyncMock(return_value={})
    client.create_replacement_order = AsyncMock(
        return_value=ReplacementOrder(id="9001", name="#1001-EX")
    )
    return client


@pytest.fixture
def shipping() -> MagicMock:
    client = MagicMock(spec=ShippingClient)
    client.create_reverse_pickup = AsyncMock(
        return_value=ShipmentCreated(
            shipment_id="SR-1",
            awb_code="AWB-1",
            order_id="RP-1",
            pickup_scheduled_date="2026-10-18",
        )
    )
    client.create_forward_shipment = AsyncMock(
        return_value=ShipmentCreated(
            shipment_id="SR-2",
            awb_code="AWB-2",
            order_id="FWD-1",
            pickup_scheduled_date=None,
        )
    )
    client.track = AsyncMock(return_value=None)
    return client


@pytest.fixture
def payments() -> MagicMock:
    client = MagicMock(spec=PaymentClient)
    client.verify = AsyncMock(
        return_value=PaymentVerification(payment_id="pay_1", status="captured", amount=10000)
    )
    return client


@pytest.fixture
def service(
    store: InMemoryRequestStore,
    commerce: MagicMock,
    shipping: MagicMock,
    payments: MagicMock,
) -> RequestLifecycleService:
    return RequestLifecycleService(
        store=store,
        commerce=commerce,
        shipping=shipping,
        payments=payments,
        fee_waiver_reasons=FEE_WAIVER_REASONS,
        claim_ttl=timedelta(minutes=5),
    )
