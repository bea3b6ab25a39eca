"""Shared fixtures for API tests."""

import asyncio
from collections.abc import Callable, Iterator

import pytest
from fastapi.testclient import TestClient

from returnpilot.api import admin as admin_api
from returnpilot.api import orders as orders_api
from returnpilot.api import requests as requests_api
from returnpilot.application.reconciliation_service import ReconciliationSweeper
from returnpilot.domain.entities import ReturnRequest
from returnpilot.infrastructure.config import settings
from returnpilot.main import app


@pytest.fixture
def client(service, commerce, shipping) -> Iterator[TestClient]:
    """Test client wired to the in-memory service and mocked gateways."""
    app.dependency_overrides[requests_api.get_service] = lambda: service
    app.dependency_overrides[admin_api.get_service] = lambda: service
    app.dependency_overrides[admin_api.get_sweeper] = lambda: ReconciliationSweeper(
        service, shipping
    )
    app.dependency_overrides[orders_api.get_commerce] = lambda: commerce
    app.dependency_overrides[orders_api.get_shipping] = lambda: shipping
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers(client: TestClient) -> dict[str, str]:
    """Authorization headers with a freshly issued admin token."""
    response = client.post("/admin/login", json={"password": settings.admin_password})
    return {"Authorization": f"Bearer {response.json()['token']}"}


@pytest.fixture
def seed(store) -> Callable[[ReturnRequest], ReturnRequest]:
    """Insert a request into the store from synchronous test code."""

    def _seed(request: ReturnRequest) -> ReturnRequest:
        return asyncio.run(store.create(request))

    return _seed
