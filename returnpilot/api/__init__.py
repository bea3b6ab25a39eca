"""API layer module.

Contains FastAPI routers and request/response schemas.
"""

from returnpilot.api.admin import router as admin_router
from returnpilot.api.health import router as health_router
from returnpilot.api.orders import router as orders_router
from returnpilot.api.requests import router as requests_router
from returnpilot.api.webhooks import router as webhooks_router

__all__ = [
    "admin_router",
    "health_router",
    "orders_router",
    "requests_router",
    "webhooks_router",
]
