"""Health check endpoints.

Provides endpoints for monitoring service health and readiness.
"""

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel

from returnpilot.infrastructure.config import settings

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response schema."""

    status: str
    service: str
    version: str


class ReadinessResponse(BaseModel):
    """Readiness response: which backends are wired."""

    status: str
    store: str
    commerce: bool
    shipping: bool
    payments: bool


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check service health.

    Returns:
        Health status with service name and version.
    """
    return HealthResponse(
        status="healthy",
        service="returnpilot",
        version=settings.api_version,
    )


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check() -> ReadinessResponse:
    """Check if service is ready to accept requests.

    The request store must answer; unconfigured external systems are
    reported but do not make the service unready.
    """
    from returnpilot.infrastructure.request_store import get_request_store

    try:
        await get_request_store().stats()
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error_code": "NOT_READY", "message": f"Request store unavailable: {e}"},
        ) from e

    return ReadinessResponse(
        status="ready",
        store=settings.store_backend,
        commerce=settings.commerce_configured,
        shipping=settings.shipping_configured,
        payments=settings.payment_configured,
    )
