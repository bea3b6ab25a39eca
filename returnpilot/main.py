"""ReturnPilot API main application module.

This module initializes the FastAPI application and configures
core middleware, routers, and startup/shutdown events.
"""

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from returnpilot.api import (
    admin_router,
    health_router,
    orders_router,
    requests_router,
    webhooks_router,
)
from returnpilot.api.errors import error_response
from returnpilot.api.middleware import setup_middleware
from returnpilot.application.reconciliation_service import get_reconciliation_sweeper
from returnpilot.infrastructure.commerce_client import close_commerce_client
from returnpilot.infrastructure.config import settings
from returnpilot.infrastructure.database import dispose_engine
from returnpilot.infrastructure.logging import configure_logging
from returnpilot.infrastructure.payment_client import close_payment_client
from returnpilot.infrastructure.shipping_client import close_shipping_client

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup and shutdown events.

    Starts the periodic reconciliation sweep when an interval is
    configured and closes outbound clients on shutdown.
    """
    configure_logging(settings.log_level, settings.log_json)
    logger.info(
        "Starting ReturnPilot API",
        version=settings.api_version,
        debug=settings.debug,
        store=settings.store_backend,
        commerce=settings.commerce_configured,
        shipping=settings.shipping_configured,
        payments=settings.payment_configured,
    )

    sweep_task: asyncio.Task | None = None
    if settings.sync_interval_seconds > 0:
        sweeper = get_reconciliation_sweeper()
        sweep_task = asyncio.create_task(sweeper.run_forever(settings.sync_interval_seconds))

    yield

    logger.info("Shutting down ReturnPilot API")
    if sweep_task is not None:
        sweep_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweep_task

    await close_commerce_client()
    await close_shipping_client()
    await close_payment_client()
    if settings.store_backend == "sql":
        await dispose_engine()


app = FastAPI(
    title="ReturnPilot API",
    description="Return and exchange orchestration backend",
    version=settings.api_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware (must be added before custom middleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Request ID, admin auth, error handling
setup_middleware(app)

app.include_router(health_router, tags=["Health"])
app.include_router(orders_router)
app.include_router(requests_router)
app.include_router(webhooks_router)
app.include_router(admin_router)


# ============================================================================
# Custom Exception Handlers
# ============================================================================


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Render HTTP errors raised by endpoints in the standard shape."""
    detail = exc.detail if isinstance(exc.detail, dict) else {"message": str(exc.detail)}
    return error_response(
        request,
        exc.status_code,
        detail.get("error_code", "ERROR"),
        detail.get("message", str(detail)),
        details=detail.get("details"),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "Unhandled exception in handler",
        path=request.url.path,
        method=request.method,
        error=str(exc),
    )
    return error_response(request, 500, "INTERNAL_ERROR", "An internal error occurred")
