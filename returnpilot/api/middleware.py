"""API middleware for ReturnPilot.

Provides:
- Correlation ids on requests, responses and log lines
- Bearer-token protection of the admin console
- A last-resort handler for unexpected exceptions
"""

import time
from typing import Callable
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request, Response, status
from starlette.middleware.base import BaseHTTPMiddleware

from returnpilot.api.errors import error_response
from returnpilot.application.admin_auth_service import get_admin_auth_service

logger = structlog.get_logger()

CORRELATION_HEADER = "X-Request-ID"

ADMIN_PREFIX = "/admin"

# Admin paths reachable without a token
PUBLIC_ADMIN_PATHS = {"/admin/login"}


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tag each request with a correlation id.

    A client-supplied ``X-Request-ID`` is reused, otherwise one is
    generated. The id is kept on ``request.state``, bound to the log
    context as ``correlation_id`` and echoed on the response.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or uuid4().hex
        request.state.request_id = correlation_id
        structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

        started = time.perf_counter()
        response = None
        try:
            response = await call_next(request)
        finally:
            logger.info(
                "Request completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code if response is not None else 500,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            structlog.contextvars.unbind_contextvars("correlation_id")

        response.headers[CORRELATION_HEADER] = correlation_id
        return response


class AdminAuthMiddleware(BaseHTTPMiddleware):
    """Require a valid admin token on every ``/admin`` path.

    Expects ``Authorization: Bearer <token>`` with a token issued by
    ``POST /admin/login``. Customer-facing paths pass through.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path.rstrip("/")
        if not path.startswith(ADMIN_PREFIX) or path in PUBLIC_ADMIN_PATHS:
            return await call_next(request)

        scheme, _, token = request.headers.get("Authorization", "").partition(" ")
        if not scheme:
            problem = "Missing Authorization header"
        elif scheme.lower() != "bearer" or not token:
            problem = "Invalid Authorization header format. Use 'Bearer <token>'"
        elif not get_admin_auth_service().verify(token):
            problem = "Invalid or expired admin token"
        else:
            request.state.authenticated = True
            return await call_next(request)

        logger.warning("Admin request rejected", path=path, method=request.method, reason=problem)
        return error_response(
            request,
            status.HTTP_401_UNAUTHORIZED,
            "UNAUTHORIZED",
            problem,
            headers={"WWW-Authenticate": "Bearer"},
        )


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Turn unexpected exceptions into a 500 without leaking details."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            logger.exception(
                "Unhandled exception",
                path=request.url.path,
                method=request.method,
                error=str(e),
            )
            return error_response(
                request,
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                "INTERNAL_ERROR",
                "An internal error occurred",
            )


def setup_middleware(app: FastAPI) -> None:
    """Install middleware; the last one added runs first."""
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(AdminAuthMiddleware)
    app.add_middleware(RequestIdMiddleware)
