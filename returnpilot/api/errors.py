"""Error responses shared by handlers and middleware.

Every error leaves the API as ``{error_code, message, details, request_id}``.
"""

from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse

from returnpilot.application.lifecycle_service import (
    INVALID_TRANSITION,
    PAYMENT_NOT_VERIFIED,
    REQUEST_NOT_FOUND,
    VALIDATION_ERROR,
)

ERROR_STATUS_CODES = {
    VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    PAYMENT_NOT_VERIFIED: status.HTTP_400_BAD_REQUEST,
    REQUEST_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    INVALID_TRANSITION: status.HTTP_409_CONFLICT,
}


def error_response(
    request: Request,
    status_code: int,
    error_code: str,
    message: str,
    details: list[Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Render an error in the API's standard shape."""
    return JSONResponse(
        status_code=status_code,
        content={
            "error_code": error_code,
            "message": message,
            "details": details or [],
            "request_id": getattr(request.state, "request_id", None),
        },
        headers=headers,
    )


def service_error(
    error_code: str | None,
    message: str | None,
    default_code: str = "REQUEST_FAILED",
) -> HTTPException:
    """Build the HTTPException for a failed service result."""
    return HTTPException(
        status_code=ERROR_STATUS_CODES.get(error_code or "", status.HTTP_400_BAD_REQUEST),
        detail={
            "error_code": error_code or default_code,
            "message": message or "Request failed",
        },
    )
