"""Admin console endpoints.

All paths except ``/admin/login`` require a bearer token (see
``AdminAuthMiddleware``). Side-effect failures during an action are
reported in ``warnings`` and the admin notes, never as an HTTP error.
"""

from datetime import date
from typing import Annotated

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status

from returnpilot.api.errors import service_error
from returnpilot.api.schemas import (
    ActionResponse,
    AdminLoginRequest,
    AdminLoginResponse,
    AdminNotesBody,
    ApproveBody,
    DeleteRequestsBody,
    DeleteRequestsResponse,
    ErrorResponse,
    RequestListResponse,
    SyncResponse,
    request_to_response,
)
from returnpilot.application.admin_auth_service import (
    AdminAuthService,
    get_admin_auth_service,
)
from returnpilot.application.lifecycle_service import (
    RequestLifecycleService,
    RequestResult,
    get_lifecycle_service,
)
from returnpilot.application.reconciliation_service import (
    ReconciliationSweeper,
    get_reconciliation_sweeper,
)
from returnpilot.domain.state_machines import RequestStatus, RequestType
from returnpilot.infrastructure.request_store import RequestFilter

router = APIRouter(prefix="/admin", tags=["Admin"])

_ACTION_RESPONSES = {
    401: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


# ============================================================================
# Dependencies
# ============================================================================


def get_service() -> RequestLifecycleService:
    return get_lifecycle_service()


def get_sweeper() -> ReconciliationSweeper:
    return get_reconciliation_sweeper()


def get_auth() -> AdminAuthService:
    return get_admin_auth_service()


def _action_response(result: RequestResult) -> ActionResponse:
    if not result.success or not result.request:
        raise service_error(result.error_code, result.error, "ACTION_FAILED")
    return ActionResponse(
        request=request_to_response(result.request),
        warnings=result.warnings,
    )


# ============================================================================
# Endpoints
# ============================================================================


@router.post(
    "/login",
    response_model=AdminLoginResponse,
    responses={401: {"model": ErrorResponse}},
    summary="Admin login",
)
async def login(
    body: AdminLoginRequest,
    auth: Annotated[AdminAuthService, Depends(get_auth)],
) -> AdminLoginResponse:
    """Exchange the admin password for a bearer token."""
    token = auth.login(body.password)
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error_code": "INVALID_CREDENTIALS", "message": "Invalid password"},
        )
    return AdminLoginResponse(token=token.token, expires_at=token.expires_at)


@router.get(
    "/requests",
    response_model=RequestListResponse,
    responses={401: {"model": ErrorResponse}},
    summary="List requests",
)
async def list_requests(
    service: Annotated[RequestLifecycleService, Depends(get_service)],
    status_filter: Annotated[RequestStatus | None, Query(alias="status")] = None,
    type_filter: Annotated[RequestType | None, Query(alias="type")] = None,
    created_on: Annotated[date | None, Query(alias="date")] = None,
    search: Annotated[str | None, Query(max_length=200)] = None,
) -> RequestListResponse:
    """List requests newest first, with the number of requests per status.

    Args:
        status_filter: Only requests in this status.
        type_filter: Only returns or only exchanges.
        created_on: Only requests created on this (UTC) day.
        search: Substring of request id, order number, name, email or phone.
    """
    result = await service.list_requests(
        RequestFilter(
            status=status_filter,
            type=type_filter,
            created_on=created_on,
            search=search or None,
        )
    )
    return RequestListResponse(
        requests=[request_to_response(r) for r in result.requests],
        stats=result.stats,
    )


@router.post(
    "/requests/delete",
    response_model=DeleteRequestsResponse,
    responses={401: {"model": ErrorResponse}},
    summary="Delete requests",
)
async def delete_requests(
    body: DeleteRequestsBody,
    service: Annotated[RequestLifecycleService, Depends(get_service)],
) -> DeleteRequestsResponse:
    """Permanently delete requests."""
    deleted = await service.delete_requests(body.request_ids)
    return DeleteRequestsResponse(deleted=deleted)


@router.post(
    "/requests/{request_id}/approve",
    response_model=ActionResponse,
    responses=_ACTION_RESPONSES,
    summary="Approve request",
)
async def approve_request(
    request_id: str,
    service: Annotated[RequestLifecycleService, Depends(get_service)],
    body: Annotated[ApproveBody | None, Body()] = None,
) -> ActionResponse:
    """Approve a request.

    Exchanges get their replacement order and forward shipment here.
    Unpaid requests are refused, and rejected ones need ``override``.
    """
    body = body or ApproveBody()
    result = await service.approve(request_id, notes=body.notes, override=body.override)
    return _action_response(result)


@router.post(
    "/requests/{request_id}/reject",
    response_model=ActionResponse,
    responses=_ACTION_RESPONSES,
    summary="Reject request",
)
async def reject_request(
    request_id: str,
    service: Annotated[RequestLifecycleService, Depends(get_service)],
    body: Annotated[AdminNotesBody | None, Body()] = None,
) -> ActionResponse:
    result = await service.reject(request_id, notes=body.notes if body else None)
    return _action_response(result)


@router.post(
    "/requests/{request_id}/mark-delivered",
    response_model=ActionResponse,
    responses=_ACTION_RESPONSES,
    summary="Mark request delivered",
)
async def mark_delivered(
    request_id: str,
    service: Annotated[RequestLifecycleService, Depends(get_service)],
) -> ActionResponse:
    """Manual override for when carrier tracking lags behind."""
    result = await service.mark_delivered(request_id)
    return _action_response(result)


@router.post(
    "/requests/{request_id}/retry-pickup",
    response_model=ActionResponse,
    responses=_ACTION_RESPONSES,
    summary="Retry reverse pickup",
)
async def retry_pickup(
    request_id: str,
    service: Annotated[RequestLifecycleService, Depends(get_service)],
) -> ActionResponse:
    result = await service.retry_pickup(request_id)
    return _action_response(result)


@router.post(
    "/sync",
    response_model=SyncResponse,
    responses={401: {"model": ErrorResponse}},
    summary="Sync shipment statuses",
)
async def sync_statuses(
    sweeper: Annotated[ReconciliationSweeper, Depends(get_sweeper)],
) -> SyncResponse:
    """Run a reconciliation sweep now and report what changed."""
    result = await sweeper.sweep()
    return SyncResponse(
        updated=result.updated_count,
        checked=result.checked_count,
        failed=result.failed_count,
    )
