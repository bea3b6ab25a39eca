"""Persistence for return requests.

Two interchangeable stores implement ``RequestStore``: an in-memory one
for development and tests, and a SQLAlchemy one for production. Both
provide ``compare_and_set``, the single primitive the lifecycle service
uses for every contended write.
"""

import copy
from abc import ABC, abstractmethod
from collections.abc import Collection, Mapping
from dataclasses import dataclass, fields
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

import structlog
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from returnpilot.domain.entities import LineItem, ReturnRequest, utc_now
from returnpilot.domain.exceptions import DuplicateRequestIdError
from returnpilot.domain.state_machines import (
    ForwardStatus,
    RequestStatus,
    RequestType,
)
from returnpilot.infrastructure.config import settings
from returnpilot.infrastructure.models import ReturnRequestModel

logger = structlog.get_logger()

_FIELD_NAMES = frozenset(f.name for f in fields(ReturnRequest))
_DATETIME_FIELDS = (
    "forward_delivered_at",
    "picked_up_at",
    "in_transit_at",
    "delivered_at",
    "approved_at",
    "rejected_at",
    "created_at",
    "updated_at",
)
_SEARCH_FIELDS = ("request_id", "order_number", "customer_name", "email", "customer_phone")


@dataclass
class RequestFilter:
    """Criteria for listing requests. Unset fields do not filter.

    Attributes:
        status: Exact status.
        status_in: Any of these statuses.
        type: Request type.
        created_on: Calendar day (UTC) of ``created_at``.
        search: Case-insensitive substring over id, order number,
            customer name, email and phone.
        open_forward_shipment: Only exchanges whose forward shipment
            exists and is not yet delivered.
    """

    status: RequestStatus | None = None
    status_in: Collection[RequestStatus] | None = None
    type: RequestType | None = None
    created_on: date | None = None
    search: str | None = None
    open_forward_shipment: bool = False


def _check_fields(values: Mapping[str, Any]) -> None:
    unknown = set(values) - _FIELD_NAMES
    if unknown:
        raise ValueError(f"Unknown request fields: {sorted(unknown)}")


def _ensure_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


# ============================================================================
# Store Interface
# ============================================================================


class RequestStore(ABC):
    """Durable keyed storage of return requests."""

    @abstractmethod
    async def create(self, request: ReturnRequest) -> ReturnRequest:
        """Insert a new request.

        Raises:
            DuplicateRequestIdError: If the id already exists.
        """

    @abstractmethod
    async def get(self, request_id: str) -> ReturnRequest | None:
        """Get request by ID."""

    @abstractmethod
    async def list_all(self, criteria: RequestFilter | None = None) -> list[ReturnRequest]:
        """List requests matching the filter, newest first."""

    @abstractmethod
    async def stats(self) -> dict[str, int]:
        """Count requests: ``total`` plus one entry per status."""

    @abstractmethod
    async def update(
        self, request_id: str, changes: Mapping[str, Any]
    ) -> ReturnRequest | None:
        """Unconditionally apply changes. Returns None if not found."""

    @abstractmethod
    async def compare_and_set(
        self,
        request_id: str,
        expected: Mapping[str, Any],
        changes: Mapping[str, Any],
    ) -> ReturnRequest | None:
        """Apply changes only if every expected field still holds its value.

        An expected value of None means the field must be unset. The
        check and the write are one atomic step.

        Returns:
            The updated request, or None if the request is missing or
            any expectation no longer holds.
        """

    @abstractmethod
    async def delete_many(self, request_ids: Collection[str]) -> int:
        """Delete requests by ID. Returns the number deleted."""


# ============================================================================
# In-Memory Store
# ============================================================================


class InMemoryRequestStore(RequestStore):
    """In-memory request store.

    Each mutating method checks and writes without awaiting in between,
    which makes it atomic on a single event loop. Records are copied in
    and out so callers never share state with the store.
    """

    def __init__(self) -> None:
        self._requests: dict[str, ReturnRequest] = {}

    async def create(self, request: ReturnRequest) -> ReturnRequest:
        if request.request_id in self._requests:
            raise DuplicateRequestIdError(request.request_id)
        self._requests[request.request_id] = copy.deepcopy(request)
        return copy.deepcopy(request)

    async def get(self, request_id: str) -> ReturnRequest | None:
        request = self._requests.get(request_id)
        return copy.deepcopy(request) if request else None

    async def list_all(self, criteria: RequestFilter | None = None) -> list[ReturnRequest]:
        criteria = criteria or RequestFilter()
        results = [r for r in self._requests.values() if self._matches(r, criteria)]
        results.sort(key=lambda r: r.created_at, reverse=True)
        return [copy.deepcopy(r) for r in results]

    async def stats(self) -> dict[str, int]:
        counts = {status.value: 0 for status in RequestStatus}
        for request in self._requests.values():
            counts[request.status.value] += 1
        counts["total"] = len(self._requests)
        return counts

    async def update(
        self, request_id: str, changes: Mapping[str, Any]
    ) -> ReturnRequest | None:
        return await self.compare_and_set(request_id, {}, changes)

    async def compare_and_set(
        self,
        request_id: str,
        expected: Mapping[str, Any],
        changes: Mapping[str, Any],
    ) -> ReturnRequest | None:
        _check_fields(expected)
        _check_fields(changes)

        current = self._requests.get(request_id)
        if current is None:
            return None

        for key, value in expected.items():
            actual = getattr(current, key)
            if value is None:
                if actual is not None:
                    return None
            elif actual != value:
                return None

        for key, value in changes.items():
            setattr(current, key, copy.deepcopy(value))
        current.updated_at = utc_now()
        return copy.deepcopy(current)

    async def delete_many(self, request_ids: Collection[str]) -> int:
        deleted = 0
        for request_id in set(request_ids):
            if self._requests.pop(request_id, None) is not None:
                deleted += 1
        return deleted

    @staticmethod
    def _matches(request: ReturnRequest, criteria: RequestFilter) -> bool:
        if criteria.status and request.status != criteria.status:
            return False
        if criteria.status_in is not None and request.status not in criteria.status_in:
            return False
        if criteria.type and request.type != criteria.type:
            return False
        if criteria.created_on:
            start, end = _day_bounds(criteria.created_on)
            if not start <= request.created_at < end:
                return False
        if criteria.search:
            needle = criteria.search.strip().lower()
            haystack = [getattr(request, name) or "" for name in _SEARCH_FIELDS]
            if not any(needle in value.lower() for value in haystack):
                return False
        if criteria.open_forward_shipment:
            if not request.is_exchange or not request.forward_tracking_id:
                return False
            if request.forward_status == ForwardStatus.DELIVERED:
                return False
        return True


# ============================================================================
# SQL Store
# ============================================================================


def _to_column_value(key: str, value: Any) -> Any:
    if key == "items":
        return [item.to_dict() if isinstance(item, LineItem) else item for item in value or []]
    if key == "images":
        return list(value or [])
    if isinstance(value, (RequestStatus, RequestType, ForwardStatus)):
        return value.value
    return value


def _to_columns(values: Mapping[str, Any]) -> dict[str, Any]:
    return {key: _to_column_value(key, value) for key, value in values.items()}


def _from_model(model: ReturnRequestModel) -> ReturnRequest:
    data = model.to_dict()
    for key in _DATETIME_FIELDS:
        data[key] = _ensure_utc(data.get(key))
    data["type"] = RequestType(data["type"])
    data["status"] = RequestStatus(data["status"])
    if data.get("forward_status"):
        data["forward_status"] = ForwardStatus(data["forward_status"])
    data["items"] = [LineItem.from_dict(item) for item in data.get("items") or []]
    data["images"] = list(data.get("images") or [])
    data["fee_waived"] = bool(data.get("fee_waived"))
    return ReturnRequest(**{k: v for k, v in data.items() if k in _FIELD_NAMES})


class SqlRequestStore(RequestStore):
    """SQLAlchemy-backed request store.

    ``compare_and_set`` is a single ``UPDATE ... WHERE`` whose row count
    tells whether the expectations held.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(self, request: ReturnRequest) -> ReturnRequest:
        values = {f.name: getattr(request, f.name) for f in fields(ReturnRequest)}
        model = ReturnRequestModel(**_to_columns(values))
        async with self._session_factory() as session:
            session.add(model)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise DuplicateRequestIdError(request.request_id) from e
        return copy.deepcopy(request)

    async def get(self, request_id: str) -> ReturnRequest | None:
        async with self._session_factory() as session:
            model = await session.get(ReturnRequestModel, request_id)
            return _from_model(model) if model else None

    async def list_all(self, criteria: RequestFilter | None = None) -> list[ReturnRequest]:
        criteria = criteria or RequestFilter()
        stmt = select(ReturnRequestModel)

        if criteria.status:
            stmt = stmt.where(ReturnRequestModel.status == criteria.status.value)
        if criteria.status_in is not None:
            stmt = stmt.where(
                ReturnRequestModel.status.in_([s.value for s in criteria.status_in])
            )
        if criteria.type:
            stmt = stmt.where(ReturnRequestModel.type == criteria.type.value)
        if criteria.created_on:
            start, end = _day_bounds(criteria.created_on)
            stmt = stmt.where(
                ReturnRequestModel.created_at >= start,
                ReturnRequestModel.created_at < end,
            )
        if criteria.search:
            pattern = f"%{criteria.search.strip()}%"
            stmt = stmt.where(
                or_(
                    *(
                        getattr(ReturnRequestModel, name).ilike(pattern)
                        for name in _SEARCH_FIELDS
                    )
                )
            )
        if criteria.open_forward_shipment:
            stmt = stmt.where(
                ReturnRequestModel.type == RequestType.EXCHANGE.value,
                or_(
                    ReturnRequestModel.forward_awb_number.is_not(None),
                    ReturnRequestModel.forward_shipment_id.is_not(None),
                ),
                or_(
                    ReturnRequestModel.forward_status.is_(None),
                    ReturnRequestModel.forward_status != ForwardStatus.DELIVERED.value,
                ),
            )

        stmt = stmt.order_by(ReturnRequestModel.created_at.desc())

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [_from_model(m) for m in result.scalars().all()]

    async def stats(self) -> dict[str, int]:
        counts = {status.value: 0 for status in RequestStatus}
        stmt = select(ReturnRequestModel.status, func.count()).group_by(
            ReturnRequestModel.status
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            for status, count in result.all():
                counts[status] = count
        counts["total"] = sum(counts.values())
        return counts

    async def update(
        self, request_id: str, changes: Mapping[str, Any]
    ) -> ReturnRequest | None:
        return await self.compare_and_set(request_id, {}, changes)

    async def compare_and_set(
        self,
        request_id: str,
        expected: Mapping[str, Any],
        changes: Mapping[str, Any],
    ) -> ReturnRequest | None:
        _check_fields(expected)
        _check_fields(changes)

        stmt = update(ReturnRequestModel).where(
            ReturnRequestModel.request_id == request_id
        )
        for key, value in expected.items():
            column = getattr(ReturnRequestModel, key)
            if value is None:
                stmt = stmt.where(column.is_(None))
            else:
                stmt = stmt.where(column == _to_column_value(key, value))

        values = _to_columns(changes)
        values["updated_at"] = utc_now()
        stmt = stmt.values(**values).execution_options(synchronize_session=False)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
            if result.rowcount != 1:
                return None

        return await self.get(request_id)

    async def delete_many(self, request_ids: Collection[str]) -> int:
        ids = list(set(request_ids))
        if not ids:
            return 0
        stmt = (
            delete(ReturnRequestModel)
            .where(ReturnRequestModel.request_id.in_(ids))
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount


# Global store instance
_request_store: RequestStore | None = None


def get_request_store() -> RequestStore:
    """Get request store singleton for the configured backend."""
    global _request_store
    if _request_store is None:
        if settings.store_backend == "sql":
            from returnpilot.infrastructure.database import get_session_factory

            _request_store = SqlRequestStore(get_session_factory())
        else:
            _request_store = InMemoryRequestStore()
        logger.info("Request store initialised", backend=settings.store_backend)
    return _request_store


def reset_request_store() -> None:
    """Reset request store (for testing)."""
    global _request_store
    _request_store = None
