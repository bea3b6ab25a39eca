"""Reconciliation sweeper.

Re-polls the shipping aggregator for every request whose shipments may
still be moving and feeds the answers into the lifecycle service.
Per-request failures are logged and skipped.
"""

import asyncio
from dataclasses import dataclass

import structlog

from returnpilot.application.lifecycle_service import RequestLifecycleService
from returnpilot.domain.entities import ReturnRequest
from returnpilot.domain.state_machines import RequestStatus, ShipmentTrack
from returnpilot.infrastructure.request_store import RequestFilter
from returnpilot.infrastructure.shipping_client import ShippingClient, ShippingClientError

logger = structlog.get_logger()

REVERSE_SWEEP_STATUSES = (
    RequestStatus.PENDING,
    RequestStatus.SCHEDULED,
    RequestStatus.PICKED_UP,
    RequestStatus.IN_TRANSIT,
)


@dataclass
class SweepResult:
    """Outcome of one sweep."""

    updated_count: int = 0
    checked_count: int = 0
    failed_count: int = 0


class ReconciliationSweeper:
    """Brings stored shipment state in line with the carrier."""

    def __init__(
        self,
        lifecycle: RequestLifecycleService,
        shipping: ShippingClient | None,
    ) -> None:
        self.lifecycle = lifecycle
        self.shipping = shipping

    async def _reverse_candidates(self) -> list[ReturnRequest]:
        requests = await self.lifecycle.store.list_all(
            RequestFilter(status_in=REVERSE_SWEEP_STATUSES)
        )
        return [r for r in requests if r.reverse_tracking_id]

    async def _forward_candidates(self) -> list[ReturnRequest]:
        return await self.lifecycle.store.list_all(
            RequestFilter(open_forward_shipment=True)
        )

    async def _reconcile(
        self,
        request: ReturnRequest,
        track: ShipmentTrack,
        awb_number: str | None,
        shipment_id: str | None,
    ) -> bool:
        info = await self.shipping.track(awb_number=awb_number, shipment_id=shipment_id)
        if info is None or not info.current_status:
            return False

        updated = await self.lifecycle.advance_from_tracking(
            request.request_id,
            info.current_status,
            awb_number=info.awb_code,
            track=track,
        )
        return updated is not None

    async def sweep(self) -> SweepResult:
        """Run one reconciliation pass over both shipment tracks.

        Safe to run concurrently with itself; every write goes through
        the lifecycle service's compare-and-set.

        Returns:
            Counts of checked, updated and failed shipments.
        """
        result = SweepResult()
        if self.shipping is None:
            logger.info("Sweep skipped, shipping aggregator not configured")
            return result

        work: list[tuple[ReturnRequest, ShipmentTrack, str | None, str | None]] = []
        for request in await self._reverse_candidates():
            work.append((request, ShipmentTrack.REVERSE, request.awb_number, request.shipment_id))
        for request in await self._forward_candidates():
            work.append(
                (
                    request,
                    ShipmentTrack.FORWARD,
                    request.forward_awb_number,
                    request.forward_shipment_id,
                )
            )

        for request, track, awb_number, shipment_id in work:
            result.checked_count += 1
            try:
                if await self._reconcile(request, track, awb_number, shipment_id):
                    result.updated_count += 1
            except ShippingClientError as e:
                result.failed_count += 1
                logger.warning(
                    "Sweep lookup failed",
                    request_id=request.request_id,
                    track=track.value,
                    error=e.message,
                )
            except Exception as e:
                result.failed_count += 1
                logger.error(
                    "Sweep item failed",
                    request_id=request.request_id,
                    track=track.value,
                    error=str(e),
                    exc_info=True,
                )

        logger.info(
            "Sweep complete",
            checked=result.checked_count,
            updated=result.updated_count,
            failed=result.failed_count,
        )
        return result

    async def run_forever(self, interval_seconds: float) -> None:
        """Sweep on a fixed interval until cancelled."""
        logger.info("Periodic sweep started", interval_seconds=interval_seconds)
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.sweep()
            except Exception as e:
                logger.error("Periodic sweep failed", error=str(e), exc_info=True)


def get_reconciliation_sweeper() -> ReconciliationSweeper:
    """Get a sweeper wired to the configured lifecycle service."""
    from returnpilot.application.lifecycle_service import get_lifecycle_service

    lifecycle = get_lifecycle_service()
    return ReconciliationSweeper(lifecycle, lifecycle.shipping)
