from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from bookingsync.core.clock import as_aware_utc
from bookingsync.integrations.providers.base import CalendarGateway, Interval
from bookingsync.services.booking_store import BookingStore
from bookingsync.services.slots import (
    DEFAULT_STEP_MINUTES,
    BusinessHours,
    Slot,
    SlotGenerator,
)

logger = logging.getLogger(__name__)


class AvailabilityResolver:
    """Open slots for a tenant: business hours minus committed time.

    Committed time is whatever the calendar reports busy, plus (when a store
    is given) local bookings that have not reached the calendar yet. Nothing
    is held; two callers may be offered the same slot.
    """

    def __init__(
        self,
        gateway: CalendarGateway,
        business_hours: Optional[BusinessHours] = None,
        step_minutes: int = DEFAULT_STEP_MINUTES,
        store: Optional[BookingStore] = None,
    ):
        self.gateway = gateway
        self.business_hours = business_hours or BusinessHours.default()
        self.step_minutes = step_minutes
        self.store = store

    async def find_available_slots(
        self,
        tenant_id: str,
        calendar_id: str,
        range_start: datetime,
        range_end: datetime,
        duration_minutes: int,
    ) -> list[Slot]:
        # Validates the request before any remote call
        candidates = SlotGenerator(
            range_start,
            range_end,
            duration_minutes,
            self.business_hours,
            self.step_minutes,
        )

        busy = await self.gateway.get_busy_intervals(
            calendar_id, candidates.range_start, candidates.range_end
        )
        busy = [Interval(as_aware_utc(b.start), as_aware_utc(b.end)) for b in busy]
        if self.store is not None:
            busy.extend(await self._local_only_busy(tenant_id, candidates.range_start, candidates.range_end))

        available = [
            slot for slot in candidates if not any(slot.overlaps(b.start, b.end) for b in busy)
        ]
        logger.info(
            f"Tenant {tenant_id}: {len(available)} open slots of {duration_minutes} min "
            f"between {candidates.range_start.isoformat()} and {candidates.range_end.isoformat()} "
            f"({len(busy)} busy intervals)"
        )
        return available

    async def _local_only_busy(
        self, tenant_id: str, range_start: datetime, range_end: datetime
    ) -> list[Interval]:
        # A day of lookback catches bookings that started before the range
        bookings = await self.store.list_by_date_range(
            tenant_id, range_start - timedelta(days=1), range_end
        )
        return [
            Interval(as_aware_utc(b.start_time), as_aware_utc(b.end_time))
            for b in bookings
            if not b.is_bound and not b.is_terminal
        ]
