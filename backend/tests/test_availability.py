"""Tests for AvailabilityResolver."""

import pytest

from bookingsync.core.errors import InvalidDuration, InvalidRange
from bookingsync.integrations.providers.base import Interval
from bookingsync.services.availability import AvailabilityResolver
from bookingsync.services.booking_store import BookingStore
from bookingsync.services.slots import BusinessHours

from conftest import CALENDAR_ID, TENANT_ID, utc


class TestFindAvailableSlots:
    """Busy time from the calendar (and local-only bookings) removes slots."""

    @pytest.mark.asyncio
    async def test_busy_hour_is_excluded(self, gateway):
        gateway.busy = [Interval(utc(2030, 1, 7, 10, 0), utc(2030, 1, 7, 11, 0))]
        resolver = AvailabilityResolver(gateway, BusinessHours.default("UTC"), step_minutes=60)

        slots = await resolver.find_available_slots(
            TENANT_ID, CALENDAR_ID, utc(2030, 1, 7, 0, 0), utc(2030, 1, 7, 23, 0), 60
        )
        starts = [s.start for s in slots]

        assert utc(2030, 1, 7, 10, 0) not in starts
        assert utc(2030, 1, 7, 9, 0) in starts
        assert utc(2030, 1, 7, 11, 0) in starts

    @pytest.mark.asyncio
    async def test_no_returned_slot_overlaps_busy_time(self, gateway):
        gateway.busy = [
            Interval(utc(2030, 1, 7, 9, 45), utc(2030, 1, 7, 10, 15)),
            Interval(utc(2030, 1, 7, 13, 0), utc(2030, 1, 7, 15, 30)),
        ]
        resolver = AvailabilityResolver(gateway, BusinessHours.default("UTC"), step_minutes=15)

        slots = await resolver.find_available_slots(
            TENANT_ID, CALENDAR_ID, utc(2030, 1, 7), utc(2030, 1, 8), 45
        )

        assert slots
        for slot in slots:
            for busy in gateway.busy:
                assert not (slot.start < busy.end and slot.end > busy.start)
        # touching a busy interval is allowed
        assert utc(2030, 1, 7, 15, 30) in [s.start for s in slots]
        assert [s.start for s in slots] == sorted(s.start for s in slots)

    @pytest.mark.asyncio
    async def test_invalid_input_fails_before_calendar_call(self, gateway):
        resolver = AvailabilityResolver(gateway, BusinessHours.default("UTC"))

        with pytest.raises(InvalidRange):
            await resolver.find_available_slots(
                TENANT_ID, CALENDAR_ID, utc(2030, 1, 8), utc(2030, 1, 7), 60
            )
        with pytest.raises(InvalidDuration):
            await resolver.find_available_slots(
                TENANT_ID, CALENDAR_ID, utc(2030, 1, 7), utc(2030, 1, 8), 0
            )

        assert gateway.calls_to("get_busy_intervals") == []

    @pytest.mark.asyncio
    async def test_local_only_bookings_count_as_busy(self, gateway, db_session, tenant, booking_data):
        store = BookingStore(db_session)
        await store.create(tenant.id, booking_data)  # 10:00-11:00, never reached the calendar
        canceled = await store.create(
            tenant.id,
            {**booking_data, "start_time": utc(2030, 1, 7, 14), "end_time": utc(2030, 1, 7, 15)},
        )
        await store.cancel(tenant.id, canceled.id)

        resolver = AvailabilityResolver(
            gateway, BusinessHours.default("UTC"), step_minutes=60, store=store
        )
        slots = await resolver.find_available_slots(
            tenant.id, CALENDAR_ID, utc(2030, 1, 7), utc(2030, 1, 8), 60
        )
        starts = [s.start for s in slots]

        assert utc(2030, 1, 7, 10, 0) not in starts
        assert utc(2030, 1, 7, 14, 0) in starts
