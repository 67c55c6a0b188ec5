"""Tests for the reminder sweep."""

import pytest

from bookingsync.services.booking_store import BookingStore
from bookingsync.services.reminders import ReminderService

from conftest import utc


async def confirmed(store, tenant_id, data, event_id):
    booking = await store.create(tenant_id, data)
    return await store.bind(tenant_id, booking.id, event_id)


class TestSendDueReminders:
    @pytest.mark.asyncio
    async def test_sends_once_per_booking(self, db_session, tenant, notifier, sms_client, booking_data):
        store = BookingStore(db_session)
        booking = await confirmed(store, tenant.id, booking_data, "evt-1")
        service = ReminderService(db_session, notifier)

        first = await service.send_due_reminders(now=utc(2030, 1, 6, 12))
        second = await service.send_due_reminders(now=utc(2030, 1, 6, 12))

        assert first.sent == [booking.id]
        assert second.sent == []
        [(to, body, from_)] = sms_client.sent
        assert to == "+61411111111"
        assert from_ == "+61400000000"
        assert "Brake service" in body and "Northside Auto" in body

    @pytest.mark.asyncio
    async def test_outside_window_and_unconfirmed_skipped(self, db_session, tenant, notifier, sms_client, booking_data):
        store = BookingStore(db_session)
        await store.create(tenant.id, booking_data)  # still pending
        await confirmed(
            store,
            tenant.id,
            {**booking_data, "start_time": utc(2030, 1, 9, 10), "end_time": utc(2030, 1, 9, 11)},
            "evt-2",
        )

        run = await ReminderService(db_session, notifier).send_due_reminders(now=utc(2030, 1, 6, 12))

        assert run.sent == [] and run.failed == []
        assert sms_client.sent == []

    @pytest.mark.asyncio
    async def test_failures_do_not_stop_the_run(self, db_session, tenant, notifier, sms_client, booking_data):
        store = BookingStore(db_session)
        no_phone = await confirmed(store, tenant.id, {**booking_data, "customer_phone": None}, "evt-1")
        bad_phone = await confirmed(
            store,
            tenant.id,
            {
                **booking_data,
                "customer_phone": "+61499999999",
                "start_time": utc(2030, 1, 7, 12),
                "end_time": utc(2030, 1, 7, 13),
            },
            "evt-2",
        )
        good = await confirmed(
            store,
            tenant.id,
            {**booking_data, "start_time": utc(2030, 1, 7, 14), "end_time": utc(2030, 1, 7, 15)},
            "evt-3",
        )
        sms_client.fail_for.add("+61499999999")

        run = await ReminderService(db_session, notifier).send_due_reminders(now=utc(2030, 1, 6, 12))

        assert run.skipped == [no_phone.id]
        assert run.failed == [bad_phone.id]
        assert run.sent == [good.id]
        # the failed one is retried on the next sweep
        sms_client.fail_for.clear()
        retry = await ReminderService(db_session, notifier).send_due_reminders(now=utc(2030, 1, 6, 12))
        assert retry.sent == [bad_phone.id]
