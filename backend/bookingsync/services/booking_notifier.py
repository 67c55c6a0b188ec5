"""Customer SMS for booking lifecycle events.

Confirmation and cancellation messages are fire-and-forget: they run as
background tasks and a delivery failure is logged, never raised into the
booking flow. Reminders are awaited so the caller can record delivery.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from bookingsync.core.clock import as_aware_utc
from bookingsync.integrations.twilio_client import TwilioClient, get_twilio_client
from bookingsync.models import Booking, Tenant

logger = logging.getLogger(__name__)


def _when(booking: Booking, tenant: Optional[Tenant]) -> str:
    tz = (tenant.google_calendar_timezone if tenant else None) or "UTC"
    local = as_aware_utc(booking.start_time).astimezone(ZoneInfo(tz))
    return local.strftime("%A %d %b %Y at %I:%M %p")


class BookingNotifier:
    def __init__(self, client_factory: Callable[[], TwilioClient] = get_twilio_client):
        self._client_factory = client_factory
        self._tasks: set[asyncio.Task] = set()

    def booking_confirmed(self, booking: Booking, tenant: Optional[Tenant]) -> None:
        business = tenant.name if tenant else "us"
        self._fire(
            booking,
            tenant,
            f"Hi {booking.customer_name or 'there'}! Your {booking.service_type} appointment "
            f"with {business} is confirmed for {_when(booking, tenant)}. "
            f"Booking ID: {booking.id}.",
        )

    def booking_canceled(self, booking: Booking, tenant: Optional[Tenant]) -> None:
        business = tenant.name if tenant else "us"
        self._fire(
            booking,
            tenant,
            f"Hi {booking.customer_name or 'there'}, your appointment with {business} on "
            f"{_when(booking, tenant)} has been cancelled.",
        )

    async def send_reminder(self, booking: Booking, tenant: Optional[Tenant]) -> bool:
        """Send a reminder now; returns False when there is nobody to text."""
        business = tenant.name if tenant else "us"
        return await self._send(
            booking,
            tenant,
            f"Reminder: your {booking.service_type} appointment with {business} is on "
            f"{_when(booking, tenant)}.",
        )

    async def drain(self) -> None:
        """Wait for in-flight background sends (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _fire(self, booking: Booking, tenant: Optional[Tenant], body: str) -> None:
        if not booking.customer_phone:
            return
        task = asyncio.create_task(self._send(booking, tenant, body))
        self._tasks.add(task)
        task.add_done_callback(self._finished)

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Booking SMS failed: {exc!r}")

    async def _send(self, booking: Booking, tenant: Optional[Tenant], body: str) -> bool:
        if not booking.customer_phone:
            logger.debug(f"Booking {booking.id} has no phone number; SMS skipped")
            return False
        client = self._client_factory()
        from_number = tenant.twilio_number if tenant else None
        # The Twilio SDK is blocking
        await asyncio.to_thread(client.send_sms, booking.customer_phone, body, from_number)
        logger.info(f"SMS sent for booking {booking.id}")
        return True
