import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from bookingsync.core.clock import utcnow
from bookingsync.core.errors import BookingSyncError
from bookingsync.models import Tenant
from bookingsync.services.booking_notifier import BookingNotifier
from bookingsync.services.booking_store import BookingStore
from bookingsync.services.tenant_service import TenantService

logger = logging.getLogger(__name__)

REMINDER_LEAD = timedelta(hours=24)


@dataclass
class ReminderRun:
    sent: list = field(default_factory=list)
    skipped: list = field(default_factory=list)
    failed: list = field(default_factory=list)


class ReminderService:
    """Texts customers about confirmed bookings starting within the next day."""

    def __init__(self, session: AsyncSession, notifier: BookingNotifier):
        self.store = BookingStore(session)
        self.tenants = TenantService(session)
        self.notifier = notifier

    async def send_due_reminders(
        self, now: Optional[datetime] = None, lead: timedelta = REMINDER_LEAD
    ) -> ReminderRun:
        now = now or utcnow()
        run = ReminderRun()
        tenants: dict[str, Optional[Tenant]] = {}

        for booking in await self.store.list_due_reminders(now, now + lead):
            if booking.tenant_id not in tenants:
                tenants[booking.tenant_id] = await self.tenants.get_tenant(booking.tenant_id)
            try:
                delivered = await self.notifier.send_reminder(booking, tenants[booking.tenant_id])
            except Exception as e:
                logger.error(f"Reminder for booking {booking.id} failed: {e!r}")
                run.failed.append(booking.id)
                continue
            if not delivered:
                run.skipped.append(booking.id)
                continue
            try:
                await self.store.mark_reminder_sent(booking.tenant_id, booking.id)
            except BookingSyncError as e:
                logger.error(f"Reminder for booking {booking.id} sent but not recorded: {e.message}")
                run.failed.append(booking.id)
                continue
            run.sent.append(booking.id)

        logger.info(
            f"Reminders: {len(run.sent)} sent, {len(run.skipped)} skipped, {len(run.failed)} failed"
        )
        return run
