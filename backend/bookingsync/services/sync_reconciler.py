"""
Keeps bookings and calendar events consistent in both directions.

Local changes go to the calendar first and are recorded locally once the
provider accepted them. Provider changes arrive as push notifications that may
be late, duplicated or out of order; each one is re-read from the provider and
folded in through the store's timestamp-gated merge, so handling the same
notification twice has the same effect as handling it once.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from bookingsync.core.clock import as_aware_utc, utcnow
from bookingsync.core.errors import (
    BookingSyncError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
)
from bookingsync.integrations.providers.base import CalendarGateway, EventChanges
from bookingsync.integrations.providers.registry import resolve_gateway
from bookingsync.models import Booking, BookingStatus, Tenant
from bookingsync.services.booking_notifier import BookingNotifier
from bookingsync.services.booking_store import (
    AppliedChange,
    ApplyOutcome,
    BookingStore,
    normalize_changes,
)
from bookingsync.services.calendar_notifications import CalendarNotification, ResourceState
from bookingsync.services.tenant_service import TenantService

logger = logging.getLogger(__name__)

GatewayFactory = Callable[[Tenant], CalendarGateway]

# Changes that have to reach the calendar event
EVENT_FIELDS = frozenset({"start_time", "end_time", "service_type", "notes", "customer_name"})


class SyncAction(str, Enum):
    IGNORED = "ignored"
    DROPPED = "dropped"
    UPDATED = "updated"
    CANCELED = "canceled"
    UNCHANGED = "unchanged"
    STALE = "stale"
    TERMINAL = "terminal"
    UNMATCHED = "unmatched"
    CREATED = "created"
    FAILED = "failed"


@dataclass
class SyncResult:
    action: SyncAction
    booking_id: Optional[uuid.UUID] = None
    detail: Optional[str] = None


_OUTCOME_ACTIONS = {
    ApplyOutcome.UPDATED: SyncAction.UPDATED,
    ApplyOutcome.STALE: SyncAction.STALE,
    ApplyOutcome.UNCHANGED: SyncAction.UNCHANGED,
    ApplyOutcome.TERMINAL: SyncAction.TERMINAL,
    ApplyOutcome.UNMATCHED: SyncAction.UNMATCHED,
}


def event_id_for_booking(booking_id: uuid.UUID) -> str:
    """Calendar event id derived from the booking id.

    Hex digits are valid base32hex, so Google accepts it as a client-chosen
    id and a repeated insert for the same booking answers 409.
    """
    return booking_id.hex


def event_summary(booking: Booking) -> str:
    return f"{booking.service_type} - {booking.customer_name or 'Customer'}"


def event_description(booking: Booking) -> str:
    lines = [
        f"Service: {booking.service_type}",
        f"Customer: {booking.customer_name or booking.customer_id}",
        f"Vehicle: {booking.vehicle_id}",
    ]
    if booking.customer_phone:
        lines.append(f"Phone: {booking.customer_phone}")
    if booking.notes:
        lines.append(f"Notes: {booking.notes}")
    lines.append(f"Booking ID: {booking.id}")
    return "\n".join(lines)


def _result(change: AppliedChange, detail: Optional[str] = None) -> SyncResult:
    booking_id = change.booking.id if change.booking is not None else None
    return SyncResult(_OUTCOME_ACTIONS[change.outcome], booking_id, detail)


class SyncReconciler:
    def __init__(
        self,
        session: AsyncSession,
        gateway_factory: GatewayFactory = resolve_gateway,
        notifier: Optional[BookingNotifier] = None,
    ):
        self.store = BookingStore(session)
        self.tenants = TenantService(session)
        self._gateway_factory = gateway_factory
        self.notifier = notifier

    def _gateway(self, tenant: Tenant) -> CalendarGateway:
        return self._gateway_factory(tenant)

    # ── Local → external ──────────────────────────────────────────────────

    async def create_booking(self, tenant_id: str, data: dict) -> Booking:
        """Insert a pending booking, create its calendar event, then confirm.

        If the calendar call fails the booking stays pending and unbound and
        the error propagates with the booking id attached.
        """
        tenant = await self.tenants.require_tenant(tenant_id)
        if not tenant.auto_sync_bookings:
            return await self.store.create(tenant_id, data)

        # Resolved before the insert so a disconnected calendar creates nothing
        gateway = self._gateway(tenant)
        booking = await self.store.create(tenant_id, data)
        try:
            return await self._push_new_booking(tenant, gateway, booking)
        except BookingSyncError as exc:
            exc.details.setdefault("booking_id", str(booking.id))
            raise

    async def _push_new_booking(
        self,
        tenant: Tenant,
        gateway: CalendarGateway,
        booking: Booking,
        reconcile: bool = False,
    ) -> Booking:
        """Create the booking's event and bind it.

        With ``reconcile`` the event may already exist from an earlier insert
        whose response was lost; it is brought in line with the booking
        before binding.
        """
        calendar_id = tenant.google_calendar_id
        try:
            event_id = await gateway.create_event(
                calendar_id,
                event_summary(booking),
                event_description(booking),
                as_aware_utc(booking.start_time),
                as_aware_utc(booking.end_time),
                attendee_email=booking.customer_email,
                event_id=event_id_for_booking(booking.id),
            )
            if reconcile:
                await self._align_event(gateway, calendar_id, event_id, booking)
        except BookingSyncError as exc:
            logger.error(f"Calendar event for booking {booking.id} not created: {exc.message}")
            raise

        try:
            booking = await self.store.bind(tenant.id, booking.id, event_id)
        except ConflictError:
            logger.warning(
                f"Booking {booking.id} could not be confirmed; deleting calendar event {event_id}"
            )
            try:
                await gateway.delete_event(calendar_id, event_id)
            except BookingSyncError as cleanup_exc:
                logger.error(f"Compensating delete of event {event_id} failed: {cleanup_exc.message}")
            raise

        if self.notifier is not None:
            self.notifier.booking_confirmed(booking, tenant)
        return booking

    async def _align_event(
        self, gateway: CalendarGateway, calendar_id: str, event_id: str, booking: Booking
    ) -> None:
        event = await gateway.get_event(calendar_id, event_id)
        start, end = as_aware_utc(booking.start_time), as_aware_utc(booking.end_time)
        summary = event_summary(booking)
        if (event.start, event.end, event.summary) == (start, end, summary):
            return
        logger.info(f"Event {event_id} predates changes to booking {booking.id}; updating it")
        await gateway.update_event(
            calendar_id,
            event_id,
            EventChanges(
                summary=summary,
                description=event_description(booking),
                start=start,
                end=end,
            ),
        )

    async def update_booking(self, tenant_id: str, booking_id, changes: dict) -> Booking:
        """Apply local changes, pushing event-visible ones to the calendar first."""
        changes = dict(changes)
        # Cancellation has its own flow (calendar delete first)
        cancel_requested = changes.get("status") == BookingStatus.CANCELED.value
        if cancel_requested:
            changes.pop("status")

        booking = await self.store.get(tenant_id, booking_id)
        assignments = normalize_changes(booking, changes)

        if booking.is_bound and EVENT_FIELDS.intersection(assignments):
            tenant = await self.tenants.require_tenant(tenant_id)
            gateway = self._gateway(tenant)
            preview = _Preview(booking, assignments)
            event_changes = EventChanges(
                summary=event_summary(preview),
                description=event_description(preview),
                start=as_aware_utc(preview.start_time),
                end=as_aware_utc(preview.end_time),
            )
            try:
                await gateway.update_event(
                    tenant.google_calendar_id, booking.external_event_id, event_changes
                )
            except NotFoundError:
                logger.warning(
                    f"Calendar event {booking.external_event_id} is gone; "
                    f"booking {booking.id} treated as deleted externally"
                )
                change = await self.store.mark_deleted_externally(
                    tenant_id, booking.external_event_id
                )
                return change.booking

        if assignments:
            booking = await self.store.update(tenant_id, booking.id, changes)
        if cancel_requested:
            booking = await self.cancel_booking(tenant_id, booking.id)
        return booking

    async def cancel_booking(self, tenant_id: str, booking_id) -> Booking:
        """Delete the calendar event, then cancel locally.

        Already canceled bookings are returned untouched without calling the
        provider. An unbound booking of an auto-sync tenant still deletes its
        derived event id, in case an earlier insert landed unacknowledged.
        If the delete fails the booking is flagged ``cancellation_pending``
        for the retry sweep and the error propagates.
        """
        booking = await self.store.get(tenant_id, booking_id)
        if booking.booking_status == BookingStatus.CANCELED:
            return booking
        if not booking.can_transition_to(BookingStatus.CANCELED):
            raise ConflictError(f"Booking {booking.id} is {booking.status}, cannot cancel")

        tenant = await self.tenants.require_tenant(tenant_id)
        event_id = booking.external_event_id
        if event_id is None and tenant.auto_sync_bookings and tenant.calendar_connected:
            # An earlier insert may have landed without us seeing the response
            event_id = event_id_for_booking(booking.id)
        if event_id is not None:
            gateway = self._gateway(tenant)
            try:
                await gateway.delete_event(tenant.google_calendar_id, event_id)
            except ExternalServiceError:
                await self.store.mark_cancellation_pending(tenant_id, booking.id)
                logger.error(
                    f"Calendar delete for booking {booking.id} failed; cancellation left pending"
                )
                raise

        booking = await self.store.cancel(tenant_id, booking.id)
        if self.notifier is not None:
            self.notifier.booking_canceled(booking, tenant)
        return booking

    async def retry_pending_cancellations(self) -> list[SyncResult]:
        """Finish cancellations whose calendar delete failed earlier."""
        results: list[SyncResult] = []
        for booking in await self.store.list_pending_cancellations():
            try:
                booking = await self.cancel_booking(booking.tenant_id, booking.id)
            except BookingSyncError as exc:
                logger.warning(f"Pending cancellation of {booking.id} still failing: {exc.message}")
                results.append(SyncResult(SyncAction.FAILED, booking.id, exc.message))
                continue
            results.append(SyncResult(SyncAction.CANCELED, booking.id))
        return results

    async def retry_unconfirmed(self, older_than: timedelta = timedelta(minutes=5)) -> list[SyncResult]:
        """Re-attempt calendar creation for bookings stuck in pending.

        The derived event id makes this safe when an earlier attempt did reach
        the provider: the insert answers 409, the existing event is updated
        if the booking changed since, and the booking is bound.
        """
        results: list[SyncResult] = []
        cutoff = utcnow() - older_than
        tenants: dict[str, Tenant] = {}
        for booking in await self.store.list_unconfirmed(cutoff):
            try:
                tenant = tenants.get(booking.tenant_id)
                if tenant is None:
                    tenant = await self.tenants.require_tenant(booking.tenant_id)
                    tenants[tenant.id] = tenant
                if not tenant.auto_sync_bookings:
                    continue
                booking = await self._push_new_booking(
                    tenant, self._gateway(tenant), booking, reconcile=True
                )
            except BookingSyncError as exc:
                logger.warning(f"Booking {booking.id} still unconfirmed: {exc.message}")
                results.append(SyncResult(SyncAction.FAILED, booking.id, exc.message))
                continue
            results.append(SyncResult(SyncAction.CREATED, booking.id))
        return results

    # ── External → local ──────────────────────────────────────────────────

    async def handle_notification(self, notification: CalendarNotification) -> SyncResult:
        state = notification.resource_state
        if state == ResourceState.SYNC:
            return SyncResult(SyncAction.IGNORED, detail="sync handshake")
        if state == ResourceState.UNKNOWN:
            logger.warning(
                f"Unknown resource state on channel {notification.channel_id}; ignoring"
            )
            return SyncResult(SyncAction.IGNORED, detail="unknown resource state")

        channel = await self.tenants.get_channel(notification.channel_id)
        if channel is None:
            logger.warning(f"Notification for unknown channel {notification.channel_id}; dropped")
            return SyncResult(SyncAction.DROPPED, detail="unknown channel")
        if channel.token and notification.channel_token != channel.token:
            logger.warning(f"Channel token mismatch on {notification.channel_id}; dropped")
            return SyncResult(SyncAction.DROPPED, detail="token mismatch")
        if channel.resource_id and notification.resource_id != channel.resource_id:
            logger.warning(f"Resource id mismatch on {notification.channel_id}; dropped")
            return SyncResult(SyncAction.DROPPED, detail="resource mismatch")

        event_id = notification.event_id
        if not event_id:
            logger.info(f"Notification on {notification.channel_id} names no event; ignoring")
            return SyncResult(SyncAction.IGNORED, detail="no event id")

        tenant_id = channel.tenant_id
        if state == ResourceState.NOT_EXISTS:
            return await self._apply_deletion(tenant_id, event_id)

        # Unbound events are not ours; skip the provider round trip
        if await self.store.get_by_external_event_id(tenant_id, event_id) is None:
            logger.info(f"Event {event_id} matches no booking of tenant {tenant_id}; dropped")
            return SyncResult(SyncAction.UNMATCHED)

        tenant = await self.tenants.require_tenant(tenant_id)
        gateway = self._gateway(tenant)
        try:
            event = await gateway.get_event(channel.calendar_id, event_id)
        except NotFoundError:
            return await self._apply_deletion(tenant_id, event_id)

        change = await self.store.apply_external_update(
            tenant_id,
            event_id,
            EventChanges(start=event.start, end=event.end, status=event.status),
            event.updated,
        )
        if change.outcome == ApplyOutcome.UPDATED and change.booking.booking_status == BookingStatus.CANCELED:
            return _result(change, "canceled in calendar")
        return _result(change)

    async def _apply_deletion(self, tenant_id: str, event_id: str) -> SyncResult:
        change = await self.store.mark_deleted_externally(tenant_id, event_id)
        if change.outcome == ApplyOutcome.UPDATED:
            return SyncResult(SyncAction.CANCELED, change.booking.id, "deleted in calendar")
        if change.outcome == ApplyOutcome.UNMATCHED:
            logger.info(f"Deleted event {event_id} matches no booking of tenant {tenant_id}")
        return _result(change)


class _Preview:
    """Read-only view of a booking with pending assignments laid over it."""

    def __init__(self, booking: Booking, assignments: dict):
        self._booking = booking
        self._assignments = assignments

    def __getattr__(self, name):
        if name in self._assignments:
            return self._assignments[name]
        return getattr(self._booking, name)
