"""
Booking persistence and the booking state machine.

Every query is scoped by tenant; a booking that belongs to another tenant is
indistinguishable from one that does not exist. Mutations are read-modify-write
cycles guarded by the row ``version`` column: when another session wrote the
row first the flush raises ``StaleDataError``, the row is reloaded and the
mutation re-applied, so the state machine decides the outcome of races.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from bookingsync.core.clock import to_naive_utc, utcnow
from bookingsync.core.errors import (
    BookingNotFoundError,
    ConflictError,
    InvalidRange,
    ValidationError,
)
from bookingsync.integrations.providers.base import EventChanges
from bookingsync.models import Booking, BookingStatus

logger = logging.getLogger(__name__)

MAX_WRITE_ATTEMPTS = 3

REQUIRED_FIELDS = ("vehicle_id", "customer_id", "service_type", "start_time", "end_time")
CREATE_FIELDS = REQUIRED_FIELDS + ("customer_name", "customer_email", "customer_phone", "notes")
UPDATE_FIELDS = frozenset(
    {
        "start_time",
        "end_time",
        "service_type",
        "notes",
        "customer_name",
        "customer_email",
        "customer_phone",
        "status",
    }
)

BookingId = Union[str, uuid.UUID]


class ApplyOutcome(str, Enum):
    UPDATED = "updated"
    STALE = "stale"
    UNCHANGED = "unchanged"
    TERMINAL = "terminal"
    UNMATCHED = "unmatched"


@dataclass
class AppliedChange:
    """What an externally sourced change did to the local booking."""

    outcome: ApplyOutcome
    booking: Optional[Booking] = None


def _as_uuid(booking_id: BookingId) -> Optional[uuid.UUID]:
    if isinstance(booking_id, uuid.UUID):
        return booking_id
    try:
        return uuid.UUID(str(booking_id))
    except ValueError:
        return None


def _as_status(value: Any) -> BookingStatus:
    try:
        return BookingStatus(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown booking status: {value!r}") from exc


def _touch(booking: Booking, at: Optional[datetime] = None) -> None:
    # updated_at only ever moves forward
    stamp = at or utcnow()
    if booking.updated_at is None or stamp > booking.updated_at:
        booking.updated_at = stamp


def normalize_changes(booking: Booking, changes: dict) -> dict:
    """Validate a local change set against a booking's current state.

    Returns the assignments to make, with times as naive UTC and status as a
    plain string. Raises before anything is assigned.
    """
    unknown = set(changes) - UPDATE_FIELDS
    if unknown:
        raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
    if booking.is_terminal and changes:
        raise ConflictError(
            f"Booking {booking.id} is {booking.status} and can no longer be changed"
        )

    result: dict[str, Any] = {}
    for key, value in changes.items():
        if key in ("start_time", "end_time"):
            if value is None:
                raise ValidationError(f"{key} cannot be cleared")
            result[key] = to_naive_utc(value)
        elif key == "status":
            target = _as_status(value)
            if target != booking.booking_status:
                # Only bind() confirms: confirmed implies a bound calendar event
                if target == BookingStatus.CONFIRMED:
                    raise ConflictError(
                        f"Booking {booking.id} is confirmed only once its calendar event exists"
                    )
                if not booking.can_transition_to(target):
                    raise ConflictError(
                        f"Booking {booking.id} cannot move from {booking.status} to {target.value}"
                    )
                result[key] = target.value
        elif key == "service_type" and not value:
            raise ValidationError("service_type cannot be empty")
        else:
            result[key] = value

    start = result.get("start_time", booking.start_time)
    end = result.get("end_time", booking.end_time)
    if start >= end:
        raise ValidationError("start_time must be before end_time")
    return result


class BookingStore:
    """
    Tenant-scoped booking operations
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    # ==================== READS ====================

    async def _find(
        self, tenant_id: str, booking_id: BookingId, refresh: bool = False
    ) -> Optional[Booking]:
        b_uuid = _as_uuid(booking_id)
        if b_uuid is None:
            return None
        stmt = select(Booking).where(Booking.tenant_id == tenant_id, Booking.id == b_uuid)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get(self, tenant_id: str, booking_id: BookingId) -> Booking:
        """Get booking by ID"""
        booking = await self._find(tenant_id, booking_id)
        if booking is None:
            raise BookingNotFoundError(
                f"Booking {booking_id} not found", details={"booking_id": str(booking_id)}
            )
        return booking

    async def get_by_external_event_id(
        self, tenant_id: str, external_event_id: str, refresh: bool = False
    ) -> Optional[Booking]:
        """Get the booking bound to a calendar event"""
        stmt = select(Booking).where(
            Booking.tenant_id == tenant_id,
            Booking.external_event_id == external_event_id,
        )
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_by_date_range(
        self,
        tenant_id: str,
        start: datetime,
        end: datetime,
        status: Optional[Union[str, BookingStatus]] = None,
    ) -> List[Booking]:
        """Bookings starting within [start, end], earliest first"""
        start, end = to_naive_utc(start), to_naive_utc(end)
        if start > end:
            raise InvalidRange("start must not be after end")

        stmt = select(Booking).where(
            Booking.tenant_id == tenant_id,
            Booking.start_time >= start,
            Booking.start_time <= end,
        )
        if status is not None:
            stmt = stmt.where(Booking.status == _as_status(status).value)
        result = await self.session.execute(stmt.order_by(Booking.start_time, Booking.created_at))
        return list(result.scalars().all())

    async def list_pending_cancellations(self, tenant_id: Optional[str] = None) -> List[Booking]:
        """Bookings whose external delete has not gone through yet"""
        stmt = select(Booking).where(
            Booking.cancellation_pending.is_(True),
            Booking.status != BookingStatus.CANCELED.value,
        )
        if tenant_id is not None:
            stmt = stmt.where(Booking.tenant_id == tenant_id)
        result = await self.session.execute(stmt.order_by(Booking.updated_at))
        return list(result.scalars().all())

    async def list_unconfirmed(
        self, older_than: datetime, tenant_id: Optional[str] = None
    ) -> List[Booking]:
        """Pending, unbound bookings created before ``older_than``"""
        stmt = select(Booking).where(
            Booking.status == BookingStatus.PENDING.value,
            Booking.external_event_id.is_(None),
            Booking.cancellation_pending.is_(False),
            Booking.created_at < to_naive_utc(older_than),
        )
        if tenant_id is not None:
            stmt = stmt.where(Booking.tenant_id == tenant_id)
        result = await self.session.execute(stmt.order_by(Booking.created_at))
        return list(result.scalars().all())

    async def list_due_reminders(self, window_start: datetime, window_end: datetime) -> List[Booking]:
        """Confirmed bookings in the window that have not been reminded"""
        result = await self.session.execute(
            select(Booking)
            .where(
                Booking.status == BookingStatus.CONFIRMED.value,
                Booking.reminder_sent.is_(False),
                Booking.start_time >= to_naive_utc(window_start),
                Booking.start_time <= to_naive_utc(window_end),
            )
            .order_by(Booking.start_time)
        )
        return list(result.scalars().all())

    # ==================== WRITES ====================

    async def create(self, tenant_id: str, data: dict) -> Booking:
        """Create new booking in ``pending``"""
        missing = [key for key in REQUIRED_FIELDS if not data.get(key)]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        unknown = set(data) - set(CREATE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown booking fields: {', '.join(sorted(unknown))}")

        start = to_naive_utc(data["start_time"])
        end = to_naive_utc(data["end_time"])
        if start >= end:
            raise ValidationError("start_time must be before end_time")

        now = utcnow()
        booking = Booking(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            vehicle_id=data["vehicle_id"],
            customer_id=data["customer_id"],
            customer_name=data.get("customer_name"),
            customer_email=data.get("customer_email"),
            customer_phone=data.get("customer_phone"),
            service_type=data["service_type"],
            notes=data.get("notes"),
            status=BookingStatus.PENDING.value,
            cancellation_pending=False,
            reminder_sent=False,
            created_at=now,
            updated_at=now,
        )
        booking.set_times(start, end)
        self.session.add(booking)
        await self.session.commit()
        await self.session.refresh(booking)
        logger.info(f"Booking {booking.id} created for tenant {tenant_id}")
        return booking

    async def _mutate(
        self,
        tenant_id: str,
        booking_id: BookingId,
        mutation: Callable[[Booking], bool],
    ) -> Booking:
        """Load, apply ``mutation`` and commit, retrying on a version clash.

        ``mutation`` returns False when there is nothing to write. It must
        raise before assigning anything if the change is not allowed.
        """
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            booking = await self._find(tenant_id, booking_id, refresh=attempt > 1)
            if booking is None:
                raise BookingNotFoundError(
                    f"Booking {booking_id} not found", details={"booking_id": str(booking_id)}
                )
            if not mutation(booking):
                return booking
            try:
                await self.session.commit()
            except StaleDataError:
                await self.session.rollback()
                logger.warning(
                    f"Booking {booking_id} changed concurrently, retrying "
                    f"(attempt {attempt}/{MAX_WRITE_ATTEMPTS})"
                )
                continue
            except IntegrityError as exc:
                await self.session.rollback()
                raise ConflictError(
                    f"Booking {booking_id} conflicts with an existing booking"
                ) from exc
            return booking

        raise ConflictError(f"Booking {booking_id} kept changing underneath the update")

    async def bind(self, tenant_id: str, booking_id: BookingId, external_event_id: str) -> Booking:
        """Attach the calendar event and confirm the booking"""
        if not external_event_id:
            raise ValidationError("external_event_id is required")

        other = await self.get_by_external_event_id(tenant_id, external_event_id)
        if other is not None and other.id != _as_uuid(booking_id):
            raise ConflictError(
                f"Calendar event {external_event_id} is already bound to booking {other.id}"
            )

        def mutation(booking: Booking) -> bool:
            if booking.external_event_id == external_event_id:
                return False
            if booking.external_event_id is not None:
                raise ConflictError(
                    f"Booking {booking.id} is already bound to {booking.external_event_id}"
                )
            if booking.booking_status != BookingStatus.PENDING:
                raise ConflictError(f"Booking {booking.id} is {booking.status}, cannot confirm")
            booking.external_event_id = external_event_id
            booking.status = BookingStatus.CONFIRMED.value
            _touch(booking)
            return True

        booking = await self._mutate(tenant_id, booking_id, mutation)
        logger.info(f"Booking {booking.id} bound to calendar event {external_event_id}")
        return booking

    async def update(self, tenant_id: str, booking_id: BookingId, changes: dict) -> Booking:
        """Apply a local change set through the state machine"""

        def mutation(booking: Booking) -> bool:
            assignments = normalize_changes(booking, changes)
            if not assignments:
                return False
            start = assignments.pop("start_time", booking.start_time)
            end = assignments.pop("end_time", booking.end_time)
            if (start, end) != (booking.start_time, booking.end_time):
                booking.set_times(start, end)
            for key, value in assignments.items():
                setattr(booking, key, value)
            _touch(booking)
            return True

        return await self._mutate(tenant_id, booking_id, mutation)

    async def apply_external_update(
        self,
        tenant_id: str,
        external_event_id: str,
        changes: EventChanges,
        source_updated_at: Optional[datetime],
    ) -> AppliedChange:
        """Fold a provider-side change into the bound booking.

        Last write wins on ``updated_at``: the change is applied only when the
        provider's modification time is strictly newer. Terminal bookings are
        never touched.
        """
        booking = await self.get_by_external_event_id(tenant_id, external_event_id)
        if booking is None:
            return AppliedChange(ApplyOutcome.UNMATCHED)
        if source_updated_at is None:
            logger.warning(f"Event {external_event_id} has no modification time; skipping")
            return AppliedChange(ApplyOutcome.STALE, booking)

        source_at = to_naive_utc(source_updated_at)
        outcome = ApplyOutcome.UNCHANGED

        def mutation(current: Booking) -> bool:
            nonlocal outcome
            if current.is_terminal:
                outcome = ApplyOutcome.TERMINAL
                return False
            if current.updated_at is not None and source_at <= current.updated_at:
                outcome = ApplyOutcome.STALE
                return False

            changed = False
            if changes.status == "cancelled":
                current.status = BookingStatus.CANCELED.value
                current.cancellation_pending = False
                changed = True
            if changes.start is not None and changes.end is not None:
                start, end = to_naive_utc(changes.start), to_naive_utc(changes.end)
                if start >= end:
                    logger.warning(f"Event {external_event_id} has an empty time range; ignoring times")
                elif (start, end) != (current.start_time, current.end_time):
                    current.set_times(start, end)
                    changed = True

            outcome = ApplyOutcome.UPDATED if changed else ApplyOutcome.UNCHANGED
            # Record the source time either way so older deliveries lose
            _touch(current, source_at)
            return True

        booking = await self._mutate(tenant_id, booking.id, mutation)
        return AppliedChange(outcome, booking)

    async def cancel(self, tenant_id: str, booking_id: BookingId) -> Booking:
        """Local cancellation; the calendar side is the reconciler's job"""

        def mutation(booking: Booking) -> bool:
            if booking.booking_status == BookingStatus.CANCELED:
                return False
            if not booking.can_transition_to(BookingStatus.CANCELED):
                raise ConflictError(f"Booking {booking.id} is {booking.status}, cannot cancel")
            booking.status = BookingStatus.CANCELED.value
            booking.cancellation_pending = False
            _touch(booking)
            return True

        booking = await self._mutate(tenant_id, booking_id, mutation)
        logger.info(f"Booking {booking.id} canceled")
        return booking

    async def mark_cancellation_pending(self, tenant_id: str, booking_id: BookingId) -> Booking:
        def mutation(booking: Booking) -> bool:
            if booking.is_terminal or booking.cancellation_pending:
                return False
            booking.cancellation_pending = True
            _touch(booking)
            return True

        return await self._mutate(tenant_id, booking_id, mutation)

    async def mark_deleted_externally(self, tenant_id: str, external_event_id: str) -> AppliedChange:
        """The calendar event is gone; cancel without calling the provider"""
        booking = await self.get_by_external_event_id(tenant_id, external_event_id)
        if booking is None:
            return AppliedChange(ApplyOutcome.UNMATCHED)

        outcome = ApplyOutcome.UPDATED

        def mutation(current: Booking) -> bool:
            nonlocal outcome
            if current.is_terminal:
                outcome = ApplyOutcome.TERMINAL
                return False
            current.status = BookingStatus.CANCELED.value
            current.cancellation_pending = False
            _touch(current)
            return True

        booking = await self._mutate(tenant_id, booking.id, mutation)
        if outcome == ApplyOutcome.UPDATED:
            logger.info(f"Booking {booking.id} canceled after its calendar event was deleted")
        return AppliedChange(outcome, booking)

    async def mark_reminder_sent(self, tenant_id: str, booking_id: BookingId) -> Booking:
        def mutation(booking: Booking) -> bool:
            if booking.reminder_sent:
                return False
            # Bookkeeping only; updated_at stays put
            booking.reminder_sent = True
            return True

        return await self._mutate(tenant_id, booking_id, mutation)
