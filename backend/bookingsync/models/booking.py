from enum import Enum
import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)

from bookingsync.core.clock import utcnow
from bookingsync.core.database import Base


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELED = "canceled"
    COMPLETED = "completed"
    NO_SHOW = "no-show"


TERMINAL_STATUSES = frozenset(
    {BookingStatus.CANCELED, BookingStatus.COMPLETED, BookingStatus.NO_SHOW}
)

# pending -> confirmed -> {completed | no-show}; {pending, confirmed} -> canceled
ALLOWED_TRANSITIONS = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELED}),
    BookingStatus.CONFIRMED: frozenset(
        {BookingStatus.COMPLETED, BookingStatus.NO_SHOW, BookingStatus.CANCELED}
    ),
    BookingStatus.CANCELED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.NO_SHOW: frozenset(),
}


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        UniqueConstraint("tenant_id", "external_event_id", name="uq_bookings_tenant_external_event"),
        Index("idx_bookings_tenant_start", "tenant_id", "start_time"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String, nullable=False, index=True)

    # Opaque references owned by other services
    vehicle_id = Column(String, nullable=False)
    customer_id = Column(String, nullable=False)

    # Customer contact
    customer_name = Column(String, nullable=True)
    customer_email = Column(String, nullable=True)
    customer_phone = Column(String, nullable=True)

    # Booking details
    service_type = Column(String, nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    notes = Column(Text, nullable=True)

    # Status
    status = Column(String, nullable=False, default=BookingStatus.PENDING.value)
    external_event_id = Column(String, nullable=True)
    cancellation_pending = Column(Boolean, nullable=False, default=False)
    reminder_sent = Column(Boolean, nullable=False, default=False)

    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    __mapper_args__ = {"version_id_col": version}

    @property
    def booking_status(self) -> BookingStatus:
        return BookingStatus(self.status)

    @property
    def is_bound(self) -> bool:
        return self.external_event_id is not None

    @property
    def is_terminal(self) -> bool:
        return self.booking_status in TERMINAL_STATUSES

    def can_transition_to(self, target: BookingStatus) -> bool:
        return target in ALLOWED_TRANSITIONS[self.booking_status]

    def set_times(self, start_time, end_time) -> None:
        """Assign both boundaries and keep duration_minutes in step."""
        self.start_time = start_time
        self.end_time = end_time
        self.duration_minutes = int((end_time - start_time).total_seconds() // 60)

    def __repr__(self):
        return f"<Booking(id={self.id}, tenant={self.tenant_id}, status={self.status})>"
