from bookingsync.models.tenant import Tenant
from bookingsync.models.booking import Booking, BookingStatus
from bookingsync.models.calendar_channel import CalendarChannel

__all__ = ["Tenant", "Booking", "BookingStatus", "CalendarChannel"]
