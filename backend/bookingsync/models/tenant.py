from sqlalchemy import Column, String, Integer, JSON, DateTime, Boolean

from bookingsync.core.clock import utcnow
from bookingsync.core.database import Base


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    phone = Column(String)

    # Twilio sender for confirmations and reminders
    twilio_number = Column(String, nullable=True)

    # Business Configuration
    working_hours = Column(JSON, default=dict)  # {"mon": "09:00-17:00", ...}
    slot_step_minutes = Column(Integer, nullable=True)

    # Google Calendar Integration
    google_calendar_id = Column(String, nullable=True)  # e.g., "primary" or "shop@company.com"
    google_refresh_token = Column(String, nullable=True)  # Encrypted
    google_token_expires_at = Column(DateTime, nullable=True)
    google_calendar_timezone = Column(String, default="Australia/Sydney")

    # Calendar Sync Settings
    auto_sync_bookings = Column(Boolean, default=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def calendar_connected(self) -> bool:
        return bool(self.google_calendar_id and self.google_refresh_token)

    def __repr__(self):
        return f"<Tenant(id={self.id}, name={self.name})>"
