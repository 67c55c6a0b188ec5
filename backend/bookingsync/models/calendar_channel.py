from sqlalchemy import Column, DateTime, String, Index

from bookingsync.core.clock import utcnow
from bookingsync.core.database import Base


class CalendarChannel(Base):
    """A push-notification channel opened against a tenant's calendar."""

    __tablename__ = "calendar_channels"
    __table_args__ = (Index("idx_calendar_channels_tenant", "tenant_id"),)

    id = Column(String, primary_key=True)  # channel id we chose when watching
    tenant_id = Column(String, nullable=False)
    calendar_id = Column(String, nullable=False)
    resource_id = Column(String, nullable=True)  # assigned by the provider
    token = Column(String, nullable=True)  # echoed back as X-Goog-Channel-Token
    expires_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<CalendarChannel(id={self.id}, tenant={self.tenant_id})>"
