from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol


@dataclass(frozen=True)
class Interval:
    start: datetime
    end: datetime

    def overlaps(self, other: "Interval") -> bool:
        # closed-open: touching intervals do not overlap
        return self.start < other.end and self.end > other.start


@dataclass
class ExternalEvent:
    """Current state of an event as reported by the calendar provider."""

    id: str
    status: str  # confirmed | tentative | cancelled
    start: Optional[datetime]
    end: Optional[datetime]
    updated: Optional[datetime]
    summary: Optional[str] = None
    description: Optional[str] = None


@dataclass
class EventChanges:
    """Partial update pushed to an existing provider event."""

    summary: Optional[str] = None
    description: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    status: Optional[str] = None

    def is_empty(self) -> bool:
        return all(
            value is None
            for value in (self.summary, self.description, self.start, self.end, self.status)
        )


@dataclass
class WatchChannel:
    channel_id: str
    resource_id: str
    expires_at: Optional[datetime]


class CalendarGateway(Protocol):
    """The only way the core reaches the external calendar."""

    name: str

    async def get_busy_intervals(
        self, calendar_id: str, range_start: datetime, range_end: datetime
    ) -> list[Interval]:
        ...

    async def create_event(
        self,
        calendar_id: str,
        summary: str,
        description: str,
        start: datetime,
        end: datetime,
        attendee_email: Optional[str] = None,
        event_id: Optional[str] = None,
    ) -> str:
        ...

    async def update_event(
        self, calendar_id: str, external_event_id: str, changes: EventChanges
    ) -> None:
        ...

    async def delete_event(self, calendar_id: str, external_event_id: str) -> None:
        ...

    async def get_event(self, calendar_id: str, external_event_id: str) -> ExternalEvent:
        ...

    async def watch_events(
        self,
        calendar_id: str,
        channel_id: str,
        address: str,
        token: Optional[str] = None,
        ttl_seconds: Optional[int] = None,
    ) -> WatchChannel:
        ...

    async def stop_channel(self, channel_id: str, resource_id: str) -> None:
        ...
