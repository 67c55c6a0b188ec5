"""Calendar event data models"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from bookingsync.core.clock import format_rfc3339, parse_rfc3339
from bookingsync.core.errors import ExternalServiceError
from bookingsync.integrations.providers.base import EventChanges, ExternalEvent, Interval


@dataclass
class CalendarEvent:
    """Represents a booking event for Google Calendar"""

    summary: str                    # "Brake service - Jane Smith"
    description: str                # Booking details, vehicle, etc
    start_time: datetime
    end_time: datetime
    attendee_email: Optional[str] = None  # To send invitations
    event_id: Optional[str] = None        # Client-chosen id, makes inserts idempotent

    def to_google_event(self) -> dict:
        """Convert to Google Calendar API event format"""
        event: dict[str, Any] = {
            "summary": self.summary,
            "description": self.description,
            "start": {
                "dateTime": format_rfc3339(self.start_time),
                "timeZone": "UTC",
            },
            "end": {
                "dateTime": format_rfc3339(self.end_time),
                "timeZone": "UTC",
            },
        }
        if self.attendee_email:
            event["attendees"] = [{"email": self.attendee_email}]
        if self.event_id:
            event["id"] = self.event_id
        return event


def changes_to_google_patch(changes: EventChanges) -> dict:
    body: dict[str, Any] = {}
    if changes.summary is not None:
        body["summary"] = changes.summary
    if changes.description is not None:
        body["description"] = changes.description
    if changes.start is not None:
        body["start"] = {"dateTime": format_rfc3339(changes.start), "timeZone": "UTC"}
    if changes.end is not None:
        body["end"] = {"dateTime": format_rfc3339(changes.end), "timeZone": "UTC"}
    if changes.status is not None:
        body["status"] = changes.status
    return body


def _timestamp(value: Any) -> Optional[datetime]:
    try:
        return parse_rfc3339(value)
    except (TypeError, ValueError, AttributeError) as exc:
        raise ExternalServiceError(f"Google Calendar returned a malformed timestamp: {value!r}") from exc


def _boundary(payload: Any) -> Optional[datetime]:
    if not isinstance(payload, dict):
        return None
    # All-day events carry "date" only; bookings are always timed
    return _timestamp(payload.get("dateTime"))


def parse_google_event(payload: dict) -> ExternalEvent:
    return ExternalEvent(
        id=str(payload.get("id") or ""),
        status=str(payload.get("status") or "confirmed"),
        start=_boundary(payload.get("start")),
        end=_boundary(payload.get("end")),
        updated=_timestamp(payload.get("updated")),
        summary=payload.get("summary"),
        description=payload.get("description"),
    )


def parse_busy_windows(windows: list) -> list[Interval]:
    intervals: list[Interval] = []
    for window in windows:
        if not isinstance(window, dict):
            continue
        start = _timestamp(window.get("start"))
        end = _timestamp(window.get("end"))
        if start is None or end is None or end <= start:
            continue
        intervals.append(Interval(start=start, end=end))
    return intervals
