"""Push notifications delivered by the calendar provider."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional
from urllib.parse import unquote, urlsplit

from bookingsync.core.errors import ValidationError


class ResourceState(str, Enum):
    SYNC = "sync"  # channel handshake, carries no change
    EXISTS = "exists"  # created or changed
    NOT_EXISTS = "not_exists"  # deleted
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ResourceState":
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.UNKNOWN


# Last path segment of a collection URI, not an event id
_COLLECTION_SEGMENTS = {"events", ""}


def event_id_from_uri(resource_uri: Optional[str]) -> Optional[str]:
    """Event id from the last path segment of ``X-Goog-Resource-URI``."""
    if not resource_uri:
        return None
    segment = unquote(urlsplit(resource_uri).path.rstrip("/").rsplit("/", 1)[-1])
    if segment in _COLLECTION_SEGMENTS:
        return None
    return segment


@dataclass(frozen=True)
class CalendarNotification:
    channel_id: str
    resource_id: str
    resource_state: ResourceState
    resource_uri: Optional[str] = None
    channel_token: Optional[str] = None
    message_number: Optional[int] = None

    @property
    def event_id(self) -> Optional[str]:
        return event_id_from_uri(self.resource_uri)


def parse_notification(headers: Mapping[str, str]) -> CalendarNotification:
    """Build a notification from webhook headers.

    ``headers`` must be case-insensitive (Starlette's ``Headers`` is).
    Missing channel or resource id is a ``ValidationError``.
    """
    channel_id = headers.get("X-Goog-Channel-ID")
    resource_id = headers.get("X-Goog-Resource-ID")
    if not channel_id or not resource_id:
        raise ValidationError("Missing X-Goog-Channel-ID or X-Goog-Resource-ID header")

    message_number = headers.get("X-Goog-Message-Number")
    return CalendarNotification(
        channel_id=channel_id,
        resource_id=resource_id,
        resource_state=ResourceState.parse(headers.get("X-Goog-Resource-State")),
        resource_uri=headers.get("X-Goog-Resource-URI"),
        channel_token=headers.get("X-Goog-Channel-Token"),
        message_number=int(message_number) if message_number and message_number.isdigit() else None,
    )
