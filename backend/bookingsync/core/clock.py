"""Timestamp helpers.

Rows store naive UTC datetimes (the database columns carry no zone), while the
scheduling code works with aware datetimes. These helpers convert between the
two at the store boundary.
"""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as naive UTC, matching what the columns hold."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_aware_utc(value: datetime) -> datetime:
    """Interpret naive values as UTC; convert aware values to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_naive_utc(value: datetime) -> datetime:
    return as_aware_utc(value).replace(tzinfo=None)


def parse_rfc3339(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp as returned by the Google API."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    return as_aware_utc(datetime.fromisoformat(text))


def format_rfc3339(value: datetime) -> str:
    return as_aware_utc(value).isoformat().replace("+00:00", "Z")
