"""Candidate appointment slots from business hours.

Everything here is pure: no I/O, no clock. The generator is lazy and can be
iterated any number of times with the same result.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Iterator, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from bookingsync.core.clock import as_aware_utc
from bookingsync.core.errors import InvalidDuration, InvalidRange, ValidationError

DAY_KEYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")
DEFAULT_STEP_MINUTES = 30

_HOURS_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*-\s*(\d{1,2}):(\d{2})\s*$")


@dataclass(frozen=True)
class Slot:
    start: datetime
    end: datetime

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start < end and self.end > start


def _parse_time(hour: str, minute: str) -> time:
    h, m = int(hour), int(minute)
    if h == 24 and m == 0:
        return time.max
    if not (0 <= h < 24 and 0 <= m < 60):
        raise ValidationError(f"Invalid time of day: {hour}:{minute}")
    return time(h, m)


def _parse_clock(value: Any) -> time:
    match = re.match(r"^\s*(\d{1,2}):(\d{2})\s*$", str(value))
    if not match:
        raise ValidationError(f"Invalid time of day: {value!r}")
    return _parse_time(*match.groups())


def _parse_day(value: Any) -> list[tuple[time, time]]:
    """Normalise one weekday entry of ``working_hours`` into open/close pairs."""
    if value is None or value == "" or value is False:
        return []
    if isinstance(value, str):
        if value.strip().lower() in ("closed", "off"):
            return []
        match = _HOURS_RE.match(value)
        if not match:
            raise ValidationError(f"Invalid business hours: {value!r}")
        h1, m1, h2, m2 = match.groups()
        pairs = [(_parse_time(h1, m1), _parse_time(h2, m2))]
    elif isinstance(value, dict):
        if value.get("closed"):
            return []
        pairs = [(_parse_clock(value.get("start")), _parse_clock(value.get("end")))]
    elif isinstance(value, (list, tuple)):
        if len(value) == 2 and all(isinstance(v, str) and "-" not in v for v in value):
            # ["09:00", "17:00"]
            pairs = [(_parse_clock(value[0]), _parse_clock(value[1]))]
        else:
            pairs = []
            for item in value:
                pairs.extend(_parse_day(item))
    else:
        raise ValidationError(f"Invalid business hours: {value!r}")

    for opens, closes in pairs:
        if closes <= opens:
            raise ValidationError(f"Business hours close before they open: {value!r}")
    return pairs


def _merge(pairs: list[tuple[time, time]]) -> tuple[tuple[time, time], ...]:
    merged: list[tuple[time, time]] = []
    for opens, closes in sorted(pairs):
        if merged and opens <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], closes))
        else:
            merged.append((opens, closes))
    return tuple(merged)


def _day_index(key: Any) -> int:
    text = str(key).strip().lower()
    if text.isdigit() and 0 <= int(text) <= 6:
        return int(text)
    if text[:3] in DAY_KEYS:
        return DAY_KEYS.index(text[:3])
    raise ValidationError(f"Unknown weekday in business hours: {key!r}")


@dataclass(frozen=True)
class BusinessHours:
    """Opening intervals per weekday (0 = Monday) in one timezone."""

    weekly: dict[int, tuple[tuple[time, time], ...]] = field(default_factory=dict)
    timezone: str = "UTC"

    @classmethod
    def default(cls, tz: str = "UTC") -> "BusinessHours":
        nine_to_five = ((time(9, 0), time(17, 0)),)
        return cls(weekly={day: nine_to_five for day in range(5)}, timezone=tz)

    @classmethod
    def from_working_hours(cls, working_hours: Optional[dict], tz: str = "UTC") -> "BusinessHours":
        """Build from a tenant's ``working_hours`` JSON.

        Accepts ``"09:00-17:00"``, lists of those or of ``[open, close]``
        pairs, ``{"start": ..., "end": ...}`` and null for closed days.
        Missing or empty configuration means Monday to Friday, 09:00-17:00.
        """
        if not working_hours:
            return cls.default(tz)
        weekly: dict[int, tuple[tuple[time, time], ...]] = {}
        for key, value in working_hours.items():
            pairs = _parse_day(value)
            if pairs:
                weekly[_day_index(key)] = _merge(pairs)
        return cls(weekly=weekly, timezone=tz)

    @property
    def zone(self) -> ZoneInfo:
        try:
            return ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValidationError(f"Unknown timezone: {self.timezone}") from exc

    def intervals_on(self, day: date) -> list[tuple[datetime, datetime]]:
        """Opening intervals for one local calendar day, as aware UTC datetimes."""
        zone = self.zone
        intervals = []
        for opens, closes in self.weekly.get(day.weekday(), ()):
            start = datetime.combine(day, opens, tzinfo=zone)
            if closes == time.max:
                end = datetime.combine(day + timedelta(days=1), time(0, 0), tzinfo=zone)
            else:
                end = datetime.combine(day, closes, tzinfo=zone)
            intervals.append((start.astimezone(timezone.utc), end.astimezone(timezone.utc)))
        return intervals


class SlotGenerator:
    """Lazy, restartable sequence of candidate slots.

    Candidates start at each interval's opening time and advance by
    ``step_minutes``; only those fully inside ``[range_start, range_end]`` and
    inside one opening interval are produced, in chronological order.
    """

    def __init__(
        self,
        range_start: datetime,
        range_end: datetime,
        duration_minutes: int,
        business_hours: BusinessHours,
        step_minutes: int = DEFAULT_STEP_MINUTES,
    ):
        if range_start is None or range_end is None:
            raise InvalidRange("range_start and range_end are required")
        range_start = as_aware_utc(range_start)
        range_end = as_aware_utc(range_end)
        if range_start >= range_end:
            raise InvalidRange(
                "range_start must be before range_end",
                details={"start": range_start.isoformat(), "end": range_end.isoformat()},
            )
        if duration_minutes is None or duration_minutes <= 0:
            raise InvalidDuration("duration_minutes must be a positive number of minutes")
        if step_minutes is None or step_minutes <= 0:
            raise InvalidDuration("step_minutes must be a positive number of minutes")

        self.range_start = range_start
        self.range_end = range_end
        self.duration = timedelta(minutes=duration_minutes)
        self.step = timedelta(minutes=step_minutes)
        self.business_hours = business_hours
        # Resolved up front so a bad timezone fails before iteration
        self.zone = business_hours.zone

    def __iter__(self) -> Iterator[Slot]:
        zone = self.zone
        day = self.range_start.astimezone(zone).date()
        last_day = self.range_end.astimezone(zone).date()

        while day <= last_day:
            for opens, closes in self.business_hours.intervals_on(day):
                candidate = opens
                while candidate + self.duration <= closes:
                    end = candidate + self.duration
                    if end > self.range_end:
                        break
                    if candidate >= self.range_start:
                        yield Slot(start=candidate, end=end)
                    candidate += self.step
            day += timedelta(days=1)


def generate_slots(
    range_start: datetime,
    range_end: datetime,
    duration_minutes: int,
    business_hours: BusinessHours,
    step_minutes: int = DEFAULT_STEP_MINUTES,
) -> SlotGenerator:
    return SlotGenerator(range_start, range_end, duration_minutes, business_hours, step_minutes)
