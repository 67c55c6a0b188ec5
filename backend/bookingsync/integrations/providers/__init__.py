from bookingsync.integrations.providers.base import (
    CalendarGateway,
    EventChanges,
    ExternalEvent,
    Interval,
    WatchChannel,
)

__all__ = [
    "CalendarGateway",
    "EventChanges",
    "ExternalEvent",
    "Interval",
    "WatchChannel",
]
