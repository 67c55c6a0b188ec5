"""Google Calendar Integration"""

from .client import GoogleCalendarGateway
from .models import CalendarEvent
from .oauth import AccessTokenProvider, GoogleCalendarOAuth, get_google_oauth

__all__ = [
    "AccessTokenProvider",
    "CalendarEvent",
    "GoogleCalendarGateway",
    "GoogleCalendarOAuth",
    "get_google_oauth",
]
