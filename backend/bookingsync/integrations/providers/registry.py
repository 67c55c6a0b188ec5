from __future__ import annotations

import logging
from typing import Any, Optional

from bookingsync.core.config import Settings, get_settings
from bookingsync.core.errors import ConfigurationError
from bookingsync.integrations.google_calendar.client import GoogleCalendarGateway
from bookingsync.integrations.google_calendar.oauth import (
    AccessTokenProvider,
    GoogleCalendarOAuth,
    get_google_oauth,
)
from bookingsync.integrations.providers.base import CalendarGateway
from bookingsync.models.tenant import Tenant

logger = logging.getLogger(__name__)

# One gateway per connected tenant so the access token cache survives requests.
# Keyed on the stored token too, so reconnecting drops the old gateway.
_GATEWAYS: dict[tuple[str, str], GoogleCalendarGateway] = {}


def resolve_gateway(
    tenant: Tenant,
    oauth: Optional[GoogleCalendarOAuth] = None,
    settings: Optional[Settings] = None,
) -> CalendarGateway:
    if not tenant.calendar_connected:
        raise ConfigurationError(
            f"Tenant {tenant.id} has no connected calendar",
            details={"tenant_id": tenant.id},
        )

    key = (tenant.id, tenant.google_refresh_token)
    gateway = _GATEWAYS.get(key)
    if gateway is not None:
        return gateway

    settings = settings or get_settings()
    oauth = oauth or get_google_oauth()
    refresh_token = oauth.decrypt_token(tenant.google_refresh_token)
    gateway = GoogleCalendarGateway(
        AccessTokenProvider(oauth, refresh_token),
        timeout=settings.calendar_timeout_seconds,
        max_attempts=settings.calendar_max_attempts,
        backoff_seconds=settings.calendar_backoff_seconds,
    )
    for stale_key in [k for k in _GATEWAYS if k[0] == tenant.id]:
        _GATEWAYS.pop(stale_key)
    _GATEWAYS[key] = gateway
    logger.info(f"Calendar gateway ready for tenant {tenant.id}")
    return gateway


def get_calendar_config(tenant: Tenant, settings: Optional[Settings] = None) -> dict[str, Any]:
    settings = settings or get_settings()
    return {
        "calendar_id": tenant.google_calendar_id,
        "timezone": tenant.google_calendar_timezone or settings.default_timezone,
        "working_hours": tenant.working_hours or {},
        "step_minutes": tenant.slot_step_minutes or settings.slot_step_minutes,
        "auto_sync": bool(tenant.auto_sync_bookings),
    }
