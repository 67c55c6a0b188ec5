"""Google Calendar OAuth and push channel endpoints"""

import logging
import secrets
import uuid
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from bookingsync.api.v1.deps import get_gateway_factory, get_tenant_id
from bookingsync.core.clock import to_naive_utc, utcnow
from bookingsync.core.config import get_settings
from bookingsync.core.database import get_db
from bookingsync.core.errors import BookingSyncError, ConfigurationError
from bookingsync.integrations.google_calendar.oauth import get_google_oauth
from bookingsync.services.sync_reconciler import GatewayFactory
from bookingsync.services.tenant_service import TenantService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth/google-calendar", tags=["google-calendar"])


class GoogleCalendarStartResponse(BaseModel):
    authorization_url: str


class GoogleCalendarAuthSuccess(BaseModel):
    success: bool
    message: str


class WatchChannelResponse(BaseModel):
    channel_id: str
    resource_id: str
    expires_at: Optional[datetime] = None


@router.post("/start", response_model=GoogleCalendarStartResponse)
async def start_oauth_flow(
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
) -> GoogleCalendarStartResponse:
    """
    Initiate Google Calendar OAuth flow

    Returns authorization URL for user to visit
    """
    await TenantService(db).require_tenant(tenant_id)
    auth_url = get_google_oauth().get_authorization_url(tenant_id=tenant_id)
    logger.info(f"Generated OAuth URL for tenant {tenant_id}")
    return GoogleCalendarStartResponse(authorization_url=auth_url)


@router.get("/callback", response_model=GoogleCalendarAuthSuccess)
async def oauth_callback(
    code: str = Query(...),
    state: str = Query(...),  # tenant_id passed as state
    db: AsyncSession = Depends(get_db),
) -> GoogleCalendarAuthSuccess:
    """
    Google OAuth callback endpoint

    Exchanges authorization code for tokens and saves them on the tenant
    """
    tenants = TenantService(db)
    tenant_id = state
    if await tenants.get_tenant(tenant_id) is None:
        logger.error(f"Tenant {tenant_id} not found during OAuth callback")
        raise HTTPException(status_code=404, detail="Tenant not found")

    oauth = get_google_oauth()
    _, refresh_token, expires_in = await oauth.exchange_code_for_tokens(code)
    if not refresh_token:
        logger.error(f"No refresh token received for tenant {tenant_id}")
        raise HTTPException(status_code=502, detail="Failed to get refresh token")

    await tenants.update_tenant(
        tenant_id,
        {
            "google_calendar_id": "primary",  # Use default calendar
            "google_refresh_token": oauth.encrypt_token(refresh_token),
            "google_token_expires_at": utcnow() + timedelta(seconds=expires_in),
        },
    )
    logger.info(f"Successfully saved Google Calendar credentials for tenant {tenant_id}")
    return GoogleCalendarAuthSuccess(success=True, message="Google Calendar connected successfully")


@router.post("/watch", response_model=WatchChannelResponse)
async def watch_calendar(
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    gateway_factory: GatewayFactory = Depends(get_gateway_factory),
) -> WatchChannelResponse:
    """
    Open a push notification channel on the tenant's calendar
    """
    settings = get_settings()
    if not settings.calendar_webhook_url:
        raise ConfigurationError("GOOGLE_CALENDAR_WEBHOOK_URL is not configured")

    tenants = TenantService(db)
    tenant = await tenants.require_tenant(tenant_id)
    gateway = gateway_factory(tenant)

    channel_id = str(uuid.uuid4())
    token = secrets.token_urlsafe(24)
    channel = await gateway.watch_events(
        tenant.google_calendar_id,
        channel_id,
        settings.calendar_webhook_url,
        token=token,
        ttl_seconds=settings.calendar_channel_ttl_seconds,
    )
    await tenants.save_channel(
        {
            "id": channel.channel_id,
            "tenant_id": tenant_id,
            "calendar_id": tenant.google_calendar_id,
            "resource_id": channel.resource_id,
            "token": token,
            "expires_at": to_naive_utc(channel.expires_at) if channel.expires_at else None,
        }
    )
    logger.info(f"Opened calendar channel {channel.channel_id} for tenant {tenant_id}")
    return WatchChannelResponse(
        channel_id=channel.channel_id,
        resource_id=channel.resource_id,
        expires_at=channel.expires_at,
    )


@router.post("/disconnect", response_model=GoogleCalendarAuthSuccess)
async def disconnect_google_calendar(
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    gateway_factory: GatewayFactory = Depends(get_gateway_factory),
) -> GoogleCalendarAuthSuccess:
    """
    Disconnect Google Calendar from tenant

    Stops open channels and clears all stored credentials
    """
    tenants = TenantService(db)
    tenant = await tenants.require_tenant(tenant_id)

    channels = await tenants.list_channels(tenant_id)
    if channels and tenant.calendar_connected:
        gateway = gateway_factory(tenant)
        for channel in channels:
            try:
                await gateway.stop_channel(channel.id, channel.resource_id or "")
            except BookingSyncError as e:
                # The channel expires on its own; notifications for it are dropped
                logger.warning(f"Could not stop channel {channel.id}: {e.message}")
    await tenants.delete_channels(tenant_id)

    await tenants.update_tenant(
        tenant_id,
        {
            "google_calendar_id": None,
            "google_refresh_token": None,
            "google_token_expires_at": None,
        },
    )
    logger.info(f"Disconnected Google Calendar for tenant {tenant_id}")
    return GoogleCalendarAuthSuccess(success=True, message="Google Calendar disconnected successfully")
