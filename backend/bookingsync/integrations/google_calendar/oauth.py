"""Google Calendar OAuth 2.0 Flow Handler"""

import asyncio
import logging
from typing import Optional, Tuple
from datetime import datetime, timedelta
from urllib.parse import urlencode

import aiohttp
from cryptography.fernet import Fernet, InvalidToken

from bookingsync.core.clock import utcnow
from bookingsync.core.config import Settings, get_settings
from bookingsync.core.errors import ConfigurationError, ExternalServiceError

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"


class GoogleCalendarOAuth:
    """Handle Google Calendar OAuth 2.0 flow"""

    def __init__(self, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        self.client_id = settings.google_client_id
        self.client_secret = settings.google_client_secret
        self.redirect_uri = settings.google_redirect_uri
        self.scopes = [
            "https://www.googleapis.com/auth/calendar",
            "https://www.googleapis.com/auth/calendar.events",
        ]
        # Without a configured key tokens only survive this process
        key = settings.encryption_key or Fernet.generate_key()
        self._cipher = Fernet(key)

        if not all([self.client_id, self.client_secret, self.redirect_uri]):
            logger.warning("Google Calendar OAuth credentials not configured")

    def get_authorization_url(self, tenant_id: str) -> str:
        """
        Generate the Google OAuth authorization URL

        Args:
            tenant_id: Tenant to pass as state parameter

        Returns:
            Authorization URL for user to visit
        """
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "access_type": "offline",  # Get refresh token
            "prompt": "consent",  # Force consent screen
            "state": tenant_id,
        }

        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def exchange_code_for_tokens(self, code: str) -> Tuple[str, Optional[str], int]:
        """
        Exchange authorization code for access and refresh tokens

        Returns:
            Tuple of (access_token, refresh_token, expires_in_seconds)
        """
        data = await self._post_token(
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "code": code,
                "redirect_uri": self.redirect_uri,
                "grant_type": "authorization_code",
            }
        )
        logger.info("Successfully exchanged code for tokens")
        return data["access_token"], data.get("refresh_token"), int(data.get("expires_in", 3600))

    async def refresh_access_token(self, refresh_token: str) -> Tuple[str, int]:
        """
        Use refresh token to get new access token

        Returns:
            Tuple of (new_access_token, expires_in_seconds)
        """
        data = await self._post_token(
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            }
        )
        logger.info("Successfully refreshed access token")
        return data["access_token"], int(data.get("expires_in", 3600))

    async def _post_token(self, form: dict) -> dict:
        if not self.client_id or not self.client_secret:
            raise ConfigurationError("Google OAuth client is not configured")

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(GOOGLE_TOKEN_URL, data=form) as resp:
                    if resp.status != 200:
                        error_text = await resp.text()
                        logger.error(f"Token endpoint returned {resp.status}: {error_text}")
                        raise ExternalServiceError(
                            f"Google token endpoint failed: {resp.status}",
                            service="Google OAuth",
                            status=resp.status,
                        )
                    data = await resp.json()
        except aiohttp.ClientError as e:
            logger.error(f"OAuth token request error: {e}")
            raise ExternalServiceError("Google token endpoint unreachable", service="Google OAuth") from e

        if not data.get("access_token"):
            raise ExternalServiceError("No access token in response", service="Google OAuth")
        return data

    def encrypt_token(self, token: str) -> str:
        """Encrypt refresh token for storage"""
        return self._cipher.encrypt(token.encode()).decode()

    def decrypt_token(self, encrypted_token: str) -> str:
        """Decrypt stored refresh token"""
        try:
            return self._cipher.decrypt(encrypted_token.encode()).decode()
        except InvalidToken as e:
            raise ConfigurationError("Stored Google refresh token cannot be decrypted") from e


class AccessTokenProvider:
    """Caches one tenant's access token and refreshes it shortly before expiry.

    The lock only covers the token exchange, never a calendar API call.
    """

    def __init__(self, oauth: GoogleCalendarOAuth, refresh_token: str):
        self._oauth = oauth
        self._refresh_token = refresh_token
        self._access_token: Optional[str] = None
        self._expires_at: Optional[datetime] = None
        self._lock = asyncio.Lock()

    async def __call__(self, force_refresh: bool = False) -> str:
        if not force_refresh and self._is_fresh():
            return self._access_token

        async with self._lock:
            if not force_refresh and self._is_fresh():
                return self._access_token
            token, expires_in = await self._oauth.refresh_access_token(self._refresh_token)
            self._access_token = token
            # Refresh a minute early to avoid edge-of-expiry failures
            self._expires_at = utcnow() + timedelta(seconds=max(expires_in - 60, 30))
            return token

    def _is_fresh(self) -> bool:
        return (
            self._access_token is not None
            and self._expires_at is not None
            and utcnow() < self._expires_at
        )


_oauth: Optional[GoogleCalendarOAuth] = None


def get_google_oauth() -> GoogleCalendarOAuth:
    """Shared handler, created on first use so import never needs credentials."""
    global _oauth
    if _oauth is None:
        _oauth = GoogleCalendarOAuth()
    return _oauth
