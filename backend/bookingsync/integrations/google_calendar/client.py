"""
Google Calendar gateway.

The only component that talks to the Google Calendar v3 REST API. It keeps no
booking state; it classifies provider failures into the core error taxonomy and
owns the retry policy:

- transient failures (5xx, timeouts, dropped connections) of idempotent calls
  are retried with exponential backoff up to ``max_attempts``;
- event inserts are retried only when the request provably never reached
  Google, unless the caller supplied the event id, which makes the insert
  idempotent (a 409 on retry means the first attempt already landed);
- 429 is surfaced as ``RateLimitError`` with the provider's retry hint.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import quote

import httpx

from bookingsync.core.errors import (
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)
from bookingsync.core.clock import format_rfc3339
from bookingsync.integrations.google_calendar.models import (
    CalendarEvent,
    changes_to_google_patch,
    parse_busy_windows,
    parse_google_event,
)
from bookingsync.integrations.providers.base import (
    EventChanges,
    ExternalEvent,
    Interval,
    WatchChannel,
)

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"
SERVICE_NAME = "Google Calendar"

TokenProvider = Callable[..., Awaitable[str]]


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200]
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return response.text[:200]


def _retry_after(response: httpx.Response) -> Optional[float]:
    header = response.headers.get("Retry-After")
    if header is None:
        return None
    try:
        return float(header)
    except ValueError:
        return None


class GoogleCalendarGateway:
    """CalendarGateway backed by the Google Calendar REST API."""

    name = "google"

    def __init__(
        self,
        token_provider: TokenProvider,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._token_provider = token_provider
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._max_attempts = max(1, max_attempts)
        self._backoff_seconds = backoff_seconds
        self._sleep = sleep

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "GoogleCalendarGateway":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ── Transport ─────────────────────────────────────────────────────────

    async def _send_once(
        self,
        method: str,
        url: str,
        params: Optional[dict[str, Any]],
        json_body: Optional[dict[str, Any]],
    ) -> httpx.Response:
        token = await self._token_provider()
        response = await self._client.request(
            method,
            url,
            params=params,
            json=json_body,
            headers={"Authorization": f"Bearer {token}"},
        )
        if response.status_code == 401:
            token = await self._token_provider(force_refresh=True)
            response = await self._client.request(
                method,
                url,
                params=params,
                json=json_body,
                headers={"Authorization": f"Bearer {token}"},
            )
        return response

    async def _send(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json_body: Optional[dict[str, Any]] = None,
        idempotent: bool = True,
    ) -> httpx.Response:
        """Send a request, retrying transient failures the call can absorb.

        Returns any response below 500; callers classify 4xx themselves.
        """
        url = f"{GOOGLE_CALENDAR_API}{path}"
        attempt = 0
        while True:
            attempt += 1
            status: Optional[int] = None
            try:
                response = await self._send_once(method, url, params, json_body)
            except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
                # Never reached Google, so even an insert is safe to repeat
                retryable = True
                reason = f"connection failed: {exc!r}"
            except httpx.TimeoutException as exc:
                retryable = idempotent
                reason = f"timed out: {exc!r}"
            except httpx.TransportError as exc:
                retryable = idempotent
                reason = f"transport error: {exc!r}"
            else:
                if response.status_code < 500:
                    return response
                status = response.status_code
                retryable = idempotent
                reason = f"status {status}: {_error_message(response)}"

            if not retryable or attempt >= self._max_attempts:
                logger.error(
                    f"{SERVICE_NAME} {method} {path} failed after {attempt} attempt(s): {reason}"
                )
                raise ExternalServiceError(
                    f"{SERVICE_NAME} request failed ({reason})",
                    service=SERVICE_NAME,
                    details={"attempts": attempt},
                    status=status,
                )

            delay = self._backoff_seconds * (2 ** (attempt - 1))
            logger.warning(
                f"{SERVICE_NAME} {method} {path} {reason}; retrying in {delay:.2f}s "
                f"(attempt {attempt}/{self._max_attempts})"
            )
            await self._sleep(delay)

    @staticmethod
    def _raise_for_status(response: httpx.Response, what: str) -> None:
        code = response.status_code
        if 200 <= code < 300:
            return
        if code == 404:
            raise NotFoundError(f"{what} not found", details={"status": code})
        if code == 429:
            raise RateLimitError(
                f"{SERVICE_NAME} rate limit hit while handling {what}",
                retry_after=_retry_after(response),
            )
        raise ExternalServiceError(
            f"{SERVICE_NAME} rejected {what}: {_error_message(response)}",
            service=SERVICE_NAME,
            status=code,
        )

    @staticmethod
    def _json(response: httpx.Response) -> dict:
        try:
            payload = response.json()
        except ValueError as exc:
            raise ExternalServiceError(f"{SERVICE_NAME} returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise ExternalServiceError(f"{SERVICE_NAME} returned an unexpected payload")
        return payload

    @staticmethod
    def _event_path(calendar_id: str, event_id: Optional[str] = None) -> str:
        path = f"/calendars/{quote(calendar_id, safe='')}/events"
        if event_id is not None:
            path += f"/{quote(event_id, safe='')}"
        return path

    # ── Operations ────────────────────────────────────────────────────────

    async def get_busy_intervals(
        self, calendar_id: str, range_start: datetime, range_end: datetime
    ) -> list[Interval]:
        if range_start >= range_end:
            raise ValidationError("range_start must be before range_end")

        response = await self._send(
            "POST",
            "/freeBusy",
            json_body={
                "timeMin": format_rfc3339(range_start),
                "timeMax": format_rfc3339(range_end),
                "items": [{"id": calendar_id}],
            },
        )
        self._raise_for_status(response, "free/busy query")
        calendars = self._json(response).get("calendars") or {}

        entry = calendars.get(calendar_id)
        if entry is None and len(calendars) == 1:
            # "primary" comes back keyed by the owner's address
            entry = next(iter(calendars.values()))
        if not isinstance(entry, dict):
            raise ExternalServiceError(f"Free/busy response has no entry for {calendar_id}")
        if entry.get("errors"):
            raise ExternalServiceError(
                f"Free/busy query failed for {calendar_id}",
                details={"errors": entry["errors"]},
            )
        return parse_busy_windows(entry.get("busy") or [])

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
        if not summary or start is None or end is None:
            raise ValidationError("Summary, start time, and end time are required")
        if start >= end:
            raise ValidationError("Event start must be before its end")

        event = CalendarEvent(
            summary=summary,
            description=description or "",
            start_time=start,
            end_time=end,
            attendee_email=attendee_email,
            event_id=event_id,
        )
        response = await self._send(
            "POST",
            self._event_path(calendar_id),
            json_body=event.to_google_event(),
            idempotent=event_id is not None,
        )

        if response.status_code == 409 and event_id is not None:
            existing = await self.get_event(calendar_id, event_id)
            if existing.status == "cancelled":
                raise ConflictError(
                    f"Event id {event_id} belongs to an event that was already deleted"
                )
            logger.info(f"Event {event_id} already existed; treating insert as done")
            return event_id

        self._raise_for_status(response, "event insert")
        created_id = self._json(response).get("id")
        if not created_id:
            raise ExternalServiceError("Failed to create calendar event - no event ID returned")
        logger.info(f"Google Calendar event created: {created_id}")
        return str(created_id)

    async def update_event(
        self, calendar_id: str, external_event_id: str, changes: EventChanges
    ) -> None:
        if not external_event_id:
            raise ValidationError("Event ID is required")
        if changes.is_empty():
            return

        response = await self._send(
            "PATCH",
            self._event_path(calendar_id, external_event_id),
            json_body=changes_to_google_patch(changes),
        )
        self._raise_for_status(response, f"calendar event {external_event_id}")

    async def delete_event(self, calendar_id: str, external_event_id: str) -> None:
        if not external_event_id:
            raise ValidationError("Event ID is required")

        response = await self._send("DELETE", self._event_path(calendar_id, external_event_id))
        # 404 / 410: already gone, which is what we wanted
        if response.status_code in (404, 410):
            logger.debug(f"Event {external_event_id} already deleted; treating as success")
            return
        self._raise_for_status(response, f"calendar event {external_event_id}")

    async def get_event(self, calendar_id: str, external_event_id: str) -> ExternalEvent:
        if not external_event_id:
            raise ValidationError("Event ID is required")

        response = await self._send("GET", self._event_path(calendar_id, external_event_id))
        self._raise_for_status(response, f"calendar event {external_event_id}")
        return parse_google_event(self._json(response))

    async def watch_events(
        self,
        calendar_id: str,
        channel_id: str,
        address: str,
        token: Optional[str] = None,
        ttl_seconds: Optional[int] = None,
    ) -> WatchChannel:
        body: dict[str, Any] = {"id": channel_id, "type": "web_hook", "address": address}
        if token:
            body["token"] = token
        if ttl_seconds:
            body["params"] = {"ttl": str(ttl_seconds)}

        response = await self._send(
            "POST",
            f"{self._event_path(calendar_id)}/watch",
            json_body=body,
            idempotent=False,
        )
        self._raise_for_status(response, "watch channel")
        payload = self._json(response)

        expires_at = None
        expiration = payload.get("expiration")
        if expiration:
            # milliseconds since the epoch
            expires_at = datetime.fromtimestamp(int(expiration) / 1000, tz=timezone.utc)
        return WatchChannel(
            channel_id=str(payload.get("id") or channel_id),
            resource_id=str(payload.get("resourceId") or ""),
            expires_at=expires_at,
        )

    async def stop_channel(self, channel_id: str, resource_id: str) -> None:
        response = await self._send(
            "POST",
            "/channels/stop",
            json_body={"id": channel_id, "resourceId": resource_id},
        )
        if response.status_code == 404:
            return
        self._raise_for_status(response, f"channel {channel_id}")
