"""HTTP-level tests for the Google Calendar gateway."""

import json

import httpx
import pytest
import pytest_asyncio
import respx

from bookingsync.core.errors import (
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    RateLimitError,
)
from bookingsync.integrations.google_calendar.client import (
    GOOGLE_CALENDAR_API,
    GoogleCalendarGateway,
)
from bookingsync.integrations.providers.base import EventChanges

from conftest import utc


def google_event(event_id="abc123", status="confirmed"):
    return {
        "id": event_id,
        "status": status,
        "start": {"dateTime": "2030-01-07T10:00:00Z"},
        "end": {"dateTime": "2030-01-07T11:00:00+00:00"},
        "updated": "2030-01-01T08:30:00.000Z",
        "summary": "Brake service - Jane Smith",
    }


class FakeTokens:
    def __init__(self):
        self.refreshes = 0

    async def __call__(self, force_refresh=False):
        if force_refresh:
            self.refreshes += 1
        return f"token-{self.refreshes}"


@pytest.fixture
def tokens():
    return FakeTokens()


@pytest.fixture
def delays():
    return []


@pytest_asyncio.fixture
async def google(tokens, delays):
    async def record_sleep(seconds):
        delays.append(seconds)

    gateway = GoogleCalendarGateway(tokens, max_attempts=3, backoff_seconds=0.5, sleep=record_sleep)
    yield gateway
    await gateway.aclose()


@pytest.fixture
def api():
    with respx.mock(base_url=GOOGLE_CALENDAR_API, assert_all_called=False) as router:
        yield router


class TestReads:
    @pytest.mark.asyncio
    async def test_busy_intervals(self, google, api):
        route = api.post("/freeBusy").respond(
            200,
            json={
                "calendars": {
                    "owner@example.com": {
                        "busy": [
                            {"start": "2030-01-07T10:00:00Z", "end": "2030-01-07T11:00:00Z"},
                            {"start": "2030-01-07T12:00:00Z", "end": "2030-01-07T12:00:00Z"},
                        ]
                    }
                }
            },
        )

        busy = await google.get_busy_intervals("primary", utc(2030, 1, 7), utc(2030, 1, 8))

        assert [(b.start, b.end) for b in busy] == [(utc(2030, 1, 7, 10), utc(2030, 1, 7, 11))]
        body = json.loads(route.calls.last.request.content)
        assert body["timeMin"] == "2030-01-07T00:00:00Z"
        assert body["items"] == [{"id": "primary"}]

    @pytest.mark.asyncio
    async def test_free_busy_calendar_error(self, google, api):
        api.post("/freeBusy").respond(
            200, json={"calendars": {"primary": {"errors": [{"reason": "notFound"}]}}}
        )

        with pytest.raises(ExternalServiceError):
            await google.get_busy_intervals("primary", utc(2030, 1, 7), utc(2030, 1, 8))

    @pytest.mark.asyncio
    async def test_get_event_parses_payload(self, google, api):
        api.get("/calendars/primary/events/abc123").respond(200, json=google_event())

        event = await google.get_event("primary", "abc123")

        assert event.id == "abc123"
        assert event.start == utc(2030, 1, 7, 10)
        assert event.end == utc(2030, 1, 7, 11)
        assert event.updated == utc(2030, 1, 1, 8, 30)

    @pytest.mark.asyncio
    async def test_malformed_timestamp_is_service_error(self, google, api):
        api.get("/calendars/primary/events/abc123").respond(
            200, json={**google_event(), "updated": "yesterday"}
        )

        with pytest.raises(ExternalServiceError):
            await google.get_event("primary", "abc123")

    @pytest.mark.asyncio
    async def test_missing_event_is_not_found(self, google, api):
        api.get("/calendars/primary/events/gone").respond(404, json={"error": {"message": "Not Found"}})

        with pytest.raises(NotFoundError):
            await google.get_event("primary", "gone")


class TestRetries:
    @pytest.mark.asyncio
    async def test_transient_server_error_is_retried(self, google, api, delays):
        route = api.get("/calendars/primary/events/abc123").mock(
            side_effect=[httpx.Response(503), httpx.Response(200, json=google_event())]
        )

        event = await google.get_event("primary", "abc123")

        assert event.id == "abc123"
        assert route.call_count == 2
        assert delays == [0.5]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, google, api, delays):
        route = api.get("/calendars/primary/events/abc123").respond(502)

        with pytest.raises(ExternalServiceError) as exc_info:
            await google.get_event("primary", "abc123")

        assert exc_info.value.status == 502
        assert route.call_count == 3
        assert delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_rate_limit_is_not_retried(self, google, api):
        route = api.delete("/calendars/primary/events/abc123").respond(
            429, headers={"Retry-After": "30"}
        )

        with pytest.raises(RateLimitError) as exc_info:
            await google.delete_event("primary", "abc123")

        assert exc_info.value.retry_after == 30.0
        assert route.call_count == 1

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self, google, api):
        route = api.patch("/calendars/primary/events/abc123").respond(
            400, json={"error": {"message": "Invalid start time"}}
        )

        with pytest.raises(ExternalServiceError) as exc_info:
            await google.update_event("primary", "abc123", EventChanges(summary="x"))

        assert exc_info.value.status == 400
        assert "Invalid start time" in exc_info.value.message
        assert route.call_count == 1

    @pytest.mark.asyncio
    async def test_expired_token_refreshed_once(self, google, api, tokens):
        route = api.get("/calendars/primary/events/abc123").mock(
            side_effect=[httpx.Response(401), httpx.Response(200, json=google_event())]
        )

        await google.get_event("primary", "abc123")

        assert tokens.refreshes == 1
        assert route.calls[0].request.headers["Authorization"] == "Bearer token-0"
        assert route.calls[1].request.headers["Authorization"] == "Bearer token-1"


class TestCreateEvent:
    @pytest.mark.asyncio
    async def test_sends_event_body(self, google, api):
        route = api.post("/calendars/primary/events").respond(200, json={"id": "new-1"})

        event_id = await google.create_event(
            "primary",
            "Brake service - Jane Smith",
            "Vehicle: veh-42",
            utc(2030, 1, 7, 10),
            utc(2030, 1, 7, 11),
            attendee_email="jane@example.com",
        )

        assert event_id == "new-1"
        body = json.loads(route.calls.last.request.content)
        assert body["start"] == {"dateTime": "2030-01-07T10:00:00Z", "timeZone": "UTC"}
        assert body["attendees"] == [{"email": "jane@example.com"}]
        assert "id" not in body

    @pytest.mark.asyncio
    async def test_insert_without_id_not_repeated_after_timeout(self, google, api):
        route = api.post("/calendars/primary/events").mock(side_effect=httpx.ReadTimeout("slow"))

        with pytest.raises(ExternalServiceError):
            await google.create_event(
                "primary", "Service", "", utc(2030, 1, 7, 10), utc(2030, 1, 7, 11)
            )

        assert route.call_count == 1

    @pytest.mark.asyncio
    async def test_insert_retried_when_connection_never_opened(self, google, api):
        route = api.post("/calendars/primary/events").mock(
            side_effect=[httpx.ConnectError("refused"), httpx.Response(200, json={"id": "new-2"})]
        )

        event_id = await google.create_event(
            "primary", "Service", "", utc(2030, 1, 7, 10), utc(2030, 1, 7, 11)
        )

        assert event_id == "new-2"
        assert route.call_count == 2

    @pytest.mark.asyncio
    async def test_insert_with_id_retried_and_conflict_means_done(self, google, api):
        insert = api.post("/calendars/primary/events").mock(
            side_effect=[httpx.ReadTimeout("slow"), httpx.Response(409)]
        )
        api.get("/calendars/primary/events/abc123").respond(200, json=google_event())

        event_id = await google.create_event(
            "primary",
            "Service",
            "",
            utc(2030, 1, 7, 10),
            utc(2030, 1, 7, 11),
            event_id="abc123",
        )

        assert event_id == "abc123"
        assert insert.call_count == 2
        assert json.loads(insert.calls.last.request.content)["id"] == "abc123"

    @pytest.mark.asyncio
    async def test_conflict_with_deleted_event(self, google, api):
        api.post("/calendars/primary/events").respond(409)
        api.get("/calendars/primary/events/abc123").respond(
            200, json=google_event(status="cancelled")
        )

        with pytest.raises(ConflictError):
            await google.create_event(
                "primary",
                "Service",
                "",
                utc(2030, 1, 7, 10),
                utc(2030, 1, 7, 11),
                event_id="abc123",
            )


class TestWrites:
    @pytest.mark.asyncio
    async def test_update_sends_patch(self, google, api):
        route = api.patch("/calendars/primary/events/abc123").respond(200, json=google_event())

        await google.update_event(
            "primary", "abc123", EventChanges(start=utc(2030, 1, 7, 14), end=utc(2030, 1, 7, 15))
        )

        body = json.loads(route.calls.last.request.content)
        assert body == {
            "start": {"dateTime": "2030-01-07T14:00:00Z", "timeZone": "UTC"},
            "end": {"dateTime": "2030-01-07T15:00:00Z", "timeZone": "UTC"},
        }

    @pytest.mark.asyncio
    async def test_empty_update_is_skipped(self, google, api):
        route = api.patch("/calendars/primary/events/abc123").respond(200)

        await google.update_event("primary", "abc123", EventChanges())

        assert route.call_count == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [204, 404, 410])
    async def test_delete_treats_gone_as_success(self, google, api, status):
        route = api.delete("/calendars/primary/events/abc123").respond(status)

        await google.delete_event("primary", "abc123")

        assert route.call_count == 1

    @pytest.mark.asyncio
    async def test_watch_channel(self, google, api):
        route = api.post("/calendars/primary/events/watch").respond(
            200,
            json={"id": "chan-1", "resourceId": "res-9", "expiration": "1893456000000"},
        )

        channel = await google.watch_events(
            "primary", "chan-1", "https://example.com/hook", token="secret-token", ttl_seconds=3600
        )

        assert channel.resource_id == "res-9"
        assert channel.expires_at == utc(2030, 1, 1)
        body = json.loads(route.calls.last.request.content)
        assert body["token"] == "secret-token"
        assert body["params"] == {"ttl": "3600"}

    @pytest.mark.asyncio
    async def test_stop_unknown_channel(self, google, api):
        api.post("/channels/stop").respond(404)

        await google.stop_channel("chan-1", "res-9")
