"""Shared pytest fixtures for testing."""

import os
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Optional

# Set test environment before the app modules read it
os.environ["APP_ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

import pytest
import pytest_asyncio
from cryptography.fernet import Fernet
from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from bookingsync.core.database import Base, get_db
from bookingsync.core.errors import NotFoundError
from bookingsync.integrations.providers.base import (
    EventChanges,
    ExternalEvent,
    Interval,
    WatchChannel,
)
from bookingsync.models import CalendarChannel, Tenant
from bookingsync.services.booking_notifier import BookingNotifier

TENANT_ID = "tenant-1"
OTHER_TENANT_ID = "tenant-2"
CALENDAR_ID = "primary"


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


# =============================================================================
# Fakes
# =============================================================================


class FakeCalendarGateway:
    """In-memory calendar with failure injection and a call log."""

    name = "fake"

    def __init__(self):
        self.events: dict[str, ExternalEvent] = {}
        self.busy: list[Interval] = []
        self.calls: list[tuple] = []
        self.failures: dict[str, list[Exception]] = {}

    def fail(self, operation: str, *errors: Exception) -> None:
        """Queue errors raised by the next calls to ``operation``."""
        self.failures.setdefault(operation, []).extend(errors)

    def calls_to(self, operation: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == operation]

    def _record(self, operation: str, *args) -> None:
        self.calls.append((operation, *args))
        queued = self.failures.get(operation)
        if queued:
            raise queued.pop(0)

    def _tick(self) -> datetime:
        return datetime.now(timezone.utc)

    def edit_event(
        self,
        event_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        status: Optional[str] = None,
        updated: Optional[datetime] = None,
    ) -> ExternalEvent:
        """Simulate a change made directly in the calendar."""
        event = self.events[event_id]
        if start is not None:
            event.start = start
        if end is not None:
            event.end = end
        if status is not None:
            event.status = status
        # Calendar edits land strictly after anything already stored
        event.updated = updated or self._tick() + timedelta(seconds=1)
        return event

    async def get_busy_intervals(self, calendar_id, range_start, range_end):
        self._record("get_busy_intervals", calendar_id, range_start, range_end)
        return list(self.busy)

    async def create_event(
        self,
        calendar_id,
        summary,
        description,
        start,
        end,
        attendee_email=None,
        event_id=None,
    ):
        self._record("create_event", calendar_id, event_id)
        event_id = event_id or f"evt{len(self.events) + 1}"
        if event_id not in self.events:
            self.events[event_id] = ExternalEvent(
                id=event_id,
                status="confirmed",
                start=start,
                end=end,
                updated=self._tick(),
                summary=summary,
                description=description,
            )
        return event_id

    async def update_event(self, calendar_id, external_event_id, changes: EventChanges):
        self._record("update_event", calendar_id, external_event_id)
        event = self.events.get(external_event_id)
        if event is None or event.status == "cancelled":
            raise NotFoundError(f"calendar event {external_event_id} not found")
        for field_name in ("summary", "description", "start", "end"):
            value = getattr(changes, field_name)
            if value is not None:
                setattr(event, field_name, value)
        event.updated = self._tick()

    async def delete_event(self, calendar_id, external_event_id):
        self._record("delete_event", calendar_id, external_event_id)
        event = self.events.get(external_event_id)
        if event is not None:
            event.status = "cancelled"
            event.updated = self._tick()

    async def get_event(self, calendar_id, external_event_id):
        self._record("get_event", calendar_id, external_event_id)
        event = self.events.get(external_event_id)
        if event is None:
            raise NotFoundError(f"calendar event {external_event_id} not found")
        return event

    async def watch_events(self, calendar_id, channel_id, address, token=None, ttl_seconds=None):
        self._record("watch_events", calendar_id, channel_id, address)
        return WatchChannel(channel_id=channel_id, resource_id="res-1", expires_at=None)

    async def stop_channel(self, channel_id, resource_id):
        self._record("stop_channel", channel_id, resource_id)


class FakeSmsClient:
    def __init__(self):
        self.sent: list[tuple] = []
        self.fail_for: set[str] = set()

    def send_sms(self, to, message, from_=None):
        if to in self.fail_for:
            raise RuntimeError(f"undeliverable: {to}")
        self.sent.append((to, message, from_))


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture(scope="function")
async def db_engine(tmp_path):
    """File-backed SQLite so separate sessions see each other's commits."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def encryption_key() -> str:
    return Fernet.generate_key().decode()


@pytest_asyncio.fixture
async def tenant(db_session: AsyncSession) -> Tenant:
    """A tenant with a connected calendar, open 09-17 UTC on weekdays."""
    tenant = Tenant(
        id=TENANT_ID,
        name="Northside Auto",
        twilio_number="+61400000000",
        working_hours={},
        google_calendar_id=CALENDAR_ID,
        google_refresh_token="encrypted-refresh-token",
        google_calendar_timezone="UTC",
        auto_sync_bookings=True,
    )
    db_session.add(tenant)
    db_session.add(Tenant(id=OTHER_TENANT_ID, name="Southside Auto", google_calendar_timezone="UTC"))
    await db_session.commit()
    return tenant


@pytest_asyncio.fixture
async def channel(db_session: AsyncSession, tenant: Tenant) -> CalendarChannel:
    channel = CalendarChannel(
        id="chan-1",
        tenant_id=tenant.id,
        calendar_id=CALENDAR_ID,
        resource_id="res-1",
        token="secret-token",
    )
    db_session.add(channel)
    await db_session.commit()
    return channel


# =============================================================================
# Collaborator Fixtures
# =============================================================================


@pytest.fixture
def gateway() -> FakeCalendarGateway:
    return FakeCalendarGateway()


@pytest.fixture
def sms_client() -> FakeSmsClient:
    return FakeSmsClient()


@pytest.fixture
def notifier(sms_client: FakeSmsClient) -> BookingNotifier:
    return BookingNotifier(client_factory=lambda: sms_client)


@pytest.fixture
def booking_data() -> dict:
    return {
        "vehicle_id": "veh-42",
        "customer_id": "cus-7",
        "customer_name": "Jane Smith",
        "customer_email": "jane@example.com",
        "customer_phone": "+61411111111",
        "service_type": "Brake service",
        "start_time": utc(2030, 1, 7, 10, 0),
        "end_time": utc(2030, 1, 7, 11, 0),
    }


# =============================================================================
# API Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def app(session_factory, gateway, notifier) -> AsyncGenerator[FastAPI, None]:
    """Application wired to the test database and fake collaborators."""
    from bookingsync.api.v1.deps import get_gateway_factory, get_notifier
    from bookingsync.main import app as fastapi_app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_gateway_factory] = lambda: (lambda tenant: gateway)
    fastapi_app.dependency_overrides[get_notifier] = lambda: notifier
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def tenant_client(client: AsyncClient, tenant: Tenant) -> AsyncClient:
    client.headers["X-Tenant-ID"] = tenant.id
    return client
