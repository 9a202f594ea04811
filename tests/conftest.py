"""Shared test fixtures for booking engine tests."""

import asyncio
import os

# Settings are read at import time; configure before importing the app
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["SMTP_HOST"] = ""
os.environ["ENV"] = "test"

from collections.abc import AsyncGenerator  # noqa: E402
from datetime import UTC, datetime, timedelta  # noqa: E402
from pathlib import Path  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker  # noqa: E402

from booking_engine.api.deps import get_notification_gateway  # noqa: E402
from booking_engine.core.db import get_session, get_session_maker, init_db, make_engine, make_session_maker  # noqa: E402
from booking_engine.models.appointment import Appointment, AppointmentStatus  # noqa: E402
from booking_engine.models.booking_page import BookingPage  # noqa: E402
from booking_engine.models.contact import Contact  # noqa: E402
from booking_engine.services.email_service import DeliveryResult, ReminderTemplateFields  # noqa: E402

ALL_DAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def weekly(ranges: list[dict] | None = None, days=ALL_DAYS) -> dict:
    ranges = ranges if ranges is not None else [{"start": "09:00", "end": "17:00"}]
    return {day: {"enabled": day in days, "ranges": ranges if day in days else []} for day in ALL_DAYS}


CONSULT_TYPE = {
    "id": "consult",
    "slug": "consultation",
    "name": "Consultation",
    "duration": 30,
    "location_type": "video",
    "video_link": "https://meet.example.com/abc",
}

BUFFERED_TYPE = {
    "id": "buffered",
    "name": "Buffered consultation",
    "duration": 30,
    "buffer_before": 15,
    "buffer_after": 15,
    "location_type": "phone",
    "phone_number": "+1 555 0100",
}

LONG_TYPE = {"id": "long", "name": "Long session", "duration": 60, "location_type": "in_person"}


class FakeGateway:
    """Records sends; fails for addresses in ``failing``."""

    def __init__(self, failing: set[str] | None = None, delay: float = 0.0) -> None:
        self.failing = failing or set()
        self.delay = delay
        self.sent: list[tuple[str, ReminderTemplateFields]] = []

    async def send(self, to: str, fields: ReminderTemplateFields) -> DeliveryResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        if to in self.failing:
            return DeliveryResult(ok=False, error="Mailbox unavailable")
        self.sent.append((to, fields))
        return DeliveryResult(ok=True)


@pytest_asyncio.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite database per test, so separate sessions see each other's commits."""
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_maker(engine)


@pytest_asyncio.fixture
async def session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def booking_page(session_maker) -> BookingPage:
    """Active page open 09:00-17:00 UTC every day; consult is the 30-minute video type."""
    async with session_maker() as session:
        page = BookingPage(
            owner_id=1,
            slug="dr-smith",
            name="Dr. Smith",
            host_name="Dr. Smith",
            host_email="host@example.com",
            availability={"timezone": "UTC", "schedule": weekly()},
            settings={"booking_window_days": 30, "minimum_notice_minutes": 0},
            appointment_types=[CONSULT_TYPE, BUFFERED_TYPE, LONG_TYPE],
        )
        session.add(page)
        await session.commit()
        await session.refresh(page)
        return page


@pytest.fixture
def make_appointment(session_maker, booking_page):
    """Insert an appointment (and its contact) directly, bypassing validation."""

    async def _make(
        start: datetime,
        minutes: int = 30,
        status: AppointmentStatus = AppointmentStatus.scheduled,
        email: str | None = "visitor@example.com",
        owner_id: int = 1,
    ) -> Appointment:
        async with session_maker() as session:
            contact = Contact(owner_id=owner_id, first_name="Ada", last_name="Lovelace", email=email)
            session.add(contact)
            await session.flush()
            utc_start = start.astimezone(UTC)
            appointment = Appointment(
                owner_id=owner_id,
                booking_page_id=booking_page.id,
                appointment_type_id="consult",
                contact_id=contact.id,
                title="Consultation",
                start_time=utc_start,
                end_time=utc_start + timedelta(minutes=minutes),
                status=status.value,
                video_link="https://meet.example.com/abc",
                confirmation_code="ABC123",
            )
            session.add(appointment)
            await session.commit()
            await session.refresh(appointment)
            return appointment

    return _make


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest_asyncio.fixture
async def client(session_maker, gateway) -> AsyncGenerator[httpx.AsyncClient, None]:
    """App client bound to the per-test database and a fake reminder gateway."""
    from booking_engine.main import app

    async def _get_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = _get_session
    app.dependency_overrides[get_session_maker] = lambda: session_maker
    app.dependency_overrides[get_notification_gateway] = lambda: gateway
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
    app.dependency_overrides.clear()
