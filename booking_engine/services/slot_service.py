from datetime import UTC, date, datetime, time, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.core.errors import NotFoundError
from booking_engine.models.appointment import ACTIVE_STATUSES, Appointment
from booking_engine.models.availability import AppointmentType, Slot
from booking_engine.models.booking_page import BookingPage
from booking_engine.services.availability import (
    ConsumedCheck,
    is_date_bookable,
    resolve_availability,
    schedule_timezone,
    slots_for,
)


def as_utc(dt: datetime) -> datetime:
    """Aware UTC. Naive values (SQLite hands timestamps back without an offset) are taken as UTC."""
    return dt.replace(tzinfo=UTC) if dt.tzinfo is None else dt.astimezone(UTC)


async def get_booking_page(session: AsyncSession, booking_page_id: int) -> BookingPage | None:
    result = await session.execute(
        select(BookingPage).where(BookingPage.id == booking_page_id, BookingPage.is_active == True)  # noqa: E712
    )
    return result.scalar_one_or_none()


async def get_busy_intervals(
    session: AsyncSession, owner_id: int, start: datetime, end: datetime
) -> list[tuple[datetime, datetime]]:
    """Active appointments of the owner overlapping [start, end), as aware UTC pairs."""
    result = await session.execute(
        select(Appointment.start_time, Appointment.end_time).where(
            Appointment.owner_id == owner_id,
            Appointment.status.in_([s.value for s in ACTIVE_STATUSES]),
            Appointment.start_time < as_utc(end),
            Appointment.end_time > as_utc(start),
        )
    )
    return [(as_utc(s), as_utc(e)) for s, e in result.all()]


def make_consumed_check(
    busy: list[tuple[datetime, datetime]], buffer_before: int = 0, buffer_after: int = 0
) -> ConsumedCheck:
    before = timedelta(minutes=buffer_before)
    after = timedelta(minutes=buffer_after)

    def is_consumed(start: datetime, end: datetime) -> bool:
        padded_start, padded_end = start - before, end + after
        return any(padded_start < b_end and padded_end > b_start for b_start, b_end in busy)

    return is_consumed


async def get_available_slots_for_date(
    session: AsyncSession,
    page: BookingPage,
    appointment_type: AppointmentType,
    d: date,
    now: datetime | None = None,
) -> list[Slot]:
    """All slots of ``d`` for the page's appointment type, each flagged available or not.

    Dates outside the bookable range return an empty list.
    """
    now = now or datetime.now(UTC)
    availability = page.get_availability()
    booking_settings = page.get_settings()
    effective = resolve_availability(availability, appointment_type)
    if not is_date_bookable(d, effective, booking_settings.booking_window_days, now):
        return []

    tz = schedule_timezone(effective)
    margin = timedelta(minutes=max(appointment_type.buffer_before, appointment_type.buffer_after))
    day_start = datetime.combine(d, time.min, tzinfo=tz).astimezone(UTC) - margin
    day_end = datetime.combine(d + timedelta(days=1), time.min, tzinfo=tz).astimezone(UTC) + margin
    busy = await get_busy_intervals(session, page.owner_id, day_start, day_end)
    return slots_for(
        d,
        availability,
        appointment_type,
        is_consumed=make_consumed_check(busy, appointment_type.buffer_before, appointment_type.buffer_after),
        now=now,
        minimum_notice_minutes=booking_settings.minimum_notice_minutes,
    )


async def get_page_and_type(
    session: AsyncSession, booking_page_id: int, appointment_type_id: str
) -> tuple[BookingPage, AppointmentType]:
    """Active booking page and one of its active appointment types, or NotFoundError."""
    page = await get_booking_page(session, booking_page_id)
    if not page:
        raise NotFoundError("Booking page not found")
    appointment_type = page.find_appointment_type(appointment_type_id)
    if not appointment_type:
        raise NotFoundError("Appointment type not found")
    return page, appointment_type
