import logging
from collections.abc import Iterable
from datetime import UTC, date, datetime, timedelta

from sqlalchemy import insert, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.core.errors import InvalidStatusTransitionError, SlotConflictError
from booking_engine.core.security import generate_confirmation_code
from booking_engine.models.appointment import (
    Appointment,
    AppointmentReminder,
    AppointmentStatus,
    AppointmentUpdate,
)
from booking_engine.models.availability import AppointmentType
from booking_engine.models.booking_page import BookingPage
from booking_engine.models.contact import Contact
from booking_engine.services.availability import validate_requested_slot
from booking_engine.services.slot_service import as_utc, get_busy_intervals, make_consumed_check

logger = logging.getLogger(__name__)

_ALLOWED_STATUS_CHANGES: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.scheduled: frozenset(
        {
            AppointmentStatus.confirmed,
            AppointmentStatus.completed,
            AppointmentStatus.cancelled,
            AppointmentStatus.no_show,
        }
    ),
    AppointmentStatus.confirmed: frozenset(
        {AppointmentStatus.completed, AppointmentStatus.cancelled, AppointmentStatus.no_show}
    ),
}


async def find_or_create_contact(
    session: AsyncSession,
    owner_id: int,
    first_name: str,
    last_name: str,
    email: str,
    phone: str | None = None,
) -> Contact:
    result = await session.execute(
        select(Contact).where(Contact.owner_id == owner_id, Contact.email == email).limit(1)
    )
    contact = result.scalar_one_or_none()
    if contact:
        contact.first_name = first_name
        contact.last_name = last_name
        contact.phone = phone or None
        contact.updated_at = datetime.now(UTC)
        session.add(contact)
    else:
        contact = Contact(
            owner_id=owner_id,
            first_name=first_name,
            last_name=last_name,
            email=email,
            phone=phone or None,
            source="booking_page",
        )
        session.add(contact)
    await session.flush()
    return contact


async def create_appointment(
    session: AsyncSession,
    page: BookingPage,
    appointment_type: AppointmentType,
    start_time: datetime,
    end_time: datetime,
    contact: Contact,
    notes: str | None = None,
    now: datetime | None = None,
) -> Appointment:
    """Create a scheduled appointment for a slot, or raise.

    Raises BookingValidationError if the slot is not offerable and SlotConflictError
    if it is already taken. The pre-check honours the type's buffers; bookers racing
    past it are settled by the store's overlap guard on active appointments.
    """
    now = now or datetime.now(UTC)
    validate_requested_slot(
        start_time, end_time, page.get_availability(), appointment_type, page.get_settings(), now
    )

    busy = await get_busy_intervals(
        session,
        page.owner_id,
        start_time - timedelta(minutes=appointment_type.buffer_before),
        end_time + timedelta(minutes=appointment_type.buffer_after),
    )
    if busy:
        is_consumed = make_consumed_check(busy, appointment_type.buffer_before, appointment_type.buffer_after)
        if is_consumed(start_time, end_time):
            raise SlotConflictError()

    appointment = Appointment(
        owner_id=page.owner_id,
        booking_page_id=page.id,
        appointment_type_id=appointment_type.id,
        contact_id=contact.id,
        title=appointment_type.name,
        notes=notes or None,
        start_time=as_utc(start_time),
        end_time=as_utc(end_time),
        status=AppointmentStatus.scheduled.value,
        location=appointment_type.location or appointment_type.location_type,
        video_link=appointment_type.video_link if appointment_type.location_type == "video" else None,
        phone_number=appointment_type.phone_number if appointment_type.location_type == "phone" else None,
        confirmation_code=generate_confirmation_code(),
    )
    try:
        async with session.begin_nested():
            session.add(appointment)
            await session.flush()
    except IntegrityError as e:
        logger.info("Slot %s for owner %s taken concurrently", start_time, page.owner_id)
        raise SlotConflictError() from e
    await session.refresh(appointment)
    return appointment


async def list_appointments_for_owner(
    session: AsyncSession,
    owner_id: int,
    from_date: date | None = None,
    statuses: Iterable[AppointmentStatus] | None = None,
) -> list[Appointment]:
    q = select(Appointment).where(Appointment.owner_id == owner_id).order_by(Appointment.start_time)
    if from_date:
        start = datetime(from_date.year, from_date.month, from_date.day, tzinfo=UTC)
        q = q.where(Appointment.start_time >= start)
    if statuses:
        q = q.where(Appointment.status.in_([s.value for s in statuses]))
    result = await session.execute(q)
    return list(result.scalars().all())


async def get_appointment_for_owner(
    session: AsyncSession, appointment_id: int, owner_id: int
) -> Appointment | None:
    result = await session.execute(
        select(Appointment).where(
            Appointment.id == appointment_id,
            Appointment.owner_id == owner_id,
        )
    )
    return result.scalar_one_or_none()


async def update_appointment(
    session: AsyncSession, appointment: Appointment, data: AppointmentUpdate
) -> Appointment:
    if data.status is not None and data.status.value != appointment.status:
        current = AppointmentStatus(appointment.status)
        if data.status not in _ALLOWED_STATUS_CHANGES.get(current, frozenset()):
            raise InvalidStatusTransitionError(
                f"Cannot change status from {current.value} to {data.status.value}"
            )
        appointment.status = data.status.value
    if data.notes is not None:
        appointment.notes = data.notes
    appointment.updated_at = datetime.now(UTC)
    session.add(appointment)
    await session.flush()
    await session.refresh(appointment)
    return appointment


async def cancel_appointment(session: AsyncSession, appointment_id: int, owner_id: int) -> bool:
    """Mark as cancelled; this frees the slot and stops further reminders."""
    appointment = await get_appointment_for_owner(session, appointment_id, owner_id)
    if not appointment:
        return False
    if appointment.status != AppointmentStatus.cancelled.value:
        await update_appointment(session, appointment, AppointmentUpdate(status=AppointmentStatus.cancelled))
    return True


async def find_pending(
    session: AsyncSession,
    statuses: Iterable[AppointmentStatus],
    window_start: datetime,
    window_end: datetime,
) -> list[Appointment]:
    """Appointments in ``statuses`` starting within [window_start, window_end], both inclusive."""
    result = await session.execute(
        select(Appointment)
        .where(
            Appointment.status.in_([s.value for s in statuses]),
            Appointment.start_time >= as_utc(window_start),
            Appointment.start_time <= as_utc(window_end),
        )
        .order_by(Appointment.start_time, Appointment.id)
    )
    return list(result.scalars().all())


async def append_reminder_if_absent(
    session: AsyncSession, appointment_id: int, reminder_type: str, sent_at: datetime
) -> bool:
    """Record that ``reminder_type`` was sent. Returns False if it was already recorded.

    A single conditional write against the (appointment_id, type) unique constraint,
    so concurrent callers cannot both succeed.
    """
    values = {
        "appointment_id": appointment_id,
        "type": reminder_type,
        "sent_at": as_utc(sent_at),
    }
    dialect = session.get_bind().dialect.name
    if dialect in ("postgresql", "sqlite"):
        dialect_insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
        stmt = (
            dialect_insert(AppointmentReminder)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["appointment_id", "type"])
        )
        result = await session.execute(stmt)
        return result.rowcount == 1
    try:
        async with session.begin_nested():
            await session.execute(insert(AppointmentReminder).values(**values))
    except IntegrityError:
        return False
    return True
