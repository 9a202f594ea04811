import logging
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.api.deps import get_current_owner_id, get_session
from booking_engine.core.errors import InvalidStatusTransitionError
from booking_engine.models.appointment import (
    Appointment,
    AppointmentPublic,
    AppointmentStatus,
    AppointmentUpdate,
    ReminderPublic,
)
from booking_engine.services.appointment_service import (
    cancel_appointment,
    get_appointment_for_owner,
    list_appointments_for_owner,
    update_appointment,
)
from booking_engine.services.slot_service import as_utc

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/appointments", tags=["appointments"])


def _to_public(a: Appointment) -> AppointmentPublic:
    """Public shape; datetimes go out as aware UTC."""
    return AppointmentPublic(
        id=a.id,
        owner_id=a.owner_id,
        booking_page_id=a.booking_page_id,
        appointment_type_id=a.appointment_type_id,
        contact_id=a.contact_id,
        title=a.title,
        notes=a.notes,
        start_time=as_utc(a.start_time),
        end_time=as_utc(a.end_time),
        status=a.status,
        location=a.location_display,
        confirmation_code=a.confirmation_code,
        reminders=[ReminderPublic(type=r.type, sent_at=as_utc(r.sent_at)) for r in a.reminders],
        created_at=as_utc(a.created_at),
    )


async def _get_owned_or_404(session: AsyncSession, appointment_id: int, owner_id: int) -> Appointment:
    appointment = await get_appointment_for_owner(session, appointment_id, owner_id)
    if not appointment:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Appointment not found",
        )
    return appointment


@router.get("", response_model=list[AppointmentPublic])
async def list_my_appointments(
    from_date: date | None = Query(None),
    status_filter: list[AppointmentStatus] | None = Query(None, alias="status"),
    session: AsyncSession = Depends(get_session),
    owner_id: int = Depends(get_current_owner_id),
) -> list[AppointmentPublic]:
    appointments = await list_appointments_for_owner(session, owner_id, from_date=from_date, statuses=status_filter)
    return [_to_public(a) for a in appointments]


@router.get("/{appointment_id}", response_model=AppointmentPublic)
async def get_my_appointment(
    appointment_id: int,
    session: AsyncSession = Depends(get_session),
    owner_id: int = Depends(get_current_owner_id),
) -> AppointmentPublic:
    return _to_public(await _get_owned_or_404(session, appointment_id, owner_id))


@router.patch("/{appointment_id}", response_model=AppointmentPublic)
async def update_my_appointment(
    appointment_id: int,
    body: AppointmentUpdate,
    session: AsyncSession = Depends(get_session),
    owner_id: int = Depends(get_current_owner_id),
) -> AppointmentPublic:
    appointment = await _get_owned_or_404(session, appointment_id, owner_id)
    try:
        appointment = await update_appointment(session, appointment, body)
    except InvalidStatusTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.detail) from e
    logger.info("Appointment %s updated by owner %s (status=%s)", appointment.id, owner_id, appointment.status)
    return _to_public(appointment)


@router.delete("/{appointment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_my_appointment(
    appointment_id: int,
    session: AsyncSession = Depends(get_session),
    owner_id: int = Depends(get_current_owner_id),
) -> None:
    try:
        ok = await cancel_appointment(session, appointment_id, owner_id)
    except InvalidStatusTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.detail) from e
    if not ok:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Appointment not found",
        )
