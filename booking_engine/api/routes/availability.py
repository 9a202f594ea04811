from datetime import UTC, date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.api.deps import get_session
from booking_engine.api.schemas.appointment import (
    AppointmentTypeInfo,
    AvailableSlotsResponse,
    BookableDatesResponse,
    SlotInfo,
)
from booking_engine.core.errors import NotFoundError
from booking_engine.services.availability import bookable_dates, resolve_availability
from booking_engine.services.slot_service import get_available_slots_for_date, get_page_and_type

router = APIRouter(prefix="/appointments/availability", tags=["availability"])


@router.get("", response_model=AvailableSlotsResponse)
async def available_slots(
    booking_page_id: int = Query(...),
    appointment_type_id: str = Query(...),
    date_param: date = Query(..., alias="date"),
    session: AsyncSession = Depends(get_session),
) -> AvailableSlotsResponse:
    """Slots for one date in start order, each with start, end (UTC) and available."""
    try:
        page, appointment_type = await get_page_and_type(session, booking_page_id, appointment_type_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.detail) from e
    slots = await get_available_slots_for_date(session, page, appointment_type, date_param)
    return AvailableSlotsResponse(
        date=date_param,
        appointment_type=AppointmentTypeInfo(
            id=appointment_type.id, name=appointment_type.name, duration=appointment_type.duration
        ),
        slots=[SlotInfo(start=s.start, end=s.end, available=s.available) for s in slots],
    )


@router.get("/dates", response_model=BookableDatesResponse)
async def available_dates(
    booking_page_id: int = Query(...),
    appointment_type_id: str = Query(...),
    session: AsyncSession = Depends(get_session),
) -> BookableDatesResponse:
    """Dates from today through the booking window that have working hours."""
    try:
        page, appointment_type = await get_page_and_type(session, booking_page_id, appointment_type_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.detail) from e
    effective = resolve_availability(page.get_availability(), appointment_type)
    dates = bookable_dates(effective, page.get_settings().booking_window_days, datetime.now(UTC))
    return BookableDatesResponse(
        appointment_type=AppointmentTypeInfo(
            id=appointment_type.id, name=appointment_type.name, duration=appointment_type.duration
        ),
        dates=dates,
    )
