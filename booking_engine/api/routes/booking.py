import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.api.deps import get_session
from booking_engine.api.schemas.appointment import (
    BookAppointmentRequest,
    BookAppointmentResponse,
    BookedAppointment,
    CalendarLinks,
)
from booking_engine.core.errors import BookingValidationError, NotFoundError, SlotConflictError
from booking_engine.services.appointment_service import create_appointment, find_or_create_contact
from booking_engine.services.calendar_links import build_calendar_links
from booking_engine.services.email_service import (
    send_appointment_confirmation_email,
    send_host_notification_email,
)
from booking_engine.services.slot_service import as_utc, get_page_and_type

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/appointments", tags=["booking"])


@router.post("/book", response_model=BookAppointmentResponse, status_code=status.HTTP_201_CREATED)
async def book_appointment(
    body: BookAppointmentRequest,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
) -> BookAppointmentResponse:
    """Public booking. 409 when the slot was taken; the client should re-query availability."""
    try:
        page, appointment_type = await get_page_and_type(session, body.booking_page_id, body.appointment_type_id)
        contact = await find_or_create_contact(
            session,
            page.owner_id,
            body.contact.first_name,
            body.contact.last_name,
            body.contact.email,
            body.contact.phone,
        )
        appointment = await create_appointment(
            session,
            page,
            appointment_type,
            body.start_time,
            body.end_time,
            contact,
            notes=body.notes,
        )
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.detail) from e
    except BookingValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.detail) from e
    except SlotConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.detail) from e
    await session.commit()

    start, end = as_utc(appointment.start_time), as_utc(appointment.end_time)
    host_name = page.host_name or page.name
    timezone = page.get_availability().timezone
    location = appointment.location_display
    logger.info("Booked appointment %s on page %s at %s", appointment.id, page.id, start.isoformat())

    background_tasks.add_task(
        send_appointment_confirmation_email,
        to_email=contact.email,
        contact_name=contact.full_name,
        appointment_title=appointment.title,
        host_name=host_name,
        start_time=start,
        end_time=end,
        location=location,
        confirmation_code=appointment.confirmation_code,
        timezone=timezone,
    )
    if page.host_email:
        background_tasks.add_task(
            send_host_notification_email,
            to_email=page.host_email,
            host_name=host_name,
            contact_name=contact.full_name,
            contact_email=contact.email,
            appointment_title=appointment.title,
            start_time=start,
            end_time=end,
            notes=appointment.notes,
            timezone=timezone,
        )

    links = build_calendar_links(
        title=f"{appointment.title} with {host_name}",
        description=appointment.notes or "",
        location=location,
        start=start,
        end=end,
    )
    return BookAppointmentResponse(
        appointment=BookedAppointment(
            id=appointment.id,
            title=appointment.title,
            start_time=start,
            end_time=end,
            status=appointment.status,
        ),
        confirmation_code=appointment.confirmation_code,
        calendar_links=CalendarLinks(**links),
    )
