import logging
from datetime import date, datetime
from typing import Protocol

import httpx
from pydantic import BaseModel

from booking_engine.api.schemas.appointment import ContactInfo
from booking_engine.core.errors import BookingError, BookingValidationError, NotFoundError, SlotConflictError
from booking_engine.models.availability import Slot

logger = logging.getLogger(__name__)


class BookingConfirmation(BaseModel):
    appointment_id: int
    confirmation_code: str
    start_time: datetime
    end_time: datetime
    calendar_links: dict[str, str] = {}


class BookingClient(Protocol):
    async def fetch_slots(self, day: date) -> list[Slot]: ...

    async def submit(self, slot: Slot, contact: ContactInfo, notes: str | None = None) -> BookingConfirmation: ...


def _detail(response: httpx.Response) -> str:
    try:
        return str(response.json().get("detail") or response.reason_phrase)
    except ValueError:
        return response.reason_phrase


def _raise_for_status(response: httpx.Response) -> None:
    if response.is_success:
        return
    detail = _detail(response)
    if response.status_code == 409:
        raise SlotConflictError(detail)
    if response.status_code == 404:
        raise NotFoundError(detail)
    if response.status_code in (400, 422):
        raise BookingValidationError(detail)
    raise BookingError(detail)


class HttpBookingClient:
    """Talks to the public availability and booking endpoints for one page and type."""

    def __init__(self, http: httpx.AsyncClient, booking_page_id: int, appointment_type_id: str) -> None:
        self._http = http
        self.booking_page_id = booking_page_id
        self.appointment_type_id = appointment_type_id

    async def fetch_slots(self, day: date) -> list[Slot]:
        try:
            response = await self._http.get(
                "/api/v1/appointments/availability",
                params={
                    "booking_page_id": self.booking_page_id,
                    "appointment_type_id": self.appointment_type_id,
                    "date": day.isoformat(),
                },
            )
        except httpx.HTTPError as e:
            logger.warning("Fetching slots for %s failed: %s", day, e)
            raise BookingError("Could not load available times") from e
        _raise_for_status(response)
        try:
            return [Slot.model_validate(s) for s in response.json()["slots"]]
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Unexpected availability response for %s: %s", day, e)
            raise BookingError("Could not load available times") from e

    async def submit(self, slot: Slot, contact: ContactInfo, notes: str | None = None) -> BookingConfirmation:
        payload = {
            "booking_page_id": self.booking_page_id,
            "appointment_type_id": self.appointment_type_id,
            "start_time": slot.start.isoformat(),
            "end_time": slot.end.isoformat(),
            "contact": contact.model_dump(),
            "notes": notes,
        }
        try:
            response = await self._http.post("/api/v1/appointments/book", json=payload)
        except httpx.HTTPError as e:
            logger.warning("Booking request failed: %s", e)
            raise BookingError("Booking failed, please try again") from e
        _raise_for_status(response)
        # pydantic.ValidationError is a ValueError
        try:
            data = response.json()
            return BookingConfirmation(
                appointment_id=data["appointment"]["id"],
                confirmation_code=data["confirmation_code"],
                start_time=data["appointment"]["start_time"],
                end_time=data["appointment"]["end_time"],
                calendar_links=data.get("calendar_links") or {},
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Unexpected booking response: %s", e)
            raise BookingError("Booking failed, please try again") from e
