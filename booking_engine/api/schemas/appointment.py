from datetime import date, datetime

from pydantic import BaseModel, EmailStr, Field


class SlotInfo(BaseModel):
    start: datetime
    end: datetime
    available: bool


class AppointmentTypeInfo(BaseModel):
    id: str
    name: str
    duration: int


class AvailableSlotsResponse(BaseModel):
    date: date
    appointment_type: AppointmentTypeInfo
    slots: list[SlotInfo]


class BookableDatesResponse(BaseModel):
    appointment_type: AppointmentTypeInfo
    dates: list[date]


class ContactInfo(BaseModel):
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    email: EmailStr
    phone: str | None = None


class BookAppointmentRequest(BaseModel):
    booking_page_id: int
    appointment_type_id: str
    start_time: datetime
    end_time: datetime
    contact: ContactInfo
    notes: str | None = None


class BookedAppointment(BaseModel):
    id: int
    title: str
    start_time: datetime
    end_time: datetime
    status: str


class CalendarLinks(BaseModel):
    google: str
    outlook: str
    ical: str


class BookAppointmentResponse(BaseModel):
    appointment: BookedAppointment
    confirmation_code: str
    message: str = "Appointment booked successfully"
    calendar_links: CalendarLinks
