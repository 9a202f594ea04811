from booking_engine.models.appointment import (
    Appointment,
    AppointmentPublic,
    AppointmentReminder,
    AppointmentStatus,
    AppointmentUpdate,
    ReminderPublic,
)
from booking_engine.models.booking_page import BookingPage
from booking_engine.models.contact import Contact
from booking_engine.models.reminder import ReminderOutcome, ReminderSweepResult

__all__ = [
    "Appointment",
    "AppointmentPublic",
    "AppointmentReminder",
    "AppointmentStatus",
    "AppointmentUpdate",
    "ReminderPublic",
    "BookingPage",
    "Contact",
    "ReminderOutcome",
    "ReminderSweepResult",
]
