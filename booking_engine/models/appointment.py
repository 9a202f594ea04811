from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import DDL, Column, DateTime, Index, UniqueConstraint, event, text
from sqlmodel import Field, Relationship, SQLModel

from booking_engine.models.booking_page import BookingPage
from booking_engine.models.contact import Contact


def _utc_now() -> datetime:
    return datetime.now(UTC)


class AppointmentStatus(str, Enum):
    scheduled = "scheduled"
    confirmed = "confirmed"
    completed = "completed"
    cancelled = "cancelled"
    no_show = "no_show"


# Statuses that occupy a slot and are eligible for reminders
ACTIVE_STATUSES = frozenset({AppointmentStatus.scheduled, AppointmentStatus.confirmed})
TERMINAL_STATUSES = frozenset(
    {AppointmentStatus.completed, AppointmentStatus.cancelled, AppointmentStatus.no_show}
)

_ACTIVE_SQL = text("status IN ('scheduled', 'confirmed')")


class Appointment(SQLModel, table=True):
    __tablename__ = "appointments"
    __table_args__ = (
        # Conditional insert: two active bookings can never share an owner's slot start
        Index(
            "uq_appointments_owner_active_start",
            "owner_id",
            "start_time",
            unique=True,
            postgresql_where=_ACTIVE_SQL,
            sqlite_where=_ACTIVE_SQL,
        ),
    )
    id: int | None = Field(default=None, primary_key=True)
    owner_id: int = Field(index=True)
    booking_page_id: int | None = Field(default=None, foreign_key="booking_pages.id", index=True)
    appointment_type_id: str | None = None
    contact_id: int | None = Field(default=None, foreign_key="contacts.id", index=True)
    title: str
    notes: str | None = None
    start_time: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False, index=True))
    end_time: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    status: str = Field(default=AppointmentStatus.scheduled.value, index=True)
    location: str | None = None
    video_link: str | None = None
    phone_number: str | None = None
    confirmation_code: str = Field(index=True)
    created_at: datetime = Field(
        default_factory=_utc_now, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=_utc_now, sa_column=Column(DateTime(timezone=True), nullable=False)
    )

    contact: Contact | None = Relationship(sa_relationship_kwargs={"lazy": "selectin"})
    booking_page: BookingPage | None = Relationship(sa_relationship_kwargs={"lazy": "selectin"})
    reminders: list["AppointmentReminder"] = Relationship(
        back_populates="appointment",
        sa_relationship_kwargs={
            "lazy": "selectin",
            "order_by": "AppointmentReminder.sent_at",
            "cascade": "all, delete-orphan",
        },
    )

    def has_reminder(self, reminder_type: str) -> bool:
        return any(r.type == reminder_type for r in self.reminders)

    @property
    def location_display(self) -> str:
        if self.video_link:
            return f"Video call: {self.video_link}"
        if self.phone_number:
            return f"Phone: {self.phone_number}"
        return self.location or "To be determined"


class AppointmentReminder(SQLModel, table=True):
    """One row per reminder type actually delivered; never updated or deleted."""

    __tablename__ = "appointment_reminders"
    __table_args__ = (
        UniqueConstraint("appointment_id", "type", name="uq_appointment_reminders_type"),
    )
    id: int | None = Field(default=None, primary_key=True)
    appointment_id: int = Field(foreign_key="appointments.id", index=True, ondelete="CASCADE")
    type: str
    sent_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))

    appointment: Appointment | None = Relationship(back_populates="reminders")


class ReminderPublic(SQLModel):
    type: str
    sent_at: datetime


class AppointmentPublic(SQLModel):
    id: int
    owner_id: int
    booking_page_id: int | None = None
    appointment_type_id: str | None = None
    contact_id: int | None = None
    title: str
    notes: str | None = None
    start_time: datetime
    end_time: datetime
    status: str
    location: str | None = None
    confirmation_code: str
    reminders: list[ReminderPublic] = []
    created_at: datetime


class AppointmentUpdate(SQLModel):
    status: AppointmentStatus | None = None
    notes: str | None = None


# Overlap guard in the store: the unique index only catches equal starts, so two
# active bookings of different lengths are kept apart here.
OVERLAP_EXCLUSION_DDL = (
    "ALTER TABLE appointments ADD CONSTRAINT ex_appointments_owner_active_overlap "
    "EXCLUDE USING gist (owner_id WITH =, tstzrange(start_time, end_time) WITH &&) "
    "WHERE (status IN ('scheduled', 'confirmed'))"
)
OVERLAP_TRIGGER_DDL = (
    "CREATE TRIGGER trg_appointments_owner_active_overlap BEFORE INSERT ON appointments "
    "WHEN NEW.status IN ('scheduled', 'confirmed') AND EXISTS ("
    "SELECT 1 FROM appointments WHERE owner_id = NEW.owner_id "
    "AND status IN ('scheduled', 'confirmed') "
    "AND start_time < NEW.end_time AND end_time > NEW.start_time) "
    "BEGIN SELECT RAISE(ABORT, 'overlapping appointment'); END"
)

event.listen(
    Appointment.__table__,
    "before_create",
    DDL("CREATE EXTENSION IF NOT EXISTS btree_gist").execute_if(dialect="postgresql"),
)
event.listen(Appointment.__table__, "after_create", DDL(OVERLAP_EXCLUSION_DDL).execute_if(dialect="postgresql"))
event.listen(Appointment.__table__, "after_create", DDL(OVERLAP_TRIGGER_DDL).execute_if(dialect="sqlite"))
