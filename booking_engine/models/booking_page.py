from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from booking_engine.core.config import settings as app_settings
from booking_engine.models.availability import AppointmentType, Availability, BookingSettings


class BookingPage(SQLModel, table=True):
    __tablename__ = "booking_pages"
    id: int | None = Field(default=None, primary_key=True)
    owner_id: int = Field(index=True)
    slug: str = Field(unique=True, index=True)
    name: str
    host_name: str | None = None
    host_email: str | None = None
    is_active: bool = True
    availability: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    settings: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    appointment_types: list = Field(default_factory=list, sa_column=Column(JSON, nullable=False))

    def get_availability(self) -> Availability:
        return Availability.model_validate(self.availability or {})

    def get_settings(self) -> BookingSettings:
        """Page settings; keys the page leaves out fall back to the app-wide defaults."""
        page_settings = BookingSettings.model_validate(self.settings or {})
        defaults = {
            "booking_window_days": app_settings.default_booking_window_days,
            "minimum_notice_minutes": app_settings.default_minimum_notice_minutes,
        }
        return page_settings.model_copy(
            update={k: v for k, v in defaults.items() if k not in page_settings.model_fields_set}
        )

    def find_appointment_type(self, type_id: str) -> AppointmentType | None:
        """Active appointment type by id; inactive types are not bookable."""
        for raw in self.appointment_types or []:
            if raw.get("id") == type_id:
                appointment_type = AppointmentType.model_validate(raw)
                return appointment_type if appointment_type.is_active else None
        return None
