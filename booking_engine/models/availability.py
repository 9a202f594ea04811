"""Owner-authored availability configuration.

These are value objects stored as JSON on a booking page; the engine only reads them.
Time-of-day strings are kept as written ("09:00") and parsed by the availability
calculator, so one malformed range cannot fail validation of a whole page.
"""
from datetime import date, datetime
from typing import Literal

from pydantic import AliasChoices, BaseModel, Field

WEEKDAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class TimeRange(BaseModel):
    start: str  # "HH:MM"
    end: str  # "HH:MM", "24:00" allowed


class DaySchedule(BaseModel):
    enabled: bool = False
    ranges: list[TimeRange] = Field(
        default_factory=list, validation_alias=AliasChoices("ranges", "slots")
    )


class WeeklySchedule(BaseModel):
    monday: DaySchedule = Field(default_factory=DaySchedule)
    tuesday: DaySchedule = Field(default_factory=DaySchedule)
    wednesday: DaySchedule = Field(default_factory=DaySchedule)
    thursday: DaySchedule = Field(default_factory=DaySchedule)
    friday: DaySchedule = Field(default_factory=DaySchedule)
    saturday: DaySchedule = Field(default_factory=DaySchedule)
    sunday: DaySchedule = Field(default_factory=DaySchedule)

    def for_date(self, d: date) -> DaySchedule:
        return getattr(self, WEEKDAY_NAMES[d.weekday()])


class DateOverride(BaseModel):
    date: date
    enabled: bool
    ranges: list[TimeRange] | None = Field(
        default=None, validation_alias=AliasChoices("ranges", "slots")
    )
    reason: str | None = None


class Availability(BaseModel):
    timezone: str = "UTC"
    schedule: WeeklySchedule = Field(default_factory=WeeklySchedule)
    date_overrides: list[DateOverride] = Field(default_factory=list)

    def override_for(self, d: date) -> DateOverride | None:
        for override in self.date_overrides:
            if override.date == d:
                return override
        return None


class BookingSettings(BaseModel):
    booking_window_days: int = Field(
        default=60, ge=0, validation_alias=AliasChoices("booking_window_days", "booking_window")
    )
    minimum_notice_minutes: int = Field(
        default=0, ge=0, validation_alias=AliasChoices("minimum_notice_minutes", "minimum_notice")
    )


LocationType = Literal["in_person", "phone", "video", "custom"]


class AppointmentType(BaseModel):
    id: str
    slug: str = ""
    name: str
    description: str | None = None
    duration: int = Field(gt=0, validation_alias=AliasChoices("duration", "duration_minutes"))
    is_active: bool = True
    location_type: LocationType = "video"
    location: str | None = None
    video_link: str | None = None
    phone_number: str | None = None
    buffer_before: int = Field(default=0, ge=0)
    buffer_after: int = Field(default=0, ge=0)
    custom_availability: Availability | None = None


class Slot(BaseModel):
    """Candidate interval of exactly the appointment type's duration (aware UTC)."""

    start: datetime
    end: datetime
    available: bool = True
