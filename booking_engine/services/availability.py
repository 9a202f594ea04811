"""Bookable dates and slots from a weekly schedule, date overrides and a booking horizon.

Everything here is pure: no database, no clock. Callers pass ``now`` explicitly and
supply the "already booked" check as a predicate.

Precedence for a given date:
    1. dates before today (in the schedule's timezone) are never bookable
    2. dates beyond today + booking window are never bookable
    3. a DateOverride for the date replaces the weekly entry entirely
    4. a disabled day, or one without valid ranges, has no slots
    5. each range yields back-to-back slots of the appointment duration
    6. an appointment type's custom availability replaces the owner's wholesale
"""
import logging
from collections.abc import Callable
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from booking_engine.core.errors import BookingValidationError
from booking_engine.models.availability import (
    AppointmentType,
    Availability,
    BookingSettings,
    Slot,
    TimeRange,
)

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60

ConsumedCheck = Callable[[datetime, datetime], bool]


def parse_time_of_day(value: str) -> int | None:
    """Minutes from midnight for "HH:MM"; "24:00" is end of day. None if malformed."""
    try:
        hours_str, minutes_str = value.strip().split(":")
        hours, minutes = int(hours_str), int(minutes_str)
    except (AttributeError, ValueError):
        return None
    if not (0 <= minutes < 60) or not (0 <= hours <= 24):
        return None
    total = hours * 60 + minutes
    return total if total <= MINUTES_PER_DAY else None


def _valid_ranges(ranges: list[TimeRange]) -> list[tuple[int, int]]:
    """Parse and sort ranges, dropping malformed ones (start >= end or unparseable)."""
    out: list[tuple[int, int]] = []
    for r in ranges:
        start, end = parse_time_of_day(r.start), parse_time_of_day(r.end)
        if start is None or end is None or start >= end:
            logger.debug("Dropping malformed range %s-%s", r.start, r.end)
            continue
        out.append((start, end))
    out.sort()
    return out


def schedule_timezone(availability: Availability) -> ZoneInfo:
    try:
        return ZoneInfo(availability.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, falling back to UTC", availability.timezone)
        return ZoneInfo("UTC")


def _as_aware(now: datetime) -> datetime:
    return now if now.tzinfo is not None else now.replace(tzinfo=UTC)


def _wall_to_utc(wall: datetime, tz: ZoneInfo) -> datetime | None:
    """UTC instant of a naive wall-clock time in ``tz``; None when a DST gap skips it."""
    utc = wall.replace(tzinfo=tz).astimezone(UTC)
    if utc.astimezone(tz).replace(tzinfo=None) != wall:
        return None
    return utc


def resolve_availability(default: Availability, appointment_type: AppointmentType | None) -> Availability:
    """Custom availability on the type replaces the owner's schedule and overrides, never merged."""
    if appointment_type is not None and appointment_type.custom_availability is not None:
        return appointment_type.custom_availability
    return default


def resolve_day_ranges(day: date, availability: Availability) -> list[tuple[int, int]]:
    """Working ranges (minutes from midnight) for ``day``.

    An override, when present, is the only source consulted for that date.
    """
    override = availability.override_for(day)
    if override is not None:
        if not override.enabled or not override.ranges:
            return []
        return _valid_ranges(override.ranges)
    entry = availability.schedule.for_date(day)
    if not entry.enabled:
        return []
    return _valid_ranges(entry.ranges)


def bookable_range(availability: Availability, window_days: int, now: datetime) -> tuple[date, date]:
    """(first, last) dates inside the booking horizon, in the schedule's timezone."""
    today = _as_aware(now).astimezone(schedule_timezone(availability)).date()
    return today, today + timedelta(days=window_days)


def is_date_bookable(day: date, availability: Availability, window_days: int, now: datetime) -> bool:
    first, last = bookable_range(availability, window_days, now)
    if day < first or day > last:
        return False
    return bool(resolve_day_ranges(day, availability))


def bookable_dates(availability: Availability, window_days: int, now: datetime) -> list[date]:
    first, last = bookable_range(availability, window_days, now)
    days: list[date] = []
    current = first
    while current <= last:
        if resolve_day_ranges(current, availability):
            days.append(current)
        current += timedelta(days=1)
    return days


def slots_for(
    day: date,
    availability: Availability,
    appointment_type: AppointmentType,
    is_consumed: ConsumedCheck | None = None,
    now: datetime | None = None,
    minimum_notice_minutes: int = 0,
) -> list[Slot]:
    """Slots for ``day`` in start order, as aware UTC datetimes.

    ``is_consumed(start, end)`` reports slots already taken by an existing booking.
    With ``now`` given, slots starting before ``now + minimum_notice_minutes`` are
    emitted as unavailable. Bookability of the date itself is not checked here;
    see :func:`is_date_bookable`. Wall-clock starts a DST gap skips are not offered,
    and no slot overlaps the one before it.
    """
    effective = resolve_availability(availability, appointment_type)
    tz = schedule_timezone(effective)
    duration = appointment_type.duration
    midnight = datetime.combine(day, time.min)
    earliest = None
    if now is not None:
        earliest = _as_aware(now) + timedelta(minutes=minimum_notice_minutes)

    slots: list[Slot] = []
    last_cursor = 0
    last_end: datetime | None = None
    for range_start, range_end in resolve_day_ranges(day, effective):
        # Overlapping ranges must not produce overlapping slots
        cursor = max(range_start, last_cursor)
        while cursor + duration <= range_end:
            start = _wall_to_utc(midnight + timedelta(minutes=cursor), tz)
            cursor += duration
            last_cursor = cursor
            # Wall times lost to spring-forward, or re-entering time already offered
            if start is None or (last_end is not None and start < last_end):
                continue
            end = start + timedelta(minutes=duration)
            available = True
            if earliest is not None and start < earliest:
                available = False
            elif is_consumed is not None and is_consumed(start, end):
                available = False
            slots.append(Slot(start=start, end=end, available=available))
            last_end = end
    return slots


def validate_requested_slot(
    start: datetime,
    end: datetime,
    availability: Availability,
    appointment_type: AppointmentType,
    booking_settings: BookingSettings,
    now: datetime,
) -> None:
    """Raise BookingValidationError unless [start, end) is an offerable slot at ``now``."""
    start, end = _as_aware(start).astimezone(UTC), _as_aware(end).astimezone(UTC)
    if end - start != timedelta(minutes=appointment_type.duration):
        raise BookingValidationError("Slot duration does not match appointment type")

    effective = resolve_availability(availability, appointment_type)
    day = start.astimezone(schedule_timezone(effective)).date()
    first, last = bookable_range(effective, booking_settings.booking_window_days, now)
    if day < first:
        raise BookingValidationError("Cannot book appointments in the past")
    if day > last:
        raise BookingValidationError("Cannot book appointments beyond the booking window")
    if start < _as_aware(now) + timedelta(minutes=booking_settings.minimum_notice_minutes):
        raise BookingValidationError("Cannot book appointments with less than minimum notice")

    offered = slots_for(day, availability, appointment_type)
    if not any(s.start == start and s.end == end for s in offered):
        raise BookingValidationError("Selected time is not within available hours")
