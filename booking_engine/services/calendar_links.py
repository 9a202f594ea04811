from datetime import UTC, datetime
from urllib.parse import quote, urlencode


def _ics_stamp(dt: datetime) -> str:
    return dt.astimezone(UTC).strftime("%Y%m%dT%H%M%SZ")


def build_calendar_links(
    title: str, description: str, location: str, start: datetime, end: datetime
) -> dict[str, str]:
    """Add-to-calendar links for Google, Outlook and an iCal data URL."""
    start_stamp, end_stamp = _ics_stamp(start), _ics_stamp(end)
    google = "https://calendar.google.com/calendar/render?" + urlencode(
        {
            "action": "TEMPLATE",
            "text": title,
            "dates": f"{start_stamp}/{end_stamp}",
            "details": description,
            "location": location,
        }
    )
    outlook = "https://outlook.live.com/calendar/0/deeplink/compose?" + urlencode(
        {
            "subject": title,
            "startdt": start.astimezone(UTC).isoformat(),
            "enddt": end.astimezone(UTC).isoformat(),
            "body": description,
            "location": location,
        }
    )
    ics = "\n".join(
        [
            "BEGIN:VCALENDAR",
            "VERSION:2.0",
            "BEGIN:VEVENT",
            f"DTSTART:{start_stamp}",
            f"DTEND:{end_stamp}",
            f"SUMMARY:{title}",
            f"DESCRIPTION:{description}",
            f"LOCATION:{location}",
            "END:VEVENT",
            "END:VCALENDAR",
        ]
    )
    ical = "data:text/calendar;charset=utf-8," + quote(ics)
    return {"google": google, "outlook": outlook, "ical": ical}
