import asyncio
import logging
import smtplib
from datetime import UTC, datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Protocol
from zoneinfo import ZoneInfo

from pydantic import BaseModel

from booking_engine.core.config import settings

logger = logging.getLogger(__name__)

REMINDER_LABELS = {
    "24h": "in 24 hours",
    "1h": "in 1 hour",
    "15m": "in 15 minutes",
}


class ReminderTemplateFields(BaseModel):
    contact_name: str
    appointment_title: str
    host_name: str
    start_time: datetime
    end_time: datetime
    location: str
    reminder_type: str
    confirmation_code: str
    timezone: str = "UTC"


class DeliveryResult(BaseModel):
    ok: bool
    error: str | None = None


class NotificationGateway(Protocol):
    """Sends one templated reminder. Reports success or failure; never retries."""

    async def send(self, to: str, fields: ReminderTemplateFields) -> DeliveryResult: ...


def _send_email_sync(to_email: str, subject: str, html_body: str, text_body: str) -> None:
    """Send email via SMTP (blocking). Raises on delivery failure."""
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"{settings.from_name} <{settings.from_email}>"
    msg["To"] = to_email
    msg.attach(MIMEText(text_body, "plain", "utf-8"))
    msg.attach(MIMEText(html_body, "html", "utf-8"))
    with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=settings.smtp_timeout_seconds) as server:
        server.starttls()
        server.login(settings.smtp_user, settings.smtp_password)
        server.sendmail(settings.from_email, [to_email], msg.as_string())
    logger.info("Email sent to %s", to_email)


def _send_email_best_effort(to_email: str, subject: str, html_body: str, text_body: str) -> None:
    """For background tasks: failures are logged, never raised."""
    if not settings.email_enabled:
        logger.debug("Email disabled (SMTP not configured), skipping send")
        return
    try:
        _send_email_sync(to_email, subject, html_body, text_body)
    except Exception as e:
        logger.exception("Failed to send email to %s: %s", to_email, e)


def _html_escape(s: str) -> str:
    return (
        s.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


def _local(dt: datetime, tz_name: str) -> datetime:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    try:
        return dt.astimezone(ZoneInfo(tz_name))
    except (KeyError, ValueError):
        return dt.astimezone(UTC)


def format_when(start: datetime, end: datetime, tz_name: str = "UTC") -> tuple[str, str]:
    """('Monday, March 02, 2026', '09:00 AM – 09:30 AM (UTC)')"""
    local_start, local_end = _local(start, tz_name), _local(end, tz_name)
    date_str = local_start.strftime("%A, %B %d, %Y")
    time_str = f"{local_start.strftime('%I:%M %p')} – {local_end.strftime('%I:%M %p')} ({tz_name})"
    return date_str, time_str


def _wrap_html(title: str, heading: str, intro: str, rows: list[tuple[str, str]], footer_note: str) -> str:
    """HTML body; every argument is plain text and escaped here."""
    rows_html = "".join(
        f"""
                    <p style="margin:12px 0 0 0;font-size:12px;text-transform:uppercase;letter-spacing:0.5px;color:#6b7280;">{label}</p>
                    <p style="margin:0;font-size:16px;font-weight:600;color:#111827;">{_html_escape(value)}</p>"""
        for label, value in rows
    )
    return f"""
<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{_html_escape(title)}</title>
</head>
<body style="margin:0;padding:0;font-family:-apple-system,BlinkMacSystemFont,'Segoe UI',Roboto,Oxygen,Ubuntu,sans-serif;background-color:#f3f4f6;">
  <table role="presentation" width="100%" cellspacing="0" cellpadding="0" style="background-color:#f3f4f6;">
    <tr>
      <td align="center" style="padding:40px 16px;">
        <table role="presentation" width="100%" cellspacing="0" cellpadding="0" style="max-width:560px;background:#ffffff;border-radius:12px;box-shadow:0 4px 6px rgba(0,0,0,0.05);overflow:hidden;">
          <tr>
            <td style="padding:32px 32px 24px 32px;">
              <h1 style="margin:0 0 8px 0;font-size:22px;font-weight:600;color:#111827;">{_html_escape(heading)}</h1>
              <p style="margin:0 0 24px 0;font-size:15px;color:#6b7280;">{_html_escape(intro)}</p>
              <table role="presentation" width="100%" cellspacing="0" cellpadding="0" style="background:#f9fafb;border-radius:8px;margin-bottom:24px;">
                <tr>
                  <td style="padding:8px 24px 20px 24px;">{rows_html}
                  </td>
                </tr>
              </table>
              <p style="margin:0 0 8px 0;font-size:14px;color:#374151;">{_html_escape(footer_note)}</p>
            </td>
          </tr>
          <tr>
            <td style="padding:24px 32px 32px 32px;background:#f9fafb;border-top:1px solid #e5e7eb;">
              <p style="margin:0;font-size:13px;font-weight:600;color:#111827;">{_html_escape(settings.site_name)}</p>
            </td>
          </tr>
        </table>
      </td>
    </tr>
  </table>
</body>
</html>
"""


def _text_body(intro: str, rows: list[tuple[str, str]], footer_note: str) -> str:
    lines = [intro, ""] + [f"{label}: {value}" for label, value in rows] + ["", footer_note]
    return "\n".join(lines)


def build_reminder_email(fields: ReminderTemplateFields) -> tuple[str, str, str]:
    """(subject, html, text) for an upcoming-appointment reminder."""
    when = REMINDER_LABELS.get(fields.reminder_type, "soon")
    date_str, time_str = format_when(fields.start_time, fields.end_time, fields.timezone)
    rows = [
        ("What", fields.appointment_title),
        ("With", fields.host_name),
        ("Date", date_str),
        ("Time", time_str),
        ("Location", fields.location),
        ("Confirmation code", fields.confirmation_code),
    ]
    intro = f"Hi {fields.contact_name or 'there'}, this is a reminder that your appointment is coming up {when}."
    footer = "Need to make changes? Please contact us to reschedule or cancel your appointment."
    subject = f"Reminder: {fields.appointment_title} {when}"
    return subject, _wrap_html("Appointment Reminder", "Appointment Reminder", intro, rows, footer), _text_body(
        intro, rows, footer
    )


class EmailNotificationGateway:
    """Reminder delivery over SMTP. The blocking send runs in a worker thread."""

    async def send(self, to: str, fields: ReminderTemplateFields) -> DeliveryResult:
        if not settings.email_enabled:
            return DeliveryResult(ok=False, error="Email delivery is not configured")
        subject, html, text = build_reminder_email(fields)
        try:
            await asyncio.to_thread(_send_email_sync, to, subject, html, text)
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("Reminder email to %s failed: %s", to, e)
            return DeliveryResult(ok=False, error=f"{type(e).__name__}: {e}")
        return DeliveryResult(ok=True)


def send_appointment_confirmation_email(
    to_email: str,
    contact_name: str,
    appointment_title: str,
    host_name: str,
    start_time: datetime,
    end_time: datetime,
    location: str,
    confirmation_code: str,
    timezone: str = "UTC",
) -> None:
    """Compose and send the booking confirmation to the visitor (call from background task)."""
    date_str, time_str = format_when(start_time, end_time, timezone)
    rows = [
        ("What", appointment_title),
        ("With", host_name),
        ("Date", date_str),
        ("Time", time_str),
        ("Location", location),
        ("Confirmation code", confirmation_code),
    ]
    intro = f"Hi {contact_name or 'there'}, your appointment has been confirmed."
    footer = "Need to make changes? Please contact us to reschedule or cancel your appointment."
    subject = f"Appointment Confirmed: {appointment_title} on {start_time.strftime('%b %d')}"
    _send_email_best_effort(
        to_email,
        subject,
        _wrap_html("Appointment Confirmed", "Appointment Confirmed", intro, rows, footer),
        _text_body(intro, rows, footer),
    )


def send_host_notification_email(
    to_email: str,
    host_name: str,
    contact_name: str,
    contact_email: str,
    appointment_title: str,
    start_time: datetime,
    end_time: datetime,
    notes: str | None = None,
    timezone: str = "UTC",
) -> None:
    """Tell the booking page owner about a new booking (call from background task)."""
    date_str, time_str = format_when(start_time, end_time, timezone)
    rows = [
        ("Who", f"{contact_name} <{contact_email}>"),
        ("What", appointment_title),
        ("Date", date_str),
        ("Time", time_str),
    ]
    if notes:
        rows.append(("Notes", notes))
    intro = f"Hi {host_name or 'there'}, you have a new booking."
    subject = f"New Appointment: {contact_name} - {appointment_title} on {start_time.strftime('%b %d')}"
    _send_email_best_effort(
        to_email,
        subject,
        _wrap_html("New Appointment", "New Appointment", intro, rows, "View it in your calendar."),
        _text_body(intro, rows, "View it in your calendar."),
    )
