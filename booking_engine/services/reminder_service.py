"""Reminder dispatch sweep.

Triggered on a fixed period by an external scheduler (or the in-process loop). Each
trigger is at-least-once: sweeps may overlap in time and run concurrently. For every
configured offset a sweep selects active appointments starting within
``now + offset +/- period/2`` so that consecutive windows tile the timeline.

Duplicates are prevented only by the reminder marker: a marker row per
(appointment, type) written with a conditional insert after a successful send.
Window arithmetic is never trusted to be disjoint across runs. A failed send leaves
no marker, so the next sweep whose window still covers the appointment retries it;
once the window has passed the reminder is missed.
"""
import asyncio
import logging
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from booking_engine.core.config import settings
from booking_engine.models.appointment import ACTIVE_STATUSES, Appointment
from booking_engine.models.reminder import ReminderOutcome, ReminderOutcomeStatus, ReminderSweepResult
from booking_engine.services.appointment_service import append_reminder_if_absent, find_pending
from booking_engine.services.email_service import NotificationGateway, ReminderTemplateFields
from booking_engine.services.slot_service import as_utc

logger = logging.getLogger(__name__)


def reminder_window(now: datetime, offset_minutes: int, period_minutes: float) -> tuple[datetime, datetime]:
    target = now + timedelta(minutes=offset_minutes)
    half_span = timedelta(minutes=period_minutes) / 2
    return target - half_span, target + half_span


def _template_fields(appointment: Appointment, reminder_type: str) -> ReminderTemplateFields:
    page = appointment.booking_page
    contact = appointment.contact
    return ReminderTemplateFields(
        contact_name=contact.full_name if contact else "",
        appointment_title=appointment.title,
        host_name=(page.host_name or page.name) if page else "Host",
        start_time=as_utc(appointment.start_time),
        end_time=as_utc(appointment.end_time),
        location=appointment.location_display,
        reminder_type=reminder_type,
        confirmation_code=appointment.confirmation_code or "N/A",
        timezone=page.get_availability().timezone if page else "UTC",
    )


class ReminderScheduler:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        gateway: NotificationGateway,
        offsets: Mapping[str, int] | None = None,
        period_minutes: float | None = None,
        max_concurrency: int | None = None,
        budget_seconds: float | None = None,
    ) -> None:
        self._session_maker = session_maker
        self._gateway = gateway
        self.offsets = dict(offsets if offsets is not None else settings.reminder_offsets)
        self.period_minutes = period_minutes if period_minutes is not None else settings.reminder_sweep_period_minutes
        self.max_concurrency = max(1, max_concurrency or settings.reminder_max_concurrency)
        self.budget_seconds = budget_seconds if budget_seconds is not None else settings.reminder_sweep_budget_seconds

    async def run_sweep(self, now: datetime | None = None) -> ReminderSweepResult:
        """One sweep over all reminder types. Safe to run concurrently with itself."""
        now = now or datetime.now(UTC)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.budget_seconds
        semaphore = asyncio.Semaphore(self.max_concurrency)
        result = ReminderSweepResult()

        jobs = []
        for reminder_type, offset_minutes in self.offsets.items():
            window_start, window_end = reminder_window(now, offset_minutes, self.period_minutes)
            try:
                async with self._session_maker() as session:
                    appointments = await find_pending(session, ACTIVE_STATUSES, window_start, window_end)
            except Exception:
                logger.exception("Fetching appointments for %s reminders failed", reminder_type)
                continue
            for appointment in appointments:
                result.processed += 1
                jobs.append(self._guarded(appointment, reminder_type, now, semaphore, deadline))

        for outcome in await asyncio.gather(*jobs):
            result.record(outcome)
        logger.info(
            "Reminder sweep at %s: processed=%d sent=%d errors=%d",
            now.isoformat(),
            result.processed,
            result.sent,
            result.errors,
        )
        return result

    async def _guarded(
        self,
        appointment: Appointment,
        reminder_type: str,
        now: datetime,
        semaphore: asyncio.Semaphore,
        deadline: float,
    ) -> ReminderOutcome:
        async with semaphore:
            if asyncio.get_running_loop().time() >= deadline:
                # Left for the next sweep; its window may still cover this appointment
                return ReminderOutcome(
                    appointment_id=appointment.id,
                    reminder_type=reminder_type,
                    status=ReminderOutcomeStatus.deferred,
                    error="Sweep budget exhausted",
                )
            try:
                return await self._process(appointment, reminder_type, now)
            except Exception as e:
                logger.exception("Reminder %s for appointment %s failed", reminder_type, appointment.id)
                return ReminderOutcome(
                    appointment_id=appointment.id,
                    reminder_type=reminder_type,
                    status=ReminderOutcomeStatus.error,
                    error=f"{type(e).__name__}: {e}",
                )

    async def _process(self, appointment: Appointment, reminder_type: str, now: datetime) -> ReminderOutcome:
        def outcome(status: ReminderOutcomeStatus, error: str | None = None) -> ReminderOutcome:
            return ReminderOutcome(
                appointment_id=appointment.id, reminder_type=reminder_type, status=status, error=error
            )

        if appointment.has_reminder(reminder_type):
            return outcome(ReminderOutcomeStatus.skipped, "Already sent")

        contact = appointment.contact
        if contact is None or not contact.email:
            # Permanent: nothing to retry until the contact gets an address
            return outcome(ReminderOutcomeStatus.skipped, "No contact email")

        delivery = await self._gateway.send(contact.email, _template_fields(appointment, reminder_type))
        if not delivery.ok:
            return outcome(ReminderOutcomeStatus.error, delivery.error or "Delivery failed")

        async with self._session_maker() as session:
            appended = await append_reminder_if_absent(session, appointment.id, reminder_type, now)
            await session.commit()
        if not appended:
            logger.warning(
                "Reminder %s for appointment %s was recorded by a concurrent sweep",
                reminder_type,
                appointment.id,
            )
            return outcome(ReminderOutcomeStatus.skipped, "Already sent")
        logger.info("Reminder %s sent for appointment %s", reminder_type, appointment.id)
        return outcome(ReminderOutcomeStatus.sent)


async def reminder_loop(scheduler: ReminderScheduler) -> None:
    """In-process trigger: run a sweep every period until cancelled."""
    logger.info("reminder_loop started (every %s min)", scheduler.period_minutes)
    while True:
        try:
            await scheduler.run_sweep()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("reminder_loop sweep error")
        await asyncio.sleep(scheduler.period_minutes * 60)
