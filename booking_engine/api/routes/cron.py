import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Depends

from booking_engine.api.deps import get_reminder_scheduler, require_cron_secret
from booking_engine.api.schemas.reminders import ReminderSweepResponse
from booking_engine.services.reminder_service import ReminderScheduler

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/cron", tags=["cron"], dependencies=[Depends(require_cron_secret)])


@router.api_route("/appointment-reminders", methods=["GET", "POST"], response_model=ReminderSweepResponse)
async def appointment_reminders(
    scheduler: ReminderScheduler = Depends(get_reminder_scheduler),
) -> ReminderSweepResponse:
    """Run one reminder sweep. Intended to be hit every few minutes by an external scheduler."""
    now = datetime.now(UTC)
    results = await scheduler.run_sweep(now)
    return ReminderSweepResponse(timestamp=now, results=results)
