from datetime import datetime

from pydantic import BaseModel

from booking_engine.models.reminder import ReminderSweepResult


class ReminderSweepResponse(BaseModel):
    success: bool = True
    timestamp: datetime
    results: ReminderSweepResult
