from enum import Enum

from sqlmodel import Field, SQLModel


class ReminderOutcomeStatus(str, Enum):
    sent = "sent"
    skipped = "skipped"
    error = "error"
    deferred = "deferred"


class ReminderOutcome(SQLModel):
    appointment_id: int
    reminder_type: str
    status: ReminderOutcomeStatus
    error: str | None = None


class ReminderSweepResult(SQLModel):
    processed: int = 0
    sent: int = 0
    errors: int = 0
    details: list[ReminderOutcome] = Field(default_factory=list)

    def record(self, outcome: ReminderOutcome) -> None:
        self.details.append(outcome)
        if outcome.status == ReminderOutcomeStatus.sent:
            self.sent += 1
        elif outcome.status == ReminderOutcomeStatus.error:
            self.errors += 1
