"""Visitor booking flow as an explicit state machine.

    calendar --select_date--> time --select_slot--> form --submit--> confirmation
                 <--back--          <--back--            \\--conflict--> time

Each stage carries its own immutable state object, so a form cannot exist without
an available slot and a confirmation cannot exist without a booking result.
``confirmation`` is terminal; book again with a new session.
"""
import asyncio
import logging
from datetime import date
from enum import Enum

from pydantic import BaseModel, ConfigDict

from booking_engine.api.schemas.appointment import ContactInfo
from booking_engine.booking.client import BookingClient, BookingConfirmation
from booking_engine.core.errors import BookingError, SlotConflictError
from booking_engine.models.availability import Slot

logger = logging.getLogger(__name__)


class BookingStage(str, Enum):
    calendar = "calendar"
    time = "time"
    form = "form"
    confirmation = "confirmation"


class BookingAction(str, Enum):
    select_date = "select_date"
    select_slot = "select_slot"
    back = "back"
    submit_succeeded = "submit_succeeded"
    submit_conflicted = "submit_conflicted"


_TRANSITIONS: dict[tuple[BookingStage, BookingAction], BookingStage] = {
    (BookingStage.calendar, BookingAction.select_date): BookingStage.time,
    (BookingStage.time, BookingAction.back): BookingStage.calendar,
    (BookingStage.time, BookingAction.select_slot): BookingStage.form,
    (BookingStage.form, BookingAction.back): BookingStage.time,
    (BookingStage.form, BookingAction.submit_succeeded): BookingStage.confirmation,
    (BookingStage.form, BookingAction.submit_conflicted): BookingStage.time,
}


class InvalidTransitionError(Exception):
    pass


class DuplicateSubmissionError(InvalidTransitionError):
    pass


class _StageState(BaseModel):
    model_config = ConfigDict(frozen=True)

    error: str | None = None


class CalendarState(_StageState):
    stage: BookingStage = BookingStage.calendar


class TimeState(_StageState):
    stage: BookingStage = BookingStage.time
    date: date
    slots: tuple[Slot, ...] | None = None  # None while loading

    @property
    def loading(self) -> bool:
        return self.slots is None


class FormState(_StageState):
    stage: BookingStage = BookingStage.form
    date: date
    slot: Slot
    slots: tuple[Slot, ...]
    submitting: bool = False


class ConfirmationState(_StageState):
    stage: BookingStage = BookingStage.confirmation
    confirmation: BookingConfirmation


BookingState = CalendarState | TimeState | FormState | ConfirmationState


class BookingSession:
    """One visitor's pass through the booking flow. Not shared across visitors."""

    def __init__(self, client: BookingClient) -> None:
        self._client = client
        self._state: BookingState = CalendarState()
        self._fetch_task: asyncio.Task | None = None
        self._fetch_generation = 0
        self._submitting = False

    @property
    def state(self) -> BookingState:
        return self._state

    @property
    def stage(self) -> BookingStage:
        return self._state.stage

    def _transition(self, action: BookingAction, new_state: BookingState) -> None:
        target = _TRANSITIONS.get((self.stage, action))
        if target is None:
            raise InvalidTransitionError(f"Cannot {action.value} from {self.stage.value}")
        if target != new_state.stage:
            raise InvalidTransitionError(f"{action.value} must lead to {target.value}")
        logger.debug("Booking session %s -> %s (%s)", self.stage.value, target.value, action.value)
        self._state = new_state

    def _require(self, action: BookingAction) -> None:
        if (self.stage, action) not in _TRANSITIONS:
            raise InvalidTransitionError(f"Cannot {action.value} from {self.stage.value}")

    # -- date / slots -----------------------------------------------------

    def select_date(self, day: date) -> None:
        """Move to ``time`` immediately; slots load in the background (see wait_for_slots)."""
        self._transition(BookingAction.select_date, TimeState(date=day))
        self._start_fetch(day)

    def _start_fetch(self, day: date) -> None:
        self._cancel_fetch()
        self._fetch_generation += 1
        self._fetch_task = asyncio.create_task(self._load_slots(day, self._fetch_generation))

    def _cancel_fetch(self) -> None:
        if self._fetch_task is not None and not self._fetch_task.done():
            self._fetch_task.cancel()
        self._fetch_task = None

    async def _load_slots(self, day: date, generation: int) -> None:
        try:
            slots = await self._client.fetch_slots(day)
        except BookingError as e:
            if self._is_current_fetch(day, generation):
                self._state = TimeState(date=day, slots=(), error=e.detail)
            return
        except Exception:
            logger.exception("Loading slots for %s failed", day)
            if self._is_current_fetch(day, generation):
                self._state = TimeState(date=day, slots=(), error="Could not load available times")
            return
        if self._is_current_fetch(day, generation):
            error = self._state.error if isinstance(self._state, TimeState) else None
            self._state = TimeState(date=day, slots=tuple(slots), error=error)

    def _is_current_fetch(self, day: date, generation: int) -> bool:
        state = self._state
        return generation == self._fetch_generation and isinstance(state, TimeState) and state.date == day

    async def wait_for_slots(self) -> tuple[Slot, ...]:
        """Wait for the in-flight slot fetch of the ``time`` stage, if any."""
        task = self._fetch_task
        if task is not None and not task.done():
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
        state = self._state
        if isinstance(state, TimeState):
            return state.slots or ()
        if isinstance(state, FormState):
            return state.slots
        return ()

    def select_slot(self, slot: Slot) -> None:
        self._require(BookingAction.select_slot)
        state = self._state
        if not isinstance(state, TimeState):
            raise InvalidTransitionError(f"Cannot select_slot from {self.stage.value}")
        if state.loading:
            raise InvalidTransitionError("Available times are still loading")
        if not slot.available or slot not in state.slots:
            raise InvalidTransitionError("Selected time is not available")
        self._transition(
            BookingAction.select_slot, FormState(date=state.date, slot=slot, slots=state.slots)
        )

    def back(self) -> None:
        state = self._state
        if isinstance(state, TimeState):
            self._cancel_fetch()
            self._transition(BookingAction.back, CalendarState())
        elif isinstance(state, FormState):
            if self._submitting:
                raise InvalidTransitionError("A booking request is in flight")
            # Selected slot is dropped; the previously loaded times stay
            self._transition(BookingAction.back, TimeState(date=state.date, slots=state.slots))
        else:
            self._require(BookingAction.back)

    # -- submit -----------------------------------------------------------

    async def submit(self, contact: ContactInfo, notes: str | None = None) -> BookingState:
        """Issue exactly one booking call for the selected slot.

        On a conflict the session returns to ``time`` and re-fetches that date's slots;
        any other failure stays in ``form`` with the error set.
        """
        self._require(BookingAction.submit_succeeded)
        if self._submitting:
            raise DuplicateSubmissionError("Booking is already being submitted")
        state = self._state
        if not isinstance(state, FormState):
            raise InvalidTransitionError(f"Cannot submit from {self.stage.value}")
        self._submitting = True
        self._state = state.model_copy(update={"submitting": True, "error": None})
        try:
            confirmation = await self._client.submit(state.slot, contact, notes)
        except SlotConflictError as e:
            logger.info("Slot %s was taken, refreshing %s", state.slot.start, state.date)
            self._transition(BookingAction.submit_conflicted, TimeState(date=state.date, error=e.detail))
            self._start_fetch(state.date)
        except BookingError as e:
            self._state = state.model_copy(update={"submitting": False, "error": e.detail})
        except Exception:
            logger.exception("Booking %s failed unexpectedly", state.slot.start)
            self._state = state.model_copy(
                update={"submitting": False, "error": "Booking failed, please try again"}
            )
        else:
            self._transition(BookingAction.submit_succeeded, ConfirmationState(confirmation=confirmation))
        finally:
            self._submitting = False
            # Cancelled mid-request: the form must not stay locked
            if isinstance(self._state, FormState) and self._state.submitting:
                self._state = self._state.model_copy(update={"submitting": False})
        return self._state
