"""Tests for the visitor booking state machine."""

import asyncio
from datetime import UTC, date, datetime, timedelta

import pytest

from booking_engine.api.schemas.appointment import ContactInfo
from booking_engine.booking.client import BookingConfirmation
from booking_engine.booking.session import (
    BookingSession,
    BookingStage,
    CalendarState,
    ConfirmationState,
    DuplicateSubmissionError,
    FormState,
    InvalidTransitionError,
    TimeState,
)
from booking_engine.core.errors import BookingError, SlotConflictError
from booking_engine.models.availability import Slot

DAY = date(2026, 3, 2)
OTHER_DAY = date(2026, 3, 3)
CONTACT = ContactInfo(first_name="Ada", last_name="Lovelace", email="ada@example.com")


def slot(day: date, hour: int, available: bool = True) -> Slot:
    start = datetime(day.year, day.month, day.day, hour, tzinfo=UTC)
    return Slot(start=start, end=start + timedelta(minutes=30), available=available)


class FakeClient:
    """Scriptable booking client; ``gates`` hold fetches open until released."""

    def __init__(self) -> None:
        self.slots: dict[date, list[Slot]] = {
            DAY: [slot(DAY, 9), slot(DAY, 10), slot(DAY, 11, available=False)],
            OTHER_DAY: [slot(OTHER_DAY, 14)],
        }
        self.gates: dict[date, asyncio.Event] = {}
        self.fetches: list[date] = []
        self.submits: list[Slot] = []
        self.submit_error: Exception | None = None
        self.submit_gate: asyncio.Event | None = None

    async def fetch_slots(self, day: date) -> list[Slot]:
        self.fetches.append(day)
        if day in self.gates:
            await self.gates[day].wait()
        return list(self.slots.get(day, []))

    async def submit(self, s: Slot, contact: ContactInfo, notes: str | None = None) -> BookingConfirmation:
        self.submits.append(s)
        if self.submit_gate is not None:
            await self.submit_gate.wait()
        if self.submit_error is not None:
            raise self.submit_error
        return BookingConfirmation(
            appointment_id=42, confirmation_code="XYZ789", start_time=s.start, end_time=s.end
        )


@pytest.fixture
def fake_client() -> FakeClient:
    return FakeClient()


async def at_form(client: FakeClient) -> BookingSession:
    session = BookingSession(client)
    session.select_date(DAY)
    await session.wait_for_slots()
    session.select_slot(slot(DAY, 10))
    return session


class TestSelectDate:
    """Tests for the calendar and time stages."""

    @pytest.mark.asyncio
    async def test_starts_in_calendar(self, fake_client):
        assert BookingSession(fake_client).stage == BookingStage.calendar

    @pytest.mark.asyncio
    async def test_select_date_loads_slots(self, fake_client):
        session = BookingSession(fake_client)

        session.select_date(DAY)
        assert isinstance(session.state, TimeState)
        assert session.state.loading

        slots = await session.wait_for_slots()
        assert [s.start.hour for s in slots] == [9, 10, 11]
        assert not session.state.loading

    @pytest.mark.asyncio
    async def test_stale_fetch_is_discarded(self, fake_client):
        """Going back and picking another date drops the first date's late result."""
        fake_client.gates[DAY] = asyncio.Event()
        session = BookingSession(fake_client)

        session.select_date(DAY)
        await asyncio.sleep(0)
        session.back()
        session.select_date(OTHER_DAY)
        fake_client.gates[DAY].set()
        slots = await session.wait_for_slots()

        assert session.state.date == OTHER_DAY
        assert [s.start.hour for s in slots] == [14]

    @pytest.mark.asyncio
    async def test_fetch_failure_stays_in_time_with_error(self, fake_client):
        async def failing_fetch(day):
            raise BookingError("Could not load available times")

        fake_client.fetch_slots = failing_fetch
        session = BookingSession(fake_client)

        session.select_date(DAY)
        await session.wait_for_slots()

        assert session.stage == BookingStage.time
        assert session.state.slots == ()
        assert session.state.error == "Could not load available times"

    @pytest.mark.asyncio
    async def test_unexpected_fetch_failure_stops_loading(self, fake_client):
        async def broken_fetch(day):
            raise KeyError("slots")

        fake_client.fetch_slots = broken_fetch
        session = BookingSession(fake_client)

        session.select_date(DAY)
        await session.wait_for_slots()

        assert session.stage == BookingStage.time
        assert not session.state.loading
        assert session.state.slots == ()
        assert session.state.error == "Could not load available times"

    @pytest.mark.asyncio
    async def test_cannot_select_date_twice(self, fake_client):
        session = BookingSession(fake_client)
        session.select_date(DAY)

        with pytest.raises(InvalidTransitionError):
            session.select_date(OTHER_DAY)


class TestSelectSlot:
    """Tests for moving from time to form."""

    @pytest.mark.asyncio
    async def test_select_available_slot(self, fake_client):
        session = await at_form(fake_client)

        assert isinstance(session.state, FormState)
        assert session.state.slot == slot(DAY, 10)

    @pytest.mark.asyncio
    async def test_unavailable_slot_rejected(self, fake_client):
        session = BookingSession(fake_client)
        session.select_date(DAY)
        await session.wait_for_slots()

        with pytest.raises(InvalidTransitionError):
            session.select_slot(slot(DAY, 11, available=False))
        assert session.stage == BookingStage.time

    @pytest.mark.asyncio
    async def test_unknown_slot_rejected(self, fake_client):
        session = BookingSession(fake_client)
        session.select_date(DAY)
        await session.wait_for_slots()

        with pytest.raises(InvalidTransitionError):
            session.select_slot(slot(DAY, 16))

    @pytest.mark.asyncio
    async def test_cannot_select_while_loading(self, fake_client):
        fake_client.gates[DAY] = asyncio.Event()
        session = BookingSession(fake_client)
        session.select_date(DAY)

        with pytest.raises(InvalidTransitionError):
            session.select_slot(slot(DAY, 9))
        fake_client.gates[DAY].set()
        await session.wait_for_slots()

    @pytest.mark.asyncio
    async def test_cannot_select_slot_from_calendar(self, fake_client):
        with pytest.raises(InvalidTransitionError):
            BookingSession(fake_client).select_slot(slot(DAY, 9))

    @pytest.mark.asyncio
    async def test_back_from_form_keeps_slots(self, fake_client):
        session = await at_form(fake_client)

        session.back()

        assert isinstance(session.state, TimeState)
        assert len(session.state.slots) == 3
        assert fake_client.fetches == [DAY]


class TestSubmit:
    """Tests for submitting the form."""

    @pytest.mark.asyncio
    async def test_success_moves_to_confirmation(self, fake_client):
        session = await at_form(fake_client)

        state = await session.submit(CONTACT, notes="First visit")

        assert isinstance(state, ConfirmationState)
        assert state.confirmation.confirmation_code == "XYZ789"
        assert fake_client.submits == [slot(DAY, 10)]

    @pytest.mark.asyncio
    async def test_conflict_returns_to_time_with_fresh_slots(self, fake_client):
        session = await at_form(fake_client)
        fake_client.submit_error = SlotConflictError()
        fake_client.slots[DAY] = [slot(DAY, 9), slot(DAY, 10, available=False), slot(DAY, 11, available=False)]

        state = await session.submit(CONTACT)

        assert isinstance(state, TimeState)
        assert state.error == "This time slot is no longer available"
        slots = await session.wait_for_slots()
        assert [s.available for s in slots] == [True, False, False]
        assert session.state.error == "This time slot is no longer available"
        assert fake_client.fetches == [DAY, DAY]

    @pytest.mark.asyncio
    async def test_other_failure_stays_in_form(self, fake_client):
        session = await at_form(fake_client)
        fake_client.submit_error = BookingError("Booking failed, please try again")

        state = await session.submit(CONTACT)

        assert isinstance(state, FormState)
        assert state.error == "Booking failed, please try again"
        assert not state.submitting

    @pytest.mark.asyncio
    async def test_unexpected_failure_unlocks_form(self, fake_client):
        session = await at_form(fake_client)
        fake_client.submit_error = RuntimeError("boom")

        state = await session.submit(CONTACT)

        assert isinstance(state, FormState)
        assert not state.submitting
        assert state.error == "Booking failed, please try again"
        # The visitor can retry
        fake_client.submit_error = None
        assert isinstance(await session.submit(CONTACT), ConfirmationState)

    @pytest.mark.asyncio
    async def test_cancelled_submit_unlocks_form(self, fake_client):
        session = await at_form(fake_client)
        fake_client.submit_gate = asyncio.Event()

        task = asyncio.create_task(session.submit(CONTACT))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert isinstance(session.state, FormState)
        assert not session.state.submitting
        session.back()
        assert session.stage == BookingStage.time

    @pytest.mark.asyncio
    async def test_cannot_submit_from_calendar(self, fake_client):
        with pytest.raises(InvalidTransitionError):
            await BookingSession(fake_client).submit(CONTACT)
        assert fake_client.submits == []

    @pytest.mark.asyncio
    async def test_duplicate_submit_rejected(self, fake_client):
        session = await at_form(fake_client)
        fake_client.submit_gate = asyncio.Event()

        first = asyncio.create_task(session.submit(CONTACT))
        await asyncio.sleep(0)
        assert session.state.submitting

        with pytest.raises(DuplicateSubmissionError):
            await session.submit(CONTACT)
        with pytest.raises(InvalidTransitionError):
            session.back()

        fake_client.submit_gate.set()
        await first
        assert len(fake_client.submits) == 1
        assert session.stage == BookingStage.confirmation

    @pytest.mark.asyncio
    async def test_cannot_submit_without_slot(self, fake_client):
        session = BookingSession(fake_client)
        session.select_date(DAY)
        await session.wait_for_slots()

        with pytest.raises(InvalidTransitionError):
            await session.submit(CONTACT)
        assert fake_client.submits == []

    @pytest.mark.asyncio
    async def test_confirmation_is_terminal(self, fake_client):
        session = await at_form(fake_client)
        await session.submit(CONTACT)

        with pytest.raises(InvalidTransitionError):
            session.back()
        with pytest.raises(InvalidTransitionError):
            session.select_date(OTHER_DAY)

    @pytest.mark.asyncio
    async def test_back_from_time_returns_to_calendar(self, fake_client):
        session = BookingSession(fake_client)
        session.select_date(DAY)
        await session.wait_for_slots()

        session.back()

        assert isinstance(session.state, CalendarState)
