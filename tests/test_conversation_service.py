"""Tests for the booking conversation state machine."""

import asyncio
import uuid
from datetime import datetime, time, timedelta, timezone

import pytest
from sqlalchemy import select

from app.core.config import settings
from app.core.exceptions import InvalidArgument, NotFound
from app.models import Appointment, ConversationSession
from app.models.enums import EntryMethod, EventType, SessionStatus, SessionStep
from app.schemas.conversation import SessionPrefill, StepInput
from app.services.booking_service import BookingConflictResolver
from app.services.conversation_service import (
    ConversationStateMachine,
    InvalidTransitionError,
    StepTrigger,
    next_step,
)
from tests.conftest import MONDAY, NOW, TUESDAY, make_practitioner


@pytest.fixture
def machine_for(publisher):
    def build(db):
        return ConversationStateMachine(db, publisher)
    return build


async def walk_to_details(machine, pid, identity="+15550100", selection=0, prefill=None, entry=EntryMethod.CHAT):
    started = await machine.start_session(identity, entry, pid, prefill=prefill, now=NOW)
    sid = started.session_id
    await machine.advance(sid, StepInput(), now=NOW)
    await machine.advance(sid, StepInput(date=MONDAY), now=NOW)
    await machine.advance(sid, StepInput(selection=selection), now=NOW)
    result = await machine.advance(sid, StepInput(accept=True), now=NOW)
    assert result.current_step == SessionStep.DETAILS_COLLECTION.value
    return sid


class TestTransitionTable:
    def test_welcome_goes_to_date_selection(self):
        assert next_step(SessionStep.WELCOME, StepTrigger.GREETED) == SessionStep.DATE_SELECTION

    def test_decline_returns_to_time_selection(self):
        assert next_step(SessionStep.CONFIRMATION, StepTrigger.DECLINED) == SessionStep.TIME_SELECTION

    def test_conflict_returns_to_time_selection(self):
        assert next_step(SessionStep.DETAILS_COLLECTION, StepTrigger.BOOKING_CONFLICT) == SessionStep.TIME_SELECTION

    def test_no_slots_from_time_selection_goes_back_to_date(self):
        assert next_step(SessionStep.TIME_SELECTION, StepTrigger.NO_SLOTS) == SessionStep.DATE_SELECTION

    def test_completed_has_no_transitions(self):
        with pytest.raises(InvalidTransitionError):
            next_step(SessionStep.COMPLETED, StepTrigger.BOOKED)

    def test_cannot_skip_confirmation(self):
        with pytest.raises(InvalidTransitionError):
            next_step(SessionStep.TIME_SELECTION, StepTrigger.ACCEPTED)


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_chat_booking_end_to_end(self, db, machine_for, recorded_events):
        pid = await make_practitioner(db)
        machine = machine_for(db)

        started = await machine.start_session("+15550100", EntryMethod.CHAT, pid, now=NOW)
        assert started.current_step == "welcome"
        assert started.status == SessionStatus.ACTIVE
        sid = started.session_id

        result = await machine.advance(sid, StepInput(), now=NOW)
        assert result.current_step == "date_selection"

        result = await machine.advance(sid, StepInput(date=MONDAY), now=NOW)
        assert result.current_step == "time_selection"
        assert result.prompt_data["offer_version"] == 1
        assert [s["start_time"] for s in result.prompt_data["slots"]] == ["09:00", "09:50"]

        result = await machine.advance(sid, StepInput(selection=1), now=NOW)
        assert result.current_step == "confirmation"
        assert result.prompt_data["slot"]["start_time"] == "09:50"

        result = await machine.advance(sid, StepInput(accept=True), now=NOW)
        assert result.current_step == "details_collection"

        result = await machine.advance(sid, StepInput(name="Ana", notes="first visit"), now=NOW)
        assert result.current_step == "completed"
        assert result.status == SessionStatus.COMPLETED
        assert result.terminal

        appointment = (await db.execute(select(Appointment).where(Appointment.session_id == sid))).scalar_one()
        assert appointment.start_time == time(9, 50)
        assert appointment.client_name == "Ana"
        assert appointment.entry_method == EntryMethod.CHAT
        assert result.prompt_data["appointment_id"] == str(appointment.id)

        types = [e.event_type for e in recorded_events]
        assert types[0] == EventType.SESSION_STARTED
        assert types.count(EventType.STEP_ADVANCED) == 5
        assert EventType.BOOKING_COMMITTED in types

    @pytest.mark.asyncio
    async def test_form_prefill_skips_name_entry(self, db, machine_for):
        pid = await make_practitioner(db)
        machine = machine_for(db)

        sid = await walk_to_details(machine, pid, prefill=SessionPrefill(name="Bo"), entry=EntryMethod.FORM)
        result = await machine.advance(sid, StepInput(), now=NOW)

        assert result.current_step == "completed"
        appointment = (await db.execute(select(Appointment).where(Appointment.session_id == sid))).scalar_one()
        assert appointment.entry_method == EntryMethod.FORM
        assert appointment.client_name == "Bo"

    @pytest.mark.asyncio
    async def test_resume_returns_existing_session(self, db, machine_for):
        pid = await make_practitioner(db)
        machine = machine_for(db)

        first = await machine.start_session("+15550100", EntryMethod.CHAT, pid, now=NOW)
        await machine.advance(first.session_id, StepInput(), now=NOW)
        again = await machine.start_session("+15550100", EntryMethod.CHAT, pid, resume=True, now=NOW)

        assert again.session_id == first.session_id
        assert again.current_step == "date_selection"


class TestInvalidInput:
    @pytest.mark.asyncio
    async def test_past_date_does_not_advance(self, db, machine_for):
        pid = await make_practitioner(db)
        machine = machine_for(db)
        started = await machine.start_session("+15550100", EntryMethod.CHAT, pid, now=NOW)
        await machine.advance(started.session_id, StepInput(), now=NOW)

        with pytest.raises(InvalidArgument) as exc_info:
            await machine.advance(started.session_id, StepInput(date=NOW.date() - timedelta(days=1)), now=NOW)
        assert exc_info.value.field == "date"

        current = await machine.get_session(started.session_id, now=NOW)
        assert current.current_step == "date_selection"

    @pytest.mark.asyncio
    async def test_missing_date(self, db, machine_for):
        pid = await make_practitioner(db)
        machine = machine_for(db)
        started = await machine.start_session("+15550100", EntryMethod.CHAT, pid, now=NOW)
        await machine.advance(started.session_id, StepInput(), now=NOW)

        with pytest.raises(InvalidArgument):
            await machine.advance(started.session_id, StepInput(), now=NOW)

    @pytest.mark.asyncio
    async def test_selection_out_of_range(self, db, machine_for):
        pid = await make_practitioner(db)
        machine = machine_for(db)
        started = await machine.start_session("+15550100", EntryMethod.CHAT, pid, now=NOW)
        await machine.advance(started.session_id, StepInput(), now=NOW)
        await machine.advance(started.session_id, StepInput(date=MONDAY), now=NOW)

        with pytest.raises(InvalidArgument) as exc_info:
            await machine.advance(started.session_id, StepInput(selection=5), now=NOW)
        assert exc_info.value.field == "selection"

    @pytest.mark.asyncio
    async def test_stale_offer_is_rejected(self, db, machine_for):
        pid = await make_practitioner(db)
        machine = machine_for(db)
        started = await machine.start_session("+15550100", EntryMethod.CHAT, pid, now=NOW)
        await machine.advance(started.session_id, StepInput(), now=NOW)
        await machine.advance(started.session_id, StepInput(date=MONDAY), now=NOW)

        with pytest.raises(InvalidArgument):
            await machine.advance(started.session_id, StepInput(selection=0, offer_version=7), now=NOW)

    @pytest.mark.asyncio
    async def test_details_require_a_name(self, db, machine_for):
        pid = await make_practitioner(db)
        machine = machine_for(db)
        sid = await walk_to_details(machine, pid)

        with pytest.raises(InvalidArgument) as exc_info:
            await machine.advance(sid, StepInput(name="   "), now=NOW)
        assert exc_info.value.field == "name"

    @pytest.mark.asyncio
    async def test_oversized_context_is_rejected(self, db, machine_for, monkeypatch):
        pid = await make_practitioner(db)
        machine = machine_for(db)
        sid = await walk_to_details(machine, pid)
        monkeypatch.setattr(settings, "SESSION_CONTEXT_MAX_BYTES", 600)

        with pytest.raises(InvalidArgument):
            await machine.advance(sid, StepInput(name="Ana", notes="x" * 1000), now=NOW)

        booked = (await db.execute(select(Appointment).where(Appointment.session_id == sid))).scalar_one_or_none()
        assert booked is None

    @pytest.mark.asyncio
    async def test_unknown_session(self, db, machine_for):
        with pytest.raises(NotFound):
            await machine_for(db).advance(uuid.uuid4(), StepInput(), now=NOW)

    @pytest.mark.asyncio
    async def test_malformed_session_id(self, db, machine_for):
        with pytest.raises(NotFound):
            await machine_for(db).advance("abc", StepInput(), now=NOW)


class TestBranches:
    @pytest.mark.asyncio
    async def test_date_without_slots_stays_on_date_selection(self, db, machine_for):
        pid = await make_practitioner(db)
        machine = machine_for(db)
        started = await machine.start_session("+15550100", EntryMethod.CHAT, pid, now=NOW)
        await machine.advance(started.session_id, StepInput(), now=NOW)

        result = await machine.advance(started.session_id, StepInput(date=TUESDAY), now=NOW)
        assert result.current_step == "date_selection"
        assert result.prompt_data["reason"] == "no_slots"

    @pytest.mark.asyncio
    async def test_decline_reoffers_slots(self, db, machine_for):
        pid = await make_practitioner(db)
        machine = machine_for(db)
        started = await machine.start_session("+15550100", EntryMethod.CHAT, pid, now=NOW)
        sid = started.session_id
        await machine.advance(sid, StepInput(), now=NOW)
        await machine.advance(sid, StepInput(date=MONDAY), now=NOW)
        await machine.advance(sid, StepInput(selection=0), now=NOW)

        result = await machine.advance(sid, StepInput(accept=False), now=NOW)
        assert result.current_step == "time_selection"
        assert result.prompt_data["reason"] == "declined"
        assert result.prompt_data["offer_version"] == 2
        assert len(result.prompt_data["slots"]) == 2

    @pytest.mark.asyncio
    async def test_conflict_reoffers_remaining_slots(self, db, machine_for, recorded_events):
        pid = await make_practitioner(db)
        machine = machine_for(db)
        first = await walk_to_details(machine, pid, identity="client-a", selection=0)
        second = await walk_to_details(machine, pid, identity="client-b", selection=0)

        assert (await machine.advance(first, StepInput(name="A"), now=NOW)).current_step == "completed"
        result = await machine.advance(second, StepInput(name="B"), now=NOW)

        assert result.current_step == "time_selection"
        assert result.status == SessionStatus.ACTIVE
        assert result.prompt_data["reason"] == "booking_conflict"
        assert [s["start_time"] for s in result.prompt_data["slots"]] == ["09:50"]
        assert EventType.BOOKING_CONFLICT in [e.event_type for e in recorded_events]

    @pytest.mark.asyncio
    async def test_conflict_on_last_slot_goes_back_to_date(self, db, machine_for):
        pid = await make_practitioner(db, windows=[(0, time(9, 0), time(9, 50))])
        machine = machine_for(db)
        first = await walk_to_details(machine, pid, identity="client-a")
        second = await walk_to_details(machine, pid, identity="client-b")

        await machine.advance(first, StepInput(name="A"), now=NOW)
        result = await machine.advance(second, StepInput(name="B"), now=NOW)

        assert result.current_step == "date_selection"
        assert result.prompt_data["reason"] == "booking_conflict"

    @pytest.mark.asyncio
    async def test_slot_in_the_past_keeps_details_step(self, db, machine_for):
        pid = await make_practitioner(db)
        machine = machine_for(db)
        sid = await walk_to_details(machine, pid, selection=0)
        later = datetime(2030, 1, 7, 9, 10, tzinfo=timezone.utc)

        result = await machine.advance(sid, StepInput(name="Ana"), now=later)

        assert result.current_step == "details_collection"
        assert result.prompt_data["error"]["field"] == "start_time"


class TestTerminalStates:
    @pytest.mark.asyncio
    async def test_cancel_abandons(self, db, machine_for, recorded_events):
        pid = await make_practitioner(db)
        machine = machine_for(db)
        started = await machine.start_session("+15550100", EntryMethod.CHAT, pid, now=NOW)

        result = await machine.cancel(started.session_id, now=NOW)
        assert result.current_step == "abandoned"
        assert result.terminal
        assert recorded_events[-1].event_type == EventType.SESSION_ABANDONED

    @pytest.mark.asyncio
    async def test_terminal_sessions_ignore_input(self, db, machine_for):
        pid = await make_practitioner(db)
        machine = machine_for(db)
        started = await machine.start_session("+15550100", EntryMethod.CHAT, pid, now=NOW)
        await machine.cancel(started.session_id, now=NOW)

        replay = await machine.advance(started.session_id, StepInput(date=MONDAY), now=NOW)
        assert replay.current_step == "abandoned"
        assert replay.terminal

        again = await machine.cancel(started.session_id, now=NOW)
        assert again.current_step == "abandoned"

    @pytest.mark.asyncio
    async def test_completed_session_replays_booking(self, db, machine_for):
        pid = await make_practitioner(db)
        machine = machine_for(db)
        sid = await walk_to_details(machine, pid)
        booked = await machine.advance(sid, StepInput(name="Ana"), now=NOW)

        replay = await machine.advance(sid, StepInput(name="Ana"), now=NOW)
        assert replay.current_step == "completed"
        assert replay.prompt_data["appointment_id"] == booked.prompt_data["appointment_id"]

        count = len((await db.execute(select(Appointment).where(Appointment.session_id == sid))).scalars().all())
        assert count == 1

    @pytest.mark.asyncio
    async def test_committed_booking_wins_over_cancel(self, db, machine_for):
        pid = await make_practitioner(db)
        machine = machine_for(db)
        started = await machine.start_session("+15550100", EntryMethod.CHAT, pid, now=NOW)
        # The booking lands while the session is still active
        await BookingConflictResolver(db).try_book(
            client_id="+15550100",
            practitioner_id=pid,
            target_date=MONDAY,
            start_time=time(9, 0),
            end_time=time(9, 50),
            entry_method=EntryMethod.CHAT,
            session_id=started.session_id,
            now=NOW,
        )

        result = await machine.cancel(started.session_id, now=NOW)
        assert result.status == SessionStatus.COMPLETED
        assert result.current_step == "completed"


class TestExpiry:
    @pytest.mark.asyncio
    async def test_idle_session_expires_on_load(self, db, machine_for, recorded_events):
        pid = await make_practitioner(db)
        machine = machine_for(db)
        started = await machine.start_session("+15550100", EntryMethod.CHAT, pid, now=NOW)
        later = NOW + timedelta(minutes=settings.SESSION_INACTIVITY_TIMEOUT_MINUTES + 1)

        result = await machine.advance(started.session_id, StepInput(), now=later)

        assert result.current_step == "expired"
        assert result.terminal
        assert recorded_events[-1].event_type == EventType.SESSION_EXPIRED
        assert EventType.STEP_ADVANCED not in [e.event_type for e in recorded_events]

    @pytest.mark.asyncio
    async def test_activity_within_timeout_keeps_session(self, db, machine_for):
        pid = await make_practitioner(db)
        machine = machine_for(db)
        started = await machine.start_session("+15550100", EntryMethod.CHAT, pid, now=NOW)
        later = NOW + timedelta(minutes=settings.SESSION_INACTIVITY_TIMEOUT_MINUTES - 1)

        result = await machine.advance(started.session_id, StepInput(), now=later)
        assert result.current_step == "date_selection"

    @pytest.mark.asyncio
    async def test_sweep_expires_only_idle_sessions(self, db, machine_for):
        pid = await make_practitioner(db)
        machine = machine_for(db)
        idle = await machine.start_session("client-a", EntryMethod.CHAT, pid, now=NOW)
        fresh_start = NOW + timedelta(hours=20)
        fresh = await machine.start_session("client-b", EntryMethod.FORM, pid, now=fresh_start)

        sweep_at = NOW + timedelta(minutes=settings.SESSION_INACTIVITY_TIMEOUT_MINUTES + 5)
        assert await machine.expire_idle_sessions(now=sweep_at) == 1

        statuses = dict((await db.execute(
            select(ConversationSession.id, ConversationSession.status)
        )).all())
        assert statuses[idle.session_id] == SessionStatus.EXPIRED
        assert statuses[fresh.session_id] == SessionStatus.ACTIVE


class TestDenseSchedule:
    @pytest.mark.asyncio
    async def test_many_short_slots_fit_in_session_state(self, db, machine_for):
        pid = await make_practitioner(db, windows=[(0, time(8, 0), time(20, 0))], default_slot_minutes=2)
        machine = machine_for(db)
        started = await machine.start_session("+15550100", EntryMethod.CHAT, pid, now=NOW)
        sid = started.session_id
        await machine.advance(sid, StepInput(), now=NOW)

        offer = await machine.advance(sid, StepInput(date=MONDAY), now=NOW)
        assert offer.current_step == "time_selection"
        assert len(offer.prompt_data["slots"]) == 360

        chosen = await machine.advance(sid, StepInput(selection=359), now=NOW)
        assert chosen.prompt_data["slot"] == {"date": "2030-01-07", "start_time": "19:58", "end_time": "20:00"}

        resumed = await machine.get_session(sid, now=NOW)
        assert resumed.current_step == "confirmation"


class TestCancelRacingBooking:
    """A session ends completed with one appointment, or closed with none."""

    async def race(self, session_factory, publisher, sid, booking_first: bool):
        at_booking = asyncio.Event()
        booked = asyncio.Event()
        cancelled = asyncio.Event()

        async def run_advance():
            async with session_factory() as session:
                machine = ConversationStateMachine(session, publisher)
                original = machine.resolver.try_book

                async def gated_try_book(**kwargs):
                    at_booking.set()
                    if not booking_first:
                        await cancelled.wait()
                    appointment = await original(**kwargs)
                    booked.set()
                    if booking_first:
                        await cancelled.wait()
                    return appointment

                machine.resolver.try_book = gated_try_book
                return await machine.advance(sid, StepInput(name="Ana"), now=NOW)

        async def run_cancel():
            await (booked if booking_first else at_booking).wait()
            async with session_factory() as session:
                result = await ConversationStateMachine(session, publisher).cancel(sid, now=NOW)
            cancelled.set()
            return result

        return await asyncio.gather(run_advance(), run_cancel())

    async def final_state(self, session_factory, publisher, sid):
        async with session_factory() as session:
            current = await ConversationStateMachine(session, publisher).get_session(sid, now=NOW)
            appointments = (await session.execute(
                select(Appointment).where(Appointment.session_id == sid)
            )).scalars().all()
        return current, appointments

    @pytest.mark.asyncio
    async def test_cancel_after_commit_keeps_session_completed(self, db, machine_for, session_factory, publisher):
        pid = await make_practitioner(db)
        sid = await walk_to_details(machine_for(db), pid)

        advanced, cancelled = await self.race(session_factory, publisher, sid, booking_first=True)

        assert advanced.current_step == "completed"
        assert cancelled.status == SessionStatus.COMPLETED
        current, appointments = await self.final_state(session_factory, publisher, sid)
        assert current.status == SessionStatus.COMPLETED
        assert len(appointments) == 1

    @pytest.mark.asyncio
    async def test_commit_after_cancel_completes_session(self, db, machine_for, session_factory, publisher):
        pid = await make_practitioner(db)
        sid = await walk_to_details(machine_for(db), pid)

        advanced, cancelled = await self.race(session_factory, publisher, sid, booking_first=False)

        assert cancelled.status == SessionStatus.ABANDONED
        assert advanced.current_step == "completed"
        current, appointments = await self.final_state(session_factory, publisher, sid)
        assert current.status == SessionStatus.COMPLETED
        assert len(appointments) == 1

    @pytest.mark.asyncio
    async def test_unordered_race_never_leaves_both_or_neither(self, db, machine_for, session_factory, publisher):
        pid = await make_practitioner(db)
        sid = await walk_to_details(machine_for(db), pid)

        async def run_advance():
            async with session_factory() as session:
                return await ConversationStateMachine(session, publisher).advance(sid, StepInput(name="Ana"), now=NOW)

        async def run_cancel():
            async with session_factory() as session:
                return await ConversationStateMachine(session, publisher).cancel(sid, now=NOW)

        await asyncio.gather(run_advance(), run_cancel())

        current, appointments = await self.final_state(session_factory, publisher, sid)
        if current.status == SessionStatus.COMPLETED:
            assert len(appointments) == 1
        else:
            assert current.status == SessionStatus.ABANDONED
            assert appointments == []
