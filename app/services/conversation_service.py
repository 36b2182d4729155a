"""
Conversation state machine driving a client through a booking.

Steps follow an explicit transition table. Each call to ``advance`` is an
independent, short-lived operation: the whole conversation lives in the
persisted SessionState, so any worker can serve any session.

    welcome -> date_selection -> time_selection -> confirmation
            -> details_collection -> completed

Abandonment (explicit cancel) and expiry (inactivity, evaluated lazily on
load) end a session without an appointment. Once an appointment is
committed the session is completed, even if a cancel raced with it.
"""

import enum
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Awaitable, Callable
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update

from app.core.config import settings
from app.core.exceptions import BookingConflict, InvalidArgument, NotFound
from app.core.identifiers import parse_uuid
from app.core.logging import set_session_id
from app.core.timeutils import ensure_utc, local_wall_clock, time_to_str, utcnow
from app.models import ConversationSession, SessionState
from app.models.enums import EntryMethod, EventType, SessionStatus, SessionStep
from app.schemas.conversation import SessionPrefill, StepInput
from app.services.appointment_ledger import AppointmentLedger
from app.services.availability_service import AvailabilityStore
from app.services.booking_service import BookingConflictResolver
from app.services.event_service import EventPublisher, event_publisher
from app.services.slot_service import Slot, SlotCalculator

logger = logging.getLogger(__name__)


class StepTrigger(str, enum.Enum):
    """Outcomes of handling one step's input."""
    GREETED = "greeted"
    NO_SLOTS = "no_slots"
    SLOTS_OFFERED = "slots_offered"
    SLOT_SELECTED = "slot_selected"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    DETAILS_INVALID = "details_invalid"
    BOOKING_CONFLICT = "booking_conflict"
    BOOKED = "booked"


@dataclass(frozen=True)
class Transition:
    from_step: SessionStep
    to_step: SessionStep
    trigger: StepTrigger


class InvalidTransitionError(Exception):
    """A handler produced a trigger the table does not allow from the current step."""


TRANSITIONS: list[Transition] = [
    Transition(SessionStep.WELCOME, SessionStep.DATE_SELECTION, StepTrigger.GREETED),

    Transition(SessionStep.DATE_SELECTION, SessionStep.DATE_SELECTION, StepTrigger.NO_SLOTS),
    Transition(SessionStep.DATE_SELECTION, SessionStep.TIME_SELECTION, StepTrigger.SLOTS_OFFERED),

    Transition(SessionStep.TIME_SELECTION, SessionStep.DATE_SELECTION, StepTrigger.NO_SLOTS),
    Transition(SessionStep.TIME_SELECTION, SessionStep.CONFIRMATION, StepTrigger.SLOT_SELECTED),

    Transition(SessionStep.CONFIRMATION, SessionStep.DETAILS_COLLECTION, StepTrigger.ACCEPTED),
    Transition(SessionStep.CONFIRMATION, SessionStep.TIME_SELECTION, StepTrigger.DECLINED),

    Transition(SessionStep.DETAILS_COLLECTION, SessionStep.DETAILS_COLLECTION, StepTrigger.DETAILS_INVALID),
    Transition(SessionStep.DETAILS_COLLECTION, SessionStep.TIME_SELECTION, StepTrigger.BOOKING_CONFLICT),
    Transition(SessionStep.DETAILS_COLLECTION, SessionStep.COMPLETED, StepTrigger.BOOKED),
]

_TRANSITION_INDEX: dict[tuple[SessionStep, StepTrigger], SessionStep] = {
    (t.from_step, t.trigger): t.to_step for t in TRANSITIONS
}


def next_step(current: SessionStep, trigger: StepTrigger) -> SessionStep:
    try:
        return _TRANSITION_INDEX[(current, trigger)]
    except KeyError:
        valid = [t.trigger.value for t in TRANSITIONS if t.from_step == current]
        raise InvalidTransitionError(
            f"No transition from '{current.value}' on '{trigger.value}'. Valid triggers: {valid}"
        ) from None


@dataclass
class AdvanceResult:
    session_id: uuid.UUID
    current_step: str
    status: SessionStatus
    prompt_data: dict[str, Any]
    terminal: bool


@dataclass
class StepOutcome:
    """What a step handler decided. Triggers are applied in order."""
    triggers: list[StepTrigger]
    prompt_data: dict[str, Any] = field(default_factory=dict)
    appointment_id: uuid.UUID | None = None


@dataclass(frozen=True)
class SessionSnapshot:
    """
    Plain copy of a loaded session.

    A booking conflict or a retried read rolls the database session back,
    which expires ORM instances; handlers only read from this copy.
    """
    id: uuid.UUID
    channel_identity: str
    practitioner_id: uuid.UUID
    status: SessionStatus
    entry_method: EntryMethod
    appointment_id: uuid.UUID | None
    step: SessionStep
    context: dict[str, Any]
    last_updated: datetime


# The current offer, as "HH:MM-HH:MM" entries for the context date. Not counted against the size cap.
OFFER_KEY = "offered_slots"


def context_size(context: dict) -> int:
    """Serialized size of what the client supplied, excluding the current offer."""
    details = {k: v for k, v in context.items() if k != OFFER_KEY}
    return len(json.dumps(details, default=str).encode("utf-8"))


def pack_offer(slots: list[Slot]) -> list[str]:
    return [f"{time_to_str(s.start_time)}-{time_to_str(s.end_time)}" for s in slots]


def unpack_offer(context: dict) -> list[dict]:
    offered = []
    for packed in context.get(OFFER_KEY) or []:
        start, end = packed.split("-")
        offered.append({"date": context["date"], "start_time": start, "end_time": end})
    return offered


def offer_prompt_slots(context: dict) -> list[dict]:
    return [
        {"index": i, "start_time": s["start_time"], "end_time": s["end_time"]}
        for i, s in enumerate(unpack_offer(context))
    ]


class ConversationStateMachine:
    """
    Service behind StartSession / Advance / Cancel.

    Handles:
    - Starting (or resuming) a session for either entry channel
    - Validating and applying one step of input
    - Lazy expiry on load, and an equivalent bulk sweep
    - Cancellation, where a committed booking always wins
    """

    def __init__(self, db: AsyncSession, events: EventPublisher | None = None):
        self.db = db
        self.events = events or event_publisher
        self.availability = AvailabilityStore(db)
        self.slots = SlotCalculator(db)
        self.resolver = BookingConflictResolver(db)
        self.ledger = AppointmentLedger(db)
        self._handlers: dict[SessionStep, Callable[..., Awaitable[StepOutcome]]] = {
            SessionStep.WELCOME: self._handle_welcome,
            SessionStep.DATE_SELECTION: self._handle_date_selection,
            SessionStep.TIME_SELECTION: self._handle_time_selection,
            SessionStep.CONFIRMATION: self._handle_confirmation,
            SessionStep.DETAILS_COLLECTION: self._handle_details_collection,
        }

    @property
    def inactivity_timeout(self) -> timedelta:
        return timedelta(minutes=settings.SESSION_INACTIVITY_TIMEOUT_MINUTES)

    # ==================== START ====================

    async def start_session(
        self,
        client_identity: str,
        entry_method: EntryMethod,
        practitioner_id: str | uuid.UUID,
        prefill: SessionPrefill | None = None,
        resume: bool = False,
        now: datetime | None = None
    ) -> AdvanceResult:
        """
        Open a conversation for a client.

        Both channels call this the same way; the form handoff may pass
        details it already collected as ``prefill``. With ``resume`` an
        active session for the same client and practitioner is returned
        instead of opening a second one.
        """
        now = now or utcnow()
        entry_method = EntryMethod(entry_method)
        practitioner = await self.availability.get_practitioner(practitioner_id)
        pid = practitioner.id

        if resume:
            existing = await self._find_resumable(client_identity, pid, now)
            if existing is not None:
                set_session_id(str(existing.id))
                logger.info("Resuming session for %s at step %s", client_identity, existing.step.value)
                return self._describe(existing)

        context: dict[str, Any] = {"practitioner_id": str(pid)}
        if prefill is not None:
            context.update(prefill.model_dump(exclude_none=True))
        self._check_context_size(context)

        session = ConversationSession(
            id=uuid.uuid4(),
            channel_identity=client_identity,
            practitioner_id=pid,
            status=SessionStatus.ACTIVE,
            entry_method=entry_method,
            started_at=now,
        )
        state = SessionState(
            session_id=session.id,
            current_step=SessionStep.WELCOME,
            context=context,
            last_updated=now,
        )
        self.db.add(session)
        self.db.add(state)
        await self.db.commit()

        set_session_id(str(session.id))
        logger.info("Session started for %s via %s", client_identity, entry_method.value)
        self.events.publish(
            EventType.SESSION_STARTED, str(session.id), entry_method, timestamp=now,
            practitioner_id=str(pid),
        )

        snapshot = self._snapshot(session, state)
        return self._describe(snapshot)

    async def _find_resumable(
        self,
        client_identity: str,
        practitioner_id: uuid.UUID,
        now: datetime
    ) -> SessionSnapshot | None:
        result = await self.db.execute(
            select(ConversationSession, SessionState)
            .join(SessionState, SessionState.session_id == ConversationSession.id)
            .where(
                ConversationSession.channel_identity == client_identity,
                ConversationSession.practitioner_id == practitioner_id,
                ConversationSession.status == SessionStatus.ACTIVE,
            )
            .order_by(SessionState.last_updated.desc())
            .execution_options(populate_existing=True)
        )
        for session, state in result.all():
            snapshot = self._snapshot(session, state)
            if not self._is_idle(snapshot, now):
                return snapshot
            await self._expire(snapshot, now)
        return None

    # ==================== ADVANCE ====================

    async def advance(
        self,
        session_id: str | uuid.UUID,
        step_input: StepInput | None = None,
        now: datetime | None = None
    ) -> AdvanceResult:
        """
        Apply one user turn to a session.

        Returns the resulting step. Terminal sessions (including ones that
        expire on this very load) return their description and the input is
        not consumed, so transport retries are harmless.

        Raises:
            NotFound: unknown session
            InvalidArgument: the input is not acceptable for the current step
        """
        now = now or utcnow()
        step_input = step_input or StepInput()
        snapshot = await self._load(session_id)

        if snapshot.status != SessionStatus.ACTIVE:
            logger.debug("Input ignored, session already %s", snapshot.status.value)
            return self._describe(snapshot)

        if self._is_idle(snapshot, now):
            return self._describe(await self._expire(snapshot, now))

        handler = self._handlers[snapshot.step]
        context = dict(snapshot.context)
        outcome = await handler(snapshot, context, step_input, now)

        step = snapshot.step
        for trigger in outcome.triggers:
            step = next_step(step, trigger)
        self._check_context_size(context)

        values: dict[str, Any] = {"current_step": step, "context": context, "last_updated": now}
        await self.db.execute(
            update(SessionState)
            .where(SessionState.session_id == snapshot.id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        status = snapshot.status
        appointment_id = snapshot.appointment_id
        if step == SessionStep.COMPLETED:
            # Unconditional: a committed booking wins over a cancel that slipped in
            status = SessionStatus.COMPLETED
            appointment_id = outcome.appointment_id
            await self.db.execute(
                update(ConversationSession)
                .where(ConversationSession.id == snapshot.id)
                .values(status=status, ended_at=now, appointment_id=appointment_id)
                .execution_options(synchronize_session=False)
            )
        await self.db.commit()

        logger.debug(
            "Step %s -> %s (triggers: %s)",
            snapshot.step.value, step.value, [t.value for t in outcome.triggers],
        )
        self.events.publish(
            EventType.STEP_ADVANCED, str(snapshot.id), snapshot.entry_method, timestamp=now,
            from_step=snapshot.step.value, to_step=step.value,
            triggers=[t.value for t in outcome.triggers],
        )

        return AdvanceResult(
            session_id=snapshot.id,
            current_step=step.value,
            status=status,
            prompt_data=outcome.prompt_data,
            terminal=status != SessionStatus.ACTIVE,
        )

    # ==================== STEP HANDLERS ====================

    async def _handle_welcome(self, snapshot, context, step_input, now) -> StepOutcome:
        return StepOutcome([StepTrigger.GREETED], await self._date_prompt(snapshot, now))

    async def _handle_date_selection(self, snapshot, context, step_input, now) -> StepOutcome:
        if step_input.date is None:
            raise InvalidArgument("A date is required", field="date")

        today = await self._local_today(snapshot, now)
        if step_input.date < today:
            raise InvalidArgument("Date must be today or later", field="date")

        context["date"] = step_input.date.isoformat()
        slots = await self.slots.compute_slots(snapshot.practitioner_id, step_input.date, now=now)

        if not slots:
            context.pop(OFFER_KEY, None)
            prompt = await self._date_prompt(snapshot, now)
            prompt.update({"reason": "no_slots", "date": context["date"]})
            return StepOutcome([StepTrigger.NO_SLOTS], prompt)

        return StepOutcome([StepTrigger.SLOTS_OFFERED], self._offer(context, slots))

    async def _handle_time_selection(self, snapshot, context, step_input, now) -> StepOutcome:
        offered = unpack_offer(context)

        if step_input.offer_version is not None and step_input.offer_version != context.get("offer_version"):
            raise InvalidArgument("That list of times is out of date, please choose again", field="selection")
        if step_input.date is not None and step_input.date.isoformat() != context.get("date"):
            raise InvalidArgument("That time belongs to a different date, please choose again", field="date")
        if step_input.selection is None:
            raise InvalidArgument("A time selection is required", field="selection")
        if not 0 <= step_input.selection < len(offered):
            raise InvalidArgument("Selection is out of range", field="selection")

        context["selected_slot"] = offered[step_input.selection]
        return StepOutcome(
            [StepTrigger.SLOT_SELECTED],
            {"prompt": "confirm_slot", "slot": context["selected_slot"]},
        )

    async def _handle_confirmation(self, snapshot, context, step_input, now) -> StepOutcome:
        if step_input.accept is None:
            raise InvalidArgument("Please accept or decline the proposed time", field="accept")

        if step_input.accept:
            return StepOutcome([StepTrigger.ACCEPTED], self._details_prompt(context))

        context.pop("selected_slot", None)
        return await self._reoffer(snapshot, context, now, StepTrigger.DECLINED, reason="declined")

    async def _handle_details_collection(self, snapshot, context, step_input, now) -> StepOutcome:
        name = (step_input.name or context.get("name") or "").strip()
        if not name:
            raise InvalidArgument("Name is required", field="name")

        context["name"] = name
        if step_input.notes is not None:
            context["notes"] = step_input.notes
        # Checked with room for the appointment id so a commit is never followed by a failed state write
        self._check_context_size({**context, "appointment_id": str(uuid.UUID(int=0))})

        slot = Slot.from_dict(context["selected_slot"])
        try:
            appointment = await self.resolver.try_book(
                client_id=snapshot.channel_identity,
                practitioner_id=snapshot.practitioner_id,
                target_date=slot.date,
                start_time=slot.start_time,
                end_time=slot.end_time,
                entry_method=snapshot.entry_method,
                client_name=name,
                notes=context.get("notes"),
                session_id=snapshot.id,
                now=now,
            )
        except BookingConflict as exc:
            self.events.publish(
                EventType.BOOKING_CONFLICT, str(snapshot.id), snapshot.entry_method, timestamp=now,
                slot=context["selected_slot"],
            )
            context.pop("selected_slot", None)
            return await self._reoffer(snapshot, context, now, StepTrigger.BOOKING_CONFLICT,
                                       reason="booking_conflict", message=exc.message)
        except InvalidArgument as exc:
            prompt = self._details_prompt(context)
            prompt["error"] = {"field": exc.field, "message": exc.message}
            return StepOutcome([StepTrigger.DETAILS_INVALID], prompt)

        context["appointment_id"] = str(appointment.id)
        self.events.publish(
            EventType.BOOKING_COMMITTED, str(snapshot.id), snapshot.entry_method, timestamp=now,
            appointment_id=str(appointment.id), slot=slot.to_dict(),
        )
        return StepOutcome(
            [StepTrigger.BOOKED],
            {"prompt": "booked", "appointment_id": str(appointment.id), "slot": slot.to_dict()},
            appointment_id=appointment.id,
        )

    # ==================== PROMPTS ====================

    def _offer(self, context: dict, slots: list[Slot]) -> dict:
        """Store a fresh offer; selections against an older offer_version are rejected."""
        context[OFFER_KEY] = pack_offer(slots)
        context["offer_version"] = context.get("offer_version", 0) + 1
        return {
            "prompt": "choose_time",
            "date": context["date"],
            "offer_version": context["offer_version"],
            "slots": offer_prompt_slots(context),
        }

    async def _reoffer(self, snapshot, context, now, trigger: StepTrigger, reason: str,
                       message: str | None = None) -> StepOutcome:
        """Back to time selection with recomputed slots, or on to date selection if none are left."""
        slots = await self.slots.compute_slots(
            snapshot.practitioner_id, date.fromisoformat(context["date"]), now=now
        )
        if slots:
            prompt = self._offer(context, slots)
            triggers = [trigger]
        else:
            context.pop(OFFER_KEY, None)
            prompt = await self._date_prompt(snapshot, now)
            prompt["date"] = context["date"]
            triggers = [trigger, StepTrigger.NO_SLOTS]

        prompt["reason"] = reason
        if message:
            prompt["message"] = message
        return StepOutcome(triggers, prompt)

    async def _date_prompt(self, snapshot: SessionSnapshot, now: datetime) -> dict:
        return {"prompt": "choose_date", "earliest_date": (await self._local_today(snapshot, now)).isoformat()}

    def _details_prompt(self, context: dict) -> dict:
        return {
            "prompt": "collect_details",
            "slot": context.get("selected_slot"),
            "required": ["name"],
            "optional": ["notes"],
            "prefilled": {k: context[k] for k in ("name", "notes") if k in context},
        }

    def _describe(self, snapshot: SessionSnapshot) -> AdvanceResult:
        """Current position of a session without consuming any input."""
        status = snapshot.status
        context = snapshot.context

        if status == SessionStatus.ACTIVE:
            current_step = snapshot.step.value
            prompt = self._resume_prompt(snapshot)
        elif status == SessionStatus.COMPLETED:
            current_step = SessionStep.COMPLETED.value
            prompt = {
                "prompt": "booked",
                "appointment_id": str(snapshot.appointment_id) if snapshot.appointment_id else context.get("appointment_id"),
                "slot": context.get("selected_slot"),
            }
        else:
            current_step = status.value
            prompt = {"prompt": "session_closed", "reason": status.value}

        return AdvanceResult(
            session_id=snapshot.id,
            current_step=current_step,
            status=status,
            prompt_data=prompt,
            terminal=status != SessionStatus.ACTIVE,
        )

    def _resume_prompt(self, snapshot: SessionSnapshot) -> dict:
        context = snapshot.context
        step = snapshot.step
        if step == SessionStep.WELCOME:
            return {"prompt": "welcome"}
        if step == SessionStep.DATE_SELECTION:
            return {"prompt": "choose_date", **({"date": context["date"]} if "date" in context else {})}
        if step == SessionStep.TIME_SELECTION:
            return {
                "prompt": "choose_time",
                "date": context.get("date"),
                "offer_version": context.get("offer_version"),
                "slots": offer_prompt_slots(context),
            }
        if step == SessionStep.CONFIRMATION:
            return {"prompt": "confirm_slot", "slot": context.get("selected_slot")}
        return self._details_prompt(context)

    # ==================== CANCEL / EXPIRY ====================

    async def cancel(self, session_id: str | uuid.UUID, now: datetime | None = None) -> AdvanceResult:
        """
        Abandon a session on explicit request.

        Idempotent on terminal sessions. If the session already committed an
        appointment it is completed instead of abandoned.
        """
        now = now or utcnow()
        snapshot = await self._load(session_id)

        if snapshot.status != SessionStatus.ACTIVE:
            return self._describe(snapshot)
        if self._is_idle(snapshot, now):
            return self._describe(await self._expire(snapshot, now))

        return self._describe(
            await self._close(snapshot, SessionStatus.ABANDONED, EventType.SESSION_ABANDONED, now)
        )

    async def get_session(self, session_id: str | uuid.UUID, now: datetime | None = None) -> AdvanceResult:
        """Load a session for resumption, expiring it first if it has been idle too long."""
        now = now or utcnow()
        snapshot = await self._load(session_id)
        if snapshot.status == SessionStatus.ACTIVE and self._is_idle(snapshot, now):
            snapshot = await self._expire(snapshot, now)
        return self._describe(snapshot)

    async def expire_idle_sessions(self, now: datetime | None = None) -> int:
        """
        Housekeeping sweep. Applies exactly the rule used on load.

        Returns:
            Number of sessions that were expired.
        """
        now = now or utcnow()
        cutoff = now - self.inactivity_timeout

        result = await self.db.execute(
            select(ConversationSession, SessionState)
            .join(SessionState, SessionState.session_id == ConversationSession.id)
            .where(
                ConversationSession.status == SessionStatus.ACTIVE,
                SessionState.last_updated < cutoff,
            )
            .execution_options(populate_existing=True)
        )
        expired = 0
        for session, state in result.all():
            snapshot = self._snapshot(session, state)
            if not self._is_idle(snapshot, now):
                continue
            closed = await self._expire(snapshot, now)
            if closed.status == SessionStatus.EXPIRED:
                expired += 1

        logger.info("Expiry sweep closed %d idle sessions", expired)
        return expired

    def _is_idle(self, snapshot: SessionSnapshot, now: datetime) -> bool:
        return ensure_utc(now) - ensure_utc(snapshot.last_updated) > self.inactivity_timeout

    async def _expire(self, snapshot: SessionSnapshot, now: datetime) -> SessionSnapshot:
        return await self._close(snapshot, SessionStatus.EXPIRED, EventType.SESSION_EXPIRED, now)

    async def _close(
        self,
        snapshot: SessionSnapshot,
        status: SessionStatus,
        event: EventType,
        now: datetime
    ) -> SessionSnapshot:
        set_session_id(str(snapshot.id))

        committed = await self.ledger.find_by_session(snapshot.id)
        if committed is not None:
            status, event = SessionStatus.COMPLETED, None

        # Conditional on still being active so a completion from another worker is never overwritten
        values: dict[str, Any] = {"status": status, "ended_at": now}
        if committed is not None:
            values["appointment_id"] = committed.id
        result = await self.db.execute(
            update(ConversationSession)
            .where(
                ConversationSession.id == snapshot.id,
                ConversationSession.status == SessionStatus.ACTIVE,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if committed is not None:
            await self.db.execute(
                update(SessionState)
                .where(SessionState.session_id == snapshot.id)
                .values(current_step=SessionStep.COMPLETED, last_updated=now)
                .execution_options(synchronize_session=False)
            )
        await self.db.commit()

        if result.rowcount == 0:
            # Someone else closed it first; report what they left
            return await self._load(snapshot.id)

        logger.info("Session %s", status.value)
        if event is not None:
            self.events.publish(
                event, str(snapshot.id), snapshot.entry_method, timestamp=now,
                step=snapshot.step.value,
            )

        return SessionSnapshot(
            id=snapshot.id,
            channel_identity=snapshot.channel_identity,
            practitioner_id=snapshot.practitioner_id,
            status=status,
            entry_method=snapshot.entry_method,
            appointment_id=committed.id if committed is not None else snapshot.appointment_id,
            step=SessionStep.COMPLETED if committed is not None else snapshot.step,
            context=snapshot.context,
            last_updated=now if committed is not None else snapshot.last_updated,
        )

    # ==================== HELPERS ====================

    async def _load(self, session_id: str | uuid.UUID) -> SessionSnapshot:
        sid = parse_uuid(session_id, "Session")
        set_session_id(str(sid))

        result = await self.db.execute(
            select(ConversationSession, SessionState)
            .join(SessionState, SessionState.session_id == ConversationSession.id)
            .where(ConversationSession.id == sid)
            .execution_options(populate_existing=True)
        )
        row = result.first()
        if row is None:
            raise NotFound(f"Session not found: {session_id}")

        session, state = row
        return self._snapshot(session, state)

    @staticmethod
    def _snapshot(session: ConversationSession, state: SessionState) -> SessionSnapshot:
        return SessionSnapshot(
            id=session.id,
            channel_identity=session.channel_identity,
            practitioner_id=session.practitioner_id,
            status=SessionStatus(session.status),
            entry_method=EntryMethod(session.entry_method),
            appointment_id=session.appointment_id,
            step=SessionStep(state.current_step),
            context=dict(state.context or {}),
            last_updated=ensure_utc(state.last_updated),
        )

    async def _local_today(self, snapshot: SessionSnapshot, now: datetime) -> date:
        practitioner = await self.availability.get_practitioner(snapshot.practitioner_id)
        return local_wall_clock(now, practitioner.timezone).date()

    @staticmethod
    def _check_context_size(context: dict) -> None:
        if context_size(context) > settings.SESSION_CONTEXT_MAX_BYTES:
            raise InvalidArgument("Collected details are too large", field="notes")
