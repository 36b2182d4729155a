import asyncio
import hashlib
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import date, time
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, text
from sqlalchemy.exc import DBAPIError, IntegrityError

from app.core.config import settings
from app.core.exceptions import BookingConflict, InvalidArgument, NotFound
from app.core.identifiers import parse_uuid
from app.models import Appointment
from app.models.enums import ACTIVE_APPOINTMENT_STATUSES, AppointmentStatus
from app.services.storage_retry import retry_read

logger = logging.getLogger(__name__)

# Allowed external status changes. Nothing leaves cancelled/completed, so a vacated range stays vacated.
STATUS_TRANSITIONS: dict[AppointmentStatus, set[AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: {
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.COMPLETED,
    },
    AppointmentStatus.CONFIRMED: {
        AppointmentStatus.CANCELLED,
        AppointmentStatus.COMPLETED,
    },
    AppointmentStatus.CANCELLED: set(),
    AppointmentStatus.COMPLETED: set(),
}

# SQLSTATEs for serialization failure and deadlock
_RETRYABLE_SQLSTATES = {"40001", "40P01"}


def ranges_overlap(start_a: time, end_a: time, start_b: time, end_b: time) -> bool:
    """Half-open [start, end) overlap test."""
    return start_a < end_b and start_b < end_a


class PractitionerDayLocks:
    """
    In-process mutual exclusion per (practitioner_id, date).

    Serializes booking attempts handled by the same worker. Cross-worker
    exclusion comes from the database advisory lock taken in the same
    critical section.
    """

    def __init__(self):
        self._locks: dict[tuple, asyncio.Lock] = {}
        self._holders: dict[tuple, int] = {}

    @asynccontextmanager
    async def hold(self, key: tuple):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if not self._holders[key]:
                del self._holders[key]
                del self._locks[key]


_day_locks = PractitionerDayLocks()


def advisory_lock_key(practitioner_id: uuid.UUID, day: date) -> int:
    """Stable signed 64-bit key for pg_advisory_xact_lock."""
    digest = hashlib.blake2b(f"{practitioner_id}:{day.isoformat()}".encode(), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


def _is_detected_conflict(exc: DBAPIError) -> bool:
    if isinstance(exc, IntegrityError):
        return True
    sqlstate = getattr(exc.orig, "pgcode", None) or getattr(exc.orig, "sqlstate", None)
    return sqlstate in _RETRYABLE_SQLSTATES


class AppointmentLedger:
    """
    The authoritative set of committed appointments.

    Handles:
    - Listing appointments that occupy a practitioner's day
    - The atomic check-and-insert primitive used for every booking
    - External status transitions (confirm, cancel, complete)
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_active_appointments(
        self,
        practitioner_id: str | uuid.UUID,
        target_date: date
    ) -> list[Appointment]:
        """Scheduled and confirmed appointments for a practitioner on a date, by start time."""
        pid = parse_uuid(practitioner_id, "Practitioner")
        return await retry_read(
            self.db,
            lambda: self._select_active(pid, target_date),
            "Appointment lookup",
        )

    async def _select_active(self, practitioner_id: uuid.UUID, target_date: date) -> list[Appointment]:
        result = await self.db.execute(
            select(Appointment)
            .where(
                Appointment.practitioner_id == practitioner_id,
                Appointment.date == target_date,
                Appointment.status.in_(ACTIVE_APPOINTMENT_STATUSES),
            )
            .order_by(Appointment.start_time)
        )
        return list(result.scalars().all())

    async def _lock_practitioner_day(self, practitioner_id: uuid.UUID, target_date: date) -> None:
        if self.db.get_bind().dialect.name != "postgresql":
            return
        await self.db.execute(
            text("SELECT pg_advisory_xact_lock(:key)"),
            {"key": advisory_lock_key(practitioner_id, target_date)},
        )

    async def insert_appointment_if_no_overlap(self, candidate: Appointment) -> Appointment:
        """
        Atomically re-validate and insert a candidate appointment.

        The overlap check and the insert run inside one transaction while
        holding the (practitioner, date) lock, so two callers contending for
        overlapping time serialize and the second one sees the first one's row.

        Returns:
            The committed appointment.

        Raises:
            BookingConflict: an active appointment overlaps the candidate.
        """
        key = (candidate.practitioner_id, candidate.date)
        attempts = settings.BOOKING_CONFLICT_RETRIES + 1

        async with _day_locks.hold(key):
            for attempt in range(1, attempts + 1):
                try:
                    await self._lock_practitioner_day(*key)

                    for existing in await self._select_active(*key):
                        if ranges_overlap(candidate.start_time, candidate.end_time,
                                          existing.start_time, existing.end_time):
                            logger.info(
                                "Booking conflict for practitioner %s on %s: %s-%s overlaps appointment %s",
                                candidate.practitioner_id, candidate.date,
                                candidate.start_time, candidate.end_time, existing.id,
                            )
                            # Ends the transaction and releases the advisory lock.
                            # Expires loaded rows, so nothing may be read from them after this.
                            await self.db.rollback()
                            raise BookingConflict()

                    self.db.add(candidate)
                    await self.db.commit()
                except DBAPIError as exc:
                    await self.db.rollback()
                    if not _is_detected_conflict(exc):
                        raise
                    logger.warning(
                        "Conflict detected by storage while booking practitioner %s on %s (attempt %d/%d)",
                        candidate.practitioner_id, candidate.date, attempt, attempts,
                    )
                    continue

                logger.info(
                    "Appointment %s committed for practitioner %s on %s %s-%s",
                    candidate.id, candidate.practitioner_id, candidate.date,
                    candidate.start_time, candidate.end_time,
                )
                return candidate

        raise BookingConflict()

    async def get_appointment(self, appointment_id: str | uuid.UUID) -> Appointment:
        aid = parse_uuid(appointment_id, "Appointment")

        async def _load():
            result = await self.db.execute(select(Appointment).where(Appointment.id == aid))
            return result.scalar_one_or_none()

        appointment = await retry_read(self.db, _load, "Appointment lookup")
        if not appointment:
            raise NotFound(f"Appointment not found: {appointment_id}")
        return appointment

    async def find_by_session(self, session_id: uuid.UUID) -> Appointment | None:
        """The appointment a conversation committed, if any."""
        result = await self.db.execute(
            select(Appointment).where(Appointment.session_id == session_id)
        )
        return result.scalars().first()

    async def update_status(
        self,
        appointment_id: str | uuid.UUID,
        new_status: AppointmentStatus
    ) -> Appointment:
        """Apply an external status change such as a cancellation or completion."""
        appointment = await self.get_appointment(appointment_id)

        if new_status == appointment.status:
            return appointment

        if new_status not in STATUS_TRANSITIONS[appointment.status]:
            raise InvalidArgument(
                f"Cannot change appointment from {appointment.status.value} to {new_status.value}",
                field="status",
            )

        appointment.status = new_status
        await self.db.commit()

        logger.info("Appointment %s is now %s", appointment.id, new_status.value)
        return appointment
