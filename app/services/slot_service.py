import uuid
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Iterable
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import InvalidArgument
from app.core.timeutils import (
    ceil_minutes_of_day,
    combine,
    local_wall_clock,
    minutes_of_day,
    str_to_time,
    time_from_minutes,
    time_to_str,
    utcnow,
)
from app.models import AvailabilityWindow, Practitioner
from app.services.appointment_ledger import AppointmentLedger, ranges_overlap
from app.services.availability_service import AvailabilityStore


@dataclass(frozen=True)
class Slot:
    """A candidate bookable range. Never persisted except inside a session context."""
    date: date
    start_time: time
    end_time: time

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "start_time": time_to_str(self.start_time),
            "end_time": time_to_str(self.end_time),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Slot":
        return cls(
            date=date.fromisoformat(data["date"]),
            start_time=str_to_time(data["start_time"]),
            end_time=str_to_time(data["end_time"]),
        )


def merge_windows(windows: Iterable[tuple[time, time]]) -> list[tuple[time, time]]:
    """
    Merge overlapping or touching (start, end) ranges.

    09:00-10:00 and 10:00-11:00 become 09:00-11:00, so the boundary does
    not cut a slot in two.
    """
    merged: list[list[time]] = []
    for start, end in sorted(windows):
        if merged and start <= merged[-1][1]:
            merged[-1][1] = max(merged[-1][1], end)
        else:
            merged.append([start, end])
    return [(start, end) for start, end in merged]


def partition_window(start: time, end: time, duration_minutes: int) -> list[tuple[time, time]]:
    """
    Cut a window into back-to-back ranges of the given length, dropping a shorter remainder.

    Pieces start and end on whole minutes inside the window.
    """
    pieces = []
    cursor = ceil_minutes_of_day(start)
    limit = minutes_of_day(end)
    while cursor + duration_minutes <= limit:
        pieces.append((time_from_minutes(cursor), time_from_minutes(cursor + duration_minutes)))
        cursor += duration_minutes
    return pieces


def window_ranges(windows: Iterable[AvailabilityWindow]) -> list[tuple[time, time]]:
    return merge_windows((w.start_time, w.end_time) for w in windows)


class SlotCalculator:
    """
    Derives bookable slots for a practitioner on a date.

    Combines recurring availability with the appointments already in the
    ledger. Nothing is cached between calls, and nothing is written.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.availability = AvailabilityStore(db)
        self.ledger = AppointmentLedger(db)

    def resolve_duration(self, practitioner: Practitioner, slot_duration_minutes: int | None) -> int:
        if slot_duration_minutes is None:
            slot_duration_minutes = practitioner.default_slot_minutes or settings.DEFAULT_SLOT_DURATION_MINUTES
        if slot_duration_minutes <= 0:
            raise InvalidArgument("Slot duration must be positive", field="slot_duration")
        return slot_duration_minutes

    async def compute_slots(
        self,
        practitioner_id: str | uuid.UUID,
        target_date: date,
        slot_duration_minutes: int | None = None,
        now: datetime | None = None
    ) -> list[Slot]:
        """
        Get all bookable slots for a practitioner on a specific date.

        Args:
            practitioner_id: UUID of the practitioner
            target_date: The date to check
            slot_duration_minutes: Length of each slot; practitioner or global default when omitted
            now: Current instant; slots starting before it are excluded

        Returns:
            Slots ordered by start time. An empty list means nothing is free.

        Raises:
            NotFound: unknown practitioner
            InvalidArgument: non-positive duration or a target_date that is not a date
        """
        if not isinstance(target_date, date) or isinstance(target_date, datetime):
            raise InvalidArgument("A calendar date is required", field="date")

        practitioner = await self.availability.get_practitioner(practitioner_id)
        duration = self.resolve_duration(practitioner, slot_duration_minutes)
        # A retried read rolls the session back and expires loaded rows
        pid, tz_name = practitioner.id, practitioner.timezone

        # Step 1-3: the weekday's windows, merged
        windows = await self.availability.list_windows(pid, target_date.weekday())
        ranges = window_ranges(windows)
        if not ranges:
            return []

        # Step 4: contiguous candidates inside each merged window
        candidates = [
            piece
            for start, end in ranges
            for piece in partition_window(start, end, duration)
        ]

        # Step 5-6: drop anything touching an active appointment
        booked = await self.ledger.list_active_appointments(pid, target_date)
        candidates = [
            (start, end)
            for start, end in candidates
            if not any(ranges_overlap(start, end, a.start_time, a.end_time) for a in booked)
        ]

        # Step 7: nothing that has already started in the practitioner's local time
        local_now = local_wall_clock(now or utcnow(), tz_name)
        candidates = [
            (start, end)
            for start, end in candidates
            if combine(target_date, start) >= local_now
        ]

        return [Slot(date=target_date, start_time=start, end_time=end) for start, end in candidates]

    async def is_within_availability(
        self,
        practitioner_id: uuid.UUID,
        target_date: date,
        start_time: time,
        end_time: time
    ) -> bool:
        """True when the range fits entirely inside one merged availability window."""
        windows = await self.availability.list_windows(practitioner_id, target_date.weekday())
        return any(start <= start_time and end_time <= end for start, end in window_ranges(windows))
