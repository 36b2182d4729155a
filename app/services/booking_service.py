import uuid
import logging
from datetime import date, time, datetime
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import InvalidArgument
from app.core.timeutils import combine, local_wall_clock, utcnow
from app.models import Appointment
from app.models.enums import AppointmentStatus, EntryMethod
from app.services.appointment_ledger import AppointmentLedger
from app.services.availability_service import AvailabilityStore
from app.services.slot_service import SlotCalculator

logger = logging.getLogger(__name__)


class BookingConflictResolver:
    """
    Validates and atomically commits a booking against concurrent demand.

    Never trusts a previously computed slot list: availability and overlap
    are checked again at commit time.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.availability = AvailabilityStore(db)
        self.slots = SlotCalculator(db)
        self.ledger = AppointmentLedger(db)

    async def try_book(
        self,
        client_id: str,
        practitioner_id: str | uuid.UUID,
        target_date: date,
        start_time: time,
        end_time: time,
        entry_method: EntryMethod,
        client_name: str | None = None,
        notes: str | None = None,
        session_id: uuid.UUID | None = None,
        now: datetime | None = None
    ) -> Appointment:
        """
        Book a specific range for a client.

        Args:
            client_id: Identity of the client on the originating channel
            practitioner_id: UUID of the practitioner
            target_date: Appointment date
            start_time: Start of the range (inclusive)
            end_time: End of the range (exclusive)
            entry_method: chat or form
            client_name: Name collected in the conversation
            notes: Optional free text from the client
            session_id: Conversation that produced the booking, if any
            now: Current instant, for the not-in-the-past check

        Returns:
            The committed appointment, status scheduled.

        Raises:
            NotFound: unknown practitioner
            InvalidArgument: bad range, past date/time or outside availability (see .field)
            BookingConflict: overlaps an appointment committed by someone else
        """
        if not client_id:
            raise InvalidArgument("Client identity is required", field="client_id")

        if start_time >= end_time:
            raise InvalidArgument("Start time must be before end time", field="start_time")

        practitioner = await self.availability.get_practitioner(practitioner_id)
        # Read before any retried lookup can expire the row
        pid, tz_name = practitioner.id, practitioner.timezone

        local_now = local_wall_clock(now or utcnow(), tz_name)
        if target_date < local_now.date():
            raise InvalidArgument("Date is in the past", field="date")
        if combine(target_date, start_time) < local_now:
            raise InvalidArgument("Start time is in the past", field="start_time")

        if not await self.slots.is_within_availability(pid, target_date, start_time, end_time):
            raise InvalidArgument("Requested time is outside the practitioner's availability", field="start_time")

        candidate = Appointment(
            id=uuid.uuid4(),
            client_id=client_id,
            practitioner_id=pid,
            session_id=session_id,
            date=target_date,
            start_time=start_time,
            end_time=end_time,
            status=AppointmentStatus.SCHEDULED,
            entry_method=EntryMethod(entry_method),
            client_name=client_name,
            notes=notes,
        )

        appointment = await self.ledger.insert_appointment_if_no_overlap(candidate)

        logger.info(
            "Booked %s for client %s via %s",
            appointment.id, client_id, appointment.entry_method.value,
        )
        return appointment
