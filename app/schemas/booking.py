from pydantic import BaseModel
from datetime import date, datetime, time
from uuid import UUID

from app.models.enums import AppointmentStatus, EntryMethod


# ============== Time Slot Schemas ==============

class TimeSlot(BaseModel):
    """A single bookable time slot."""
    start_time: time
    end_time: time


class AvailableSlotsResponse(BaseModel):
    """Bookable slots for a practitioner on a given date."""
    practitioner_id: UUID
    date: date
    slot_duration_minutes: int
    slots: list[TimeSlot]


# ============== Appointment Schemas ==============

class AppointmentResponse(BaseModel):
    id: UUID
    client_id: str
    practitioner_id: UUID
    session_id: UUID | None = None
    date: date
    start_time: time
    end_time: time
    status: AppointmentStatus
    entry_method: EntryMethod
    client_name: str | None = None
    notes: str | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class AppointmentStatusUpdate(BaseModel):
    """Practitioner-side status change: confirm, cancel or complete."""
    status: AppointmentStatus
