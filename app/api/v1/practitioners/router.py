from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import date

from app.core.database import get_db
from app.schemas.booking import AvailableSlotsResponse, TimeSlot
from app.services.slot_service import SlotCalculator

router = APIRouter(prefix="/practitioners", tags=["Practitioners"])


@router.get("/{practitioner_id}/slots", response_model=AvailableSlotsResponse)
async def get_available_slots(
    practitioner_id: str,
    target_date: date = Query(..., alias="date", description="Date to check (YYYY-MM-DD)"),
    duration: int | None = Query(None, description="Slot length in minutes; practitioner default when omitted"),
    db: AsyncSession = Depends(get_db)
):
    """
    Bookable slots for a practitioner on a date.

    Example:
        GET /api/v1/practitioners/uuid-here/slots?date=2030-01-07
    """
    calculator = SlotCalculator(db)
    practitioner = await calculator.availability.get_practitioner(practitioner_id)
    slot_minutes = calculator.resolve_duration(practitioner, duration)

    pid = practitioner.id
    slots = await calculator.compute_slots(pid, target_date, slot_minutes)

    return AvailableSlotsResponse(
        practitioner_id=pid,
        date=target_date,
        slot_duration_minutes=slot_minutes,
        slots=[TimeSlot(start_time=s.start_time, end_time=s.end_time) for s in slots],
    )
