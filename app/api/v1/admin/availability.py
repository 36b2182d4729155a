from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
import uuid

from app.core.database import get_db
from app.models import AvailabilityWindow, Practitioner
from app.schemas.availability import (
    DAY_NAMES,
    PractitionerCreate,
    PractitionerResponse,
    AvailabilityWindowItem,
    AvailabilityUpdate,
)
from app.services.availability_service import AvailabilityStore


router = APIRouter()


# ============== Helper ==============

def to_item(window: AvailabilityWindow) -> AvailabilityWindowItem:
    return AvailabilityWindowItem(
        id=window.id,
        day_of_week=window.day_of_week,
        day_name=DAY_NAMES[window.day_of_week],
        start_time=window.start_time,
        end_time=window.end_time,
    )


# ============== Endpoints ==============

@router.post("/practitioners", response_model=PractitionerResponse, status_code=status.HTTP_201_CREATED)
async def create_practitioner(
    request: PractitionerCreate,
    db: AsyncSession = Depends(get_db)
):
    """Register a practitioner. Availability is added separately."""
    practitioner = Practitioner(
        id=uuid.uuid4(),
        display_name=request.display_name,
        timezone=request.timezone,
        default_slot_minutes=request.default_slot_minutes,
        is_active=True,
    )
    db.add(practitioner)
    await db.commit()
    await db.refresh(practitioner)

    return practitioner


@router.get("/practitioners/{pid}/availability", response_model=list[AvailabilityWindowItem])
async def get_availability(
    pid: str,
    db: AsyncSession = Depends(get_db)
):
    """Get the weekly availability of a practitioner, ordered by day then start time."""
    practitioner = await AvailabilityStore(db).get_practitioner(pid)

    result = await db.execute(
        select(AvailabilityWindow)
        .where(
            AvailabilityWindow.practitioner_id == practitioner.id,
            AvailabilityWindow.is_active == True,
        )
        .order_by(AvailabilityWindow.day_of_week, AvailabilityWindow.start_time)
    )
    return [to_item(w) for w in result.scalars().all()]


@router.put("/practitioners/{pid}/availability", response_model=list[AvailabilityWindowItem])
async def replace_availability(
    pid: str,
    request: AvailabilityUpdate,
    db: AsyncSession = Depends(get_db)
):
    """
    Replace the whole weekly schedule.

    Old windows are deactivated rather than deleted. Existing appointments
    are not touched, even if they fall outside the new schedule.
    """
    practitioner = await AvailabilityStore(db).get_practitioner(pid)
    practitioner_id = practitioner.id

    await db.execute(
        update(AvailabilityWindow)
        .where(
            AvailabilityWindow.practitioner_id == practitioner_id,
            AvailabilityWindow.is_active == True,
        )
        .values(is_active=False)
        .execution_options(synchronize_session=False)
    )

    for item in request.windows:
        db.add(AvailabilityWindow(
            id=uuid.uuid4(),
            practitioner_id=practitioner_id,
            day_of_week=item.day_of_week,
            start_time=item.start_time,
            end_time=item.end_time,
            is_active=True,
        ))

    await db.commit()

    # Return updated schedule
    return await get_availability(str(practitioner_id), db)
