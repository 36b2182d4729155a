from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from pydantic import BaseModel

from app.core.database import get_db
from app.schemas.booking import AppointmentResponse, AppointmentStatusUpdate
from app.services.appointment_ledger import AppointmentLedger
from app.services.conversation_service import ConversationStateMachine


router = APIRouter()


class ExpireIdleResponse(BaseModel):
    expired: int


@router.get("/appointments/{aid}", response_model=AppointmentResponse)
async def get_appointment(
    aid: str,
    db: AsyncSession = Depends(get_db)
):
    return await AppointmentLedger(db).get_appointment(aid)


@router.patch("/appointments/{aid}/status", response_model=AppointmentResponse)
async def update_appointment_status(
    aid: str,
    request: AppointmentStatusUpdate,
    db: AsyncSession = Depends(get_db)
):
    """
    Confirm, cancel or complete an appointment.

    Cancelling frees the range for new bookings immediately.
    """
    return await AppointmentLedger(db).update_status(aid, request.status)


@router.post("/sessions/expire-idle", response_model=ExpireIdleResponse)
async def expire_idle_sessions(db: AsyncSession = Depends(get_db)):
    """Close every active session idle past the inactivity timeout."""
    expired = await ConversationStateMachine(db).expire_idle_sessions()
    return ExpireIdleResponse(expired=expired)
