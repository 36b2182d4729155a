from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.services.conversation_service import AdvanceResult, ConversationStateMachine
from app.schemas.conversation import (
    SessionStart,
    StepInput,
    AdvanceResponse,
)

router = APIRouter(prefix="/sessions", tags=["Sessions"])


def to_response(result: AdvanceResult) -> AdvanceResponse:
    return AdvanceResponse(
        session_id=result.session_id,
        current_step=result.current_step,
        status=result.status.value,
        prompt_data=result.prompt_data,
        terminal=result.terminal,
    )


# ==================== START SESSION ====================

@router.post("", response_model=AdvanceResponse, status_code=status.HTTP_201_CREATED)
async def start_session(
    request: SessionStart,
    db: AsyncSession = Depends(get_db)
):
    """
    Start a booking conversation.

    The chat channel and the web form handoff both call this endpoint; a
    form that already collected the client's name can pass it in `prefill`.

    Example:
        POST /api/v1/sessions
        {"client_identity": "+15550100", "entry_method": "chat",
         "practitioner_id": "uuid-here"}

        Response:
        {"session_id": "uuid-here", "current_step": "welcome",
         "status": "active", "prompt_data": {"prompt": "welcome"}, "terminal": false}
    """
    machine = ConversationStateMachine(db)
    result = await machine.start_session(
        client_identity=request.client_identity,
        entry_method=request.entry_method,
        practitioner_id=request.practitioner_id,
        prefill=request.prefill,
        resume=request.resume,
    )
    return to_response(result)


# ==================== ADVANCE ====================

@router.post("/{session_id}/advance", response_model=AdvanceResponse)
async def advance_session(
    session_id: str,
    request: StepInput,
    db: AsyncSession = Depends(get_db)
):
    """
    Submit one user turn.

    Only the field the current step needs is read:
    - date_selection: `date`
    - time_selection: `selection` (+ optional `offer_version`)
    - confirmation: `accept`
    - details_collection: `name`, optional `notes`

    Invalid input returns 400 and the step does not change. Calls on a
    finished session return its final state with `terminal: true`.
    """
    machine = ConversationStateMachine(db)
    return to_response(await machine.advance(session_id, request))


# ==================== CANCEL ====================

@router.post("/{session_id}/cancel", response_model=AdvanceResponse)
async def cancel_session(
    session_id: str,
    db: AsyncSession = Depends(get_db)
):
    """Abandon a conversation. A session that already booked stays completed."""
    machine = ConversationStateMachine(db)
    return to_response(await machine.cancel(session_id))


# ==================== GET ====================

@router.get("/{session_id}", response_model=AdvanceResponse)
async def get_session(
    session_id: str,
    db: AsyncSession = Depends(get_db)
):
    """Current step and prompt, for resuming on any worker."""
    machine = ConversationStateMachine(db)
    return to_response(await machine.get_session(session_id))
