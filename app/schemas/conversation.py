from pydantic import BaseModel, Field
from datetime import date as date_type
from typing import Any
from uuid import UUID

from app.models.enums import EntryMethod


# ============== Session Start (Entry Adapter) ==============

class SessionPrefill(BaseModel):
    """Details a web form already collected before handing off."""
    name: str | None = Field(None, min_length=1, max_length=120)
    notes: str | None = Field(None, max_length=1000)


class SessionStart(BaseModel):
    """Normalized start call shared by the chat channel and the form handoff."""
    client_identity: str = Field(..., min_length=1, max_length=120)
    entry_method: EntryMethod
    practitioner_id: UUID
    prefill: SessionPrefill | None = None
    resume: bool = False


# ============== Step Input ==============

class StepInput(BaseModel):
    """
    One user turn, already normalized by the adapter.

    Only the field the current step needs is read:
    - date_selection: date
    - time_selection: selection (index into the last offered slots), plus
      optional offer_version/date echoing the list the user saw
    - confirmation: accept
    - details_collection: name, notes
    """
    date: date_type | None = None
    selection: int | None = None
    offer_version: int | None = None
    accept: bool | None = None
    name: str | None = Field(None, max_length=120)
    notes: str | None = Field(None, max_length=1000)


# ============== Responses ==============

class AdvanceResponse(BaseModel):
    """Where the conversation stands after a call."""
    session_id: UUID
    current_step: str
    status: str
    prompt_data: dict[str, Any] = {}
    terminal: bool


class ErrorResponse(BaseModel):
    error: str
    message: str
    field: str | None = None
