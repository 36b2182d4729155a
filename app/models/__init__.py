# app/models/__init__.py

from app.core.database import Base

from app.models.practitioner import Practitioner
from app.models.availability import AvailabilityWindow
from app.models.appointment import Appointment
from app.models.conversation_session import ConversationSession, SessionState

__all__ = [
    "Base",
    "Practitioner",
    "AvailabilityWindow",
    "Appointment",
    "ConversationSession",
    "SessionState",
]
