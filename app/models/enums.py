import enum


class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


# Statuses that occupy a practitioner's time range
ACTIVE_APPOINTMENT_STATUSES = (AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED)


class EntryMethod(str, enum.Enum):
    CHAT = "chat"
    FORM = "form"


class SessionStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"
    EXPIRED = "expired"


class SessionStep(str, enum.Enum):
    WELCOME = "welcome"
    DATE_SELECTION = "date_selection"
    TIME_SELECTION = "time_selection"
    CONFIRMATION = "confirmation"
    DETAILS_COLLECTION = "details_collection"
    COMPLETED = "completed"


class EventType(str, enum.Enum):
    SESSION_STARTED = "session_started"
    STEP_ADVANCED = "step_advanced"
    BOOKING_COMMITTED = "booking_committed"
    BOOKING_CONFLICT = "booking_conflict"
    SESSION_ABANDONED = "session_abandoned"
    SESSION_EXPIRED = "session_expired"


def enum_values(enum_cls) -> list[str]:
    """Persist enum values rather than member names."""
    return [member.value for member in enum_cls]
