from app.schemas.availability import (
    PractitionerCreate,
    PractitionerResponse,
    AvailabilityWindowIn,
    AvailabilityWindowItem,
    AvailabilityUpdate,
)
from app.schemas.booking import (
    TimeSlot,
    AvailableSlotsResponse,
    AppointmentResponse,
    AppointmentStatusUpdate,
)
from app.schemas.conversation import (
    SessionPrefill,
    SessionStart,
    StepInput,
    AdvanceResponse,
    ErrorResponse,
)
