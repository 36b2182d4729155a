from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.exceptions import BookingConflict, InvalidArgument, NotFound, StorageUnavailable
from app.core.logging import configure_logging
from app.schemas.conversation import ErrorResponse
from app.api.v1.sessions.router import router as sessions_router
from app.api.v1.practitioners.router import router as practitioners_router
from app.api.v1.admin.availability import router as admin_availability_router
from app.api.v1.admin.appointments import router as admin_appointments_router

configure_logging(settings.LOG_LEVEL)

app = FastAPI(
    title="Appointment Scheduling Core",
    description="Slot calculation, conflict-safe booking and a shared chat/form booking conversation",
    version="1.0.0"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(sessions_router, prefix="/api/v1")
app.include_router(practitioners_router, prefix="/api/v1")
app.include_router(admin_availability_router, prefix="/api/v1/admin", tags=["Admin Availability"])
app.include_router(admin_appointments_router, prefix="/api/v1/admin", tags=["Admin Appointments"])


# ============== Error mapping ==============

def error_response(status_code: int, error: str, message: str, field: str | None = None) -> JSONResponse:
    body = ErrorResponse(error=error, message=message, field=field)
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(InvalidArgument)
async def invalid_argument_handler(request: Request, exc: InvalidArgument):
    return error_response(status.HTTP_400_BAD_REQUEST, "invalid_argument", exc.message, exc.field)


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return error_response(status.HTTP_404_NOT_FOUND, "not_found", str(exc))


@app.exception_handler(BookingConflict)
async def booking_conflict_handler(request: Request, exc: BookingConflict):
    return error_response(status.HTTP_409_CONFLICT, "conflict", exc.message)


@app.exception_handler(StorageUnavailable)
async def storage_unavailable_handler(request: Request, exc: StorageUnavailable):
    return error_response(status.HTTP_503_SERVICE_UNAVAILABLE, "storage_unavailable", str(exc))


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
