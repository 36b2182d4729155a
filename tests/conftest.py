"""Shared test fixtures and helpers."""

import uuid
from datetime import date, datetime, time, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core.database import Base
from app.models import Appointment, AvailabilityWindow, Practitioner
from app.models.enums import AppointmentStatus, EntryMethod
from app.services.event_service import EventPublisher

# 2030-01-07 is a Monday
MONDAY = date(2030, 1, 7)
TUESDAY = date(2030, 1, 8)
SUNDAY = date(2030, 1, 6)
# Noon UTC the day before, so every Monday slot is still in the future
NOW = datetime(2030, 1, 6, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def engine(tmp_path):
    # A file database so concurrent sessions each get their own connection
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'scheduling.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def recorded_events():
    return []


@pytest.fixture
def publisher(recorded_events):
    return EventPublisher(sinks=[recorded_events.append])


async def make_practitioner(
    db: AsyncSession,
    windows: list[tuple[int, time, time]] | None = None,
    timezone_name: str = "UTC",
    default_slot_minutes: int | None = None,
) -> uuid.UUID:
    """Create a practitioner with weekly windows given as (day_of_week, start, end)."""
    practitioner = Practitioner(
        id=uuid.uuid4(),
        display_name="Dr. Example",
        timezone=timezone_name,
        default_slot_minutes=default_slot_minutes,
        is_active=True,
    )
    db.add(practitioner)
    for day, start, end in windows if windows is not None else [(0, time(9, 0), time(11, 0))]:
        db.add(AvailabilityWindow(
            id=uuid.uuid4(),
            practitioner_id=practitioner.id,
            day_of_week=day,
            start_time=start,
            end_time=end,
            is_active=True,
        ))
    await db.commit()
    return practitioner.id


async def make_appointment(
    db: AsyncSession,
    practitioner_id: uuid.UUID,
    day: date,
    start: time,
    end: time,
    status: AppointmentStatus = AppointmentStatus.SCHEDULED,
) -> uuid.UUID:
    appointment = Appointment(
        id=uuid.uuid4(),
        client_id="existing-client",
        practitioner_id=practitioner_id,
        date=day,
        start_time=start,
        end_time=end,
        status=status,
        entry_method=EntryMethod.FORM,
    )
    db.add(appointment)
    await db.commit()
    return appointment.id
