from pydantic import BaseModel, Field, field_validator, model_validator
from datetime import datetime, time
from uuid import UUID
from zoneinfo import available_timezones


# ============== Practitioner Schemas ==============

class PractitionerCreate(BaseModel):
    display_name: str = Field(..., min_length=1, max_length=200)
    timezone: str = Field("UTC", max_length=64)
    default_slot_minutes: int | None = Field(None, gt=0, le=24 * 60)

    @model_validator(mode="after")
    def check_timezone(self):
        if self.timezone not in available_timezones():
            raise ValueError(f"Unknown timezone: {self.timezone}")
        return self


class PractitionerResponse(BaseModel):
    id: UUID
    display_name: str
    timezone: str
    default_slot_minutes: int | None = None
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


# ============== Availability Window Schemas ==============

DAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


class AvailabilityWindowIn(BaseModel):
    day_of_week: int = Field(..., ge=0, le=6)  # 0=Monday, 6=Sunday
    start_time: time
    end_time: time

    @field_validator("start_time", "end_time")
    @classmethod
    def check_whole_minutes(cls, value: time) -> time:
        if value.second or value.microsecond:
            raise ValueError("times must be whole minutes (HH:MM)")
        if value.tzinfo is not None:
            raise ValueError("times are wall-clock in the practitioner's timezone; drop the offset")
        return value

    @model_validator(mode="after")
    def check_range(self):
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self


class AvailabilityWindowItem(BaseModel):
    day_of_week: int
    start_time: time
    end_time: time
    id: UUID
    day_name: str


class AvailabilityUpdate(BaseModel):
    """Replaces the practitioner's whole weekly schedule. Overlapping windows are merged when slots are computed."""
    windows: list[AvailabilityWindowIn]
