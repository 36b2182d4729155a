import uuid
from datetime import datetime, time
from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, SmallInteger, Time, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.core.timeutils import utcnow


class AvailabilityWindow(Base):
    """Recurring weekly availability. Several rows per practitioner per day are allowed (0=Monday to 6=Sunday)."""
    __tablename__ = "availability_windows"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_availability_window_range"),
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_availability_window_day"),
        Index("ix_availability_windows_practitioner_day", "practitioner_id", "day_of_week"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    practitioner_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("practitioners.id"), nullable=False)
    day_of_week: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    practitioner = relationship("Practitioner", back_populates="availability_windows")
