import uuid
from datetime import date as date_type, datetime, time
from sqlalchemy import String, Text, Date, Time, DateTime, ForeignKey, Enum, CheckConstraint, Index, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.core.timeutils import utcnow
from app.models.enums import AppointmentStatus, EntryMethod, enum_values

_ACTIVE_PREDICATE = text("status IN ('scheduled', 'confirmed')")


class Appointment(Base):
    """A committed booking. Written only through the appointment ledger."""
    __tablename__ = "appointments"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_appointment_range"),
        Index("ix_appointments_practitioner_date", "practitioner_id", "date"),
        # Backstop for identical concurrent inserts; range overlap is enforced under the ledger lock
        Index(
            "uq_appointments_active_start",
            "practitioner_id", "date", "start_time",
            unique=True,
            postgresql_where=_ACTIVE_PREDICATE,
            sqlite_where=_ACTIVE_PREDICATE,
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    client_id: Mapped[str] = mapped_column(String(120), nullable=False)
    practitioner_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("practitioners.id"), nullable=False)
    session_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("conversation_sessions.id"), nullable=True)
    date: Mapped[date_type] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    status: Mapped[AppointmentStatus] = mapped_column(
        Enum(
            AppointmentStatus,
            name="appointment_status_enum",
            native_enum=False,
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=AppointmentStatus.SCHEDULED,
        nullable=False,
    )
    entry_method: Mapped[EntryMethod] = mapped_column(
        Enum(EntryMethod, name="entry_method_enum", native_enum=False, values_callable=enum_values),
        nullable=False,
    )
    client_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    practitioner = relationship("Practitioner", back_populates="appointments")
