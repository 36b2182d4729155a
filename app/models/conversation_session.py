import uuid
from datetime import datetime
from sqlalchemy import String, DateTime, ForeignKey, Enum, Index, JSON, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.core.timeutils import utcnow
from app.models.enums import EntryMethod, SessionStatus, SessionStep, enum_values


class ConversationSession(Base):
    """One client's progress through the booking conversation, independent of channel."""
    __tablename__ = "conversation_sessions"
    __table_args__ = (
        Index("ix_conversation_sessions_identity", "channel_identity", "practitioner_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    channel_identity: Mapped[str] = mapped_column(String(120), nullable=False)
    practitioner_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("practitioners.id"), nullable=False)
    status: Mapped[SessionStatus] = mapped_column(
        Enum(SessionStatus, name="session_status_enum", native_enum=False, values_callable=enum_values),
        default=SessionStatus.ACTIVE,
        nullable=False,
    )
    entry_method: Mapped[EntryMethod] = mapped_column(
        Enum(EntryMethod, name="entry_method_enum", native_enum=False, values_callable=enum_values),
        nullable=False,
    )
    appointment_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    state = relationship("SessionState", back_populates="session", uselist=False)


class SessionState(Base):
    """The single current step of a session. Replaced in place on every transition."""
    __tablename__ = "session_states"
    __table_args__ = (
        Index("ix_session_states_last_updated", "last_updated"),
    )

    session_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("conversation_sessions.id"), primary_key=True)
    current_step: Mapped[SessionStep] = mapped_column(
        Enum(SessionStep, name="session_step_enum", native_enum=False, values_callable=enum_values),
        default=SessionStep.WELCOME,
        nullable=False,
    )
    context: Mapped[dict] = mapped_column(JSON().with_variant(JSONB, "postgresql"), default=dict, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    session = relationship("ConversationSession", back_populates="state")
