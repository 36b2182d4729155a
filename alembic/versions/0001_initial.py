"""initial scheduling tables

Revision ID: 0001
Revises:
Create Date: 2030-01-01 00:00:00

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

ACTIVE_PREDICATE = sa.text("status IN ('scheduled', 'confirmed')")


def upgrade() -> None:
    op.create_table(
        "practitioners",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("display_name", sa.String(200), nullable=False),
        sa.Column("timezone", sa.String(64), nullable=False),
        sa.Column("default_slot_minutes", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "availability_windows",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("practitioner_id", sa.Uuid(), sa.ForeignKey("practitioners.id"), nullable=False),
        sa.Column("day_of_week", sa.SmallInteger(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("start_time < end_time", name="ck_availability_window_range"),
        sa.CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_availability_window_day"),
    )
    op.create_index(
        "ix_availability_windows_practitioner_day",
        "availability_windows", ["practitioner_id", "day_of_week"],
    )

    op.create_table(
        "conversation_sessions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("channel_identity", sa.String(120), nullable=False),
        sa.Column("practitioner_id", sa.Uuid(), sa.ForeignKey("practitioners.id"), nullable=False),
        sa.Column("status", sa.String(9), nullable=False),
        sa.Column("entry_method", sa.String(4), nullable=False),
        sa.Column("appointment_id", sa.Uuid(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_conversation_sessions_identity",
        "conversation_sessions", ["channel_identity", "practitioner_id", "status"],
    )

    op.create_table(
        "session_states",
        sa.Column("session_id", sa.Uuid(), sa.ForeignKey("conversation_sessions.id"), primary_key=True),
        sa.Column("current_step", sa.String(18), nullable=False),
        sa.Column("context", sa.JSON().with_variant(postgresql.JSONB(), "postgresql"), nullable=False),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_session_states_last_updated", "session_states", ["last_updated"])

    op.create_table(
        "appointments",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("client_id", sa.String(120), nullable=False),
        sa.Column("practitioner_id", sa.Uuid(), sa.ForeignKey("practitioners.id"), nullable=False),
        sa.Column("session_id", sa.Uuid(), sa.ForeignKey("conversation_sessions.id"), nullable=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("status", sa.String(9), nullable=False),
        sa.Column("entry_method", sa.String(4), nullable=False),
        sa.Column("client_name", sa.String(120), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("start_time < end_time", name="ck_appointment_range"),
    )
    op.create_index("ix_appointments_practitioner_date", "appointments", ["practitioner_id", "date"])
    op.create_index(
        "uq_appointments_active_start",
        "appointments", ["practitioner_id", "date", "start_time"],
        unique=True,
        postgresql_where=ACTIVE_PREDICATE,
        sqlite_where=ACTIVE_PREDICATE,
    )


def downgrade() -> None:
    op.drop_index("uq_appointments_active_start", table_name="appointments")
    op.drop_index("ix_appointments_practitioner_date", table_name="appointments")
    op.drop_table("appointments")
    op.drop_index("ix_session_states_last_updated", table_name="session_states")
    op.drop_table("session_states")
    op.drop_index("ix_conversation_sessions_identity", table_name="conversation_sessions")
    op.drop_table("conversation_sessions")
    op.drop_index("ix_availability_windows_practitioner_day", table_name="availability_windows")
    op.drop_table("availability_windows")
    op.drop_table("practitioners")
