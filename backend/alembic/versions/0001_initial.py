"""initial availability and booking tables

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

ACTIVE_SLOT_WHERE = sa.text("status <> 'cancelled'")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.Text, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.Text, server_default=sa.text("CURRENT_TIMESTAMP")),
    ]


def _booking_table(name: str) -> None:
    op.create_table(
        name,
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column(
            "psychologist_id",
            sa.Integer,
            sa.ForeignKey("psychologists.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("client_id", sa.Integer),
        sa.Column("scheduled_date", sa.Text, nullable=False),
        sa.Column("scheduled_time", sa.Text, nullable=False),
        sa.Column("status", sa.Text, nullable=False, server_default=sa.text("'booked'")),
        sa.Column("reminder_sent", sa.Integer, nullable=False, server_default=sa.text("0")),
        *_timestamps(),
    )
    # one active booking per slot and table
    op.create_index(
        f"uq_{name}_active_slot",
        name,
        ["psychologist_id", "scheduled_date", "scheduled_time"],
        unique=True,
        sqlite_where=ACTIVE_SLOT_WHERE,
        postgresql_where=ACTIVE_SLOT_WHERE,
    )


def upgrade() -> None:
    op.create_table(
        "psychologists",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("first_name", sa.Text, nullable=False),
        sa.Column("last_name", sa.Text),
        sa.Column("email", sa.Text),
        sa.Column("google_calendar_credentials", sa.Text),
        sa.Column("calendar_needs_reconnect", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.Text, server_default=sa.text("CURRENT_TIMESTAMP")),
    )

    op.create_table(
        "availability",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column(
            "psychologist_id",
            sa.Integer,
            sa.ForeignKey("psychologists.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("date", sa.Text, nullable=False),
        sa.Column("time_slots", sa.Text, nullable=False, server_default=sa.text("'[]'")),
        sa.Column("is_available", sa.Integer, nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.UniqueConstraint("psychologist_id", "date"),
    )

    op.create_table(
        "psychologist_recurring_blocks",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column(
            "psychologist_id",
            sa.Integer,
            sa.ForeignKey("psychologists.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("day_of_week", sa.Integer, nullable=False),
        sa.Column("block_entire_day", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("time_slots", sa.Text, nullable=False, server_default=sa.text("'[]'")),
        *_timestamps(),
        sa.UniqueConstraint("psychologist_id", "day_of_week"),
    )

    _booking_table("sessions")
    _booking_table("assessment_sessions")

    op.create_table(
        "slot_claims",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column(
            "psychologist_id",
            sa.Integer,
            sa.ForeignKey("psychologists.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("scheduled_date", sa.Text, nullable=False),
        sa.Column("scheduled_time", sa.Text, nullable=False),
        sa.Column("booking_kind", sa.Text, nullable=False),
        sa.Column("booking_id", sa.Integer, nullable=False),
        sa.Column("created_at", sa.Text, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.UniqueConstraint("psychologist_id", "scheduled_date", "scheduled_time"),
        sa.UniqueConstraint("booking_kind", "booking_id"),
    )


def downgrade() -> None:
    op.drop_table("slot_claims")
    op.drop_index("uq_assessment_sessions_active_slot", table_name="assessment_sessions")
    op.drop_table("assessment_sessions")
    op.drop_index("uq_sessions_active_slot", table_name="sessions")
    op.drop_table("sessions")
    op.drop_table("psychologist_recurring_blocks")
    op.drop_table("availability")
    op.drop_table("psychologists")
