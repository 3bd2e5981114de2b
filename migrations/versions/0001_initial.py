"""Clinic tables read and patched by the drift fixer."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    tables = set(sa.inspect(bind).get_table_names())

    if "users" not in tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Text(), primary_key=True),
            sa.Column("name", sa.Text(), nullable=False),
            sa.Column("email", sa.Text(), nullable=False),
            *_timestamps(),
        )

    if "patients" not in tables:
        op.create_table(
            "patients",
            sa.Column("id", sa.Text(), primary_key=True),
            sa.Column("name", sa.Text(), nullable=False),
            sa.Column("phone_number", sa.Text(), nullable=True),
            *_timestamps(),
        )

    if "doctors" not in tables:
        op.create_table(
            "doctors",
            sa.Column("id", sa.Text(), primary_key=True),
            sa.Column("name", sa.Text(), nullable=False),
            sa.Column("specialty", sa.Text(), nullable=True),
            *_timestamps(),
        )

    if "appointments" not in tables:
        op.create_table(
            "appointments",
            sa.Column("id", sa.Text(), primary_key=True),
            sa.Column("date", sa.DateTime(), nullable=False),
            sa.Column("patient_id", sa.Text(), nullable=False),
            sa.Column("doctor_id", sa.Text(), nullable=False),
            sa.Column("appointment_price_in_cents", sa.Integer(), server_default="0", nullable=False),
            *_timestamps(),
            sa.ForeignKeyConstraint(["patient_id"], ["patients.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["doctor_id"], ["doctors.id"], ondelete="CASCADE"),
        )
        op.create_index("idx_appointments_date", "appointments", ["date"])

    if "daily_cash" not in tables:
        op.create_table(
            "daily_cash",
            sa.Column("id", sa.Text(), primary_key=True),
            sa.Column("user_id", sa.Text(), nullable=False),
            sa.Column("date", sa.DateTime(), nullable=False),
            sa.Column("opening_time", sa.DateTime(), nullable=False),
            sa.Column("closing_time", sa.DateTime(), nullable=True),
            sa.Column("status", sa.Text(), server_default="open", nullable=False),
            sa.Column("opening_amount", sa.Integer(), server_default="0", nullable=False),
            sa.Column("closing_amount", sa.Integer(), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.CheckConstraint("status IN ('open','closed')", name="ck_daily_cash_status"),
        )


def downgrade() -> None:
    op.drop_table("daily_cash")
    op.drop_index("idx_appointments_date", table_name="appointments")
    op.drop_table("appointments")
    op.drop_table("doctors")
    op.drop_table("patients")
    op.drop_table("users")
