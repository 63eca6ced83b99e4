"""create booking tables

Revision ID: a1f3c2d4e5b6
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "a1f3c2d4e5b6"
down_revision = None
branch_labels = None
depends_on = None

BLOCKING_SQL = "status IN ('pending_payment', 'pending_approval', 'confirmed', 'approved', 'completed')"


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_index(op.f("ix_users_id"), "users", ["id"], unique=False)

    op.create_table(
        "doctors",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("cancellation_policy", sa.String(), nullable=False),
        sa.Column("consultation_types", sa.JSON(), nullable=False),
        sa.Column("consultation_fee_cents", sa.Integer(), nullable=False),
        sa.Column("video_consultation_fee_cents", sa.Integer(), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("default_slot_duration_minutes", sa.Integer(), nullable=False),
        sa.Column("requires_approval", sa.Boolean(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
    )
    op.create_index(op.f("ix_doctors_id"), "doctors", ["id"], unique=False)

    op.create_table(
        "availability_schedules",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("doctor_id", sa.Integer(), nullable=False),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("slot_duration_minutes", sa.Integer(), nullable=False),
        sa.Column("consultation_type", sa.String(), nullable=False),
        sa.ForeignKeyConstraint(["doctor_id"], ["doctors.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_availability_schedules_id"), "availability_schedules", ["id"], unique=False)
    op.create_index(op.f("ix_availability_schedules_doctor_id"), "availability_schedules", ["doctor_id"], unique=False)

    op.create_table(
        "availability_overrides",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("doctor_id", sa.Integer(), nullable=False),
        sa.Column("override_date", sa.Date(), nullable=False),
        sa.Column("is_blocked", sa.Boolean(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=True),
        sa.Column("end_time", sa.Time(), nullable=True),
        sa.ForeignKeyConstraint(["doctor_id"], ["doctors.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_availability_overrides_id"), "availability_overrides", ["id"], unique=False)
    op.create_index(op.f("ix_availability_overrides_doctor_id"), "availability_overrides", ["doctor_id"], unique=False)
    op.create_index("ix_availability_overrides_doctor_date", "availability_overrides", ["doctor_id", "override_date"], unique=False)

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("doctor_id", sa.Integer(), nullable=False),
        sa.Column("patient_id", sa.Integer(), nullable=False),
        sa.Column("appointment_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("consultation_type", sa.String(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("patient_notes", sa.Text(), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("consultation_fee_cents", sa.Integer(), nullable=False),
        sa.Column("platform_fee_cents", sa.Integer(), nullable=False),
        sa.Column("total_amount_cents", sa.Integer(), nullable=False),
        sa.Column("refund_percent", sa.Integer(), nullable=True),
        sa.Column("refund_amount_cents", sa.Integer(), nullable=True),
        sa.Column("cancellation_reason", sa.String(length=500), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("confirmed_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["doctor_id"], ["doctors.id"]),
        sa.ForeignKeyConstraint(["patient_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_bookings_id"), "bookings", ["id"], unique=False)
    op.create_index(op.f("ix_bookings_patient_id"), "bookings", ["patient_id"], unique=False)
    op.create_index("ix_bookings_doctor_date", "bookings", ["doctor_id", "appointment_date"], unique=False)
    op.create_index(
        "uq_bookings_doctor_slot_active",
        "bookings",
        ["doctor_id", "appointment_date", "start_time"],
        unique=True,
        postgresql_where=sa.text(BLOCKING_SQL),
        sqlite_where=sa.text(BLOCKING_SQL),
    )

    op.create_table(
        "doctor_day_locks",
        sa.Column("doctor_id", sa.Integer(), nullable=False),
        sa.Column("lock_date", sa.Date(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["doctor_id"], ["doctors.id"]),
        sa.PrimaryKeyConstraint("doctor_id", "lock_date"),
    )


def downgrade():
    op.drop_table("doctor_day_locks")

    op.drop_index("uq_bookings_doctor_slot_active", table_name="bookings")
    op.drop_index("ix_bookings_doctor_date", table_name="bookings")
    op.drop_index(op.f("ix_bookings_patient_id"), table_name="bookings")
    op.drop_index(op.f("ix_bookings_id"), table_name="bookings")
    op.drop_table("bookings")

    op.drop_index("ix_availability_overrides_doctor_date", table_name="availability_overrides")
    op.drop_index(op.f("ix_availability_overrides_doctor_id"), table_name="availability_overrides")
    op.drop_index(op.f("ix_availability_overrides_id"), table_name="availability_overrides")
    op.drop_table("availability_overrides")

    op.drop_index(op.f("ix_availability_schedules_doctor_id"), table_name="availability_schedules")
    op.drop_index(op.f("ix_availability_schedules_id"), table_name="availability_schedules")
    op.drop_table("availability_schedules")

    op.drop_index(op.f("ix_doctors_id"), table_name="doctors")
    op.drop_table("doctors")

    op.drop_index(op.f("ix_users_id"), table_name="users")
    op.drop_table("users")
