"""Device registry, attendance challenges, attendance records and work schedule

Revision ID: 0002_attendance_verification
Revises: 0001_org_auth_audit
Create Date: 2026-10-01 00:10:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0002_attendance_verification"
down_revision: Union[str, None] = "0001_org_auth_audit"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

device_status = postgresql.ENUM(
    "ACTIVE",
    "INACTIVE",
    "BLOCKED",
    name="device_status",
    create_type=False,
)
attendance_action_type = postgresql.ENUM(
    "CHECK_IN",
    "CHECK_OUT",
    name="attendance_action_type",
    create_type=False,
)


def upgrade() -> None:
    bind = op.get_bind()
    device_status.create(bind, checkfirst=True)
    attendance_action_type.create(bind, checkfirst=True)

    op.create_table(
        "employee_devices",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("device_fingerprint", sa.String(length=255), nullable=False),
        sa.Column("device_name", sa.String(length=100), nullable=True),
        sa.Column("device_type", sa.String(length=50), nullable=True),
        sa.Column("os", sa.String(length=100), nullable=True),
        sa.Column("browser", sa.String(length=100), nullable=True),
        sa.Column("screen_resolution", sa.String(length=50), nullable=True),
        sa.Column("timezone", sa.String(length=50), nullable=True),
        sa.Column("language", sa.String(length=20), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("status", device_status, nullable=False, server_default=sa.text("'ACTIVE'")),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_ip_address", sa.String(length=45), nullable=True),
        sa.Column("registered_by", sa.Integer(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["registered_by"], ["employees.id"], ondelete="SET NULL"),
        sa.UniqueConstraint(
            "employee_id",
            "device_fingerprint",
            name="uq_employee_devices_employee_fingerprint",
        ),
    )
    op.create_index("ix_employee_devices_employee_id", "employee_devices", ["employee_id"], unique=False)

    op.create_table(
        "attendance_challenges",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("token", sa.String(length=255), nullable=False),
        sa.Column("action_type", attendance_action_type, nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_used", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expected_device_fingerprint", sa.String(length=255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_attendance_challenges_token", "attendance_challenges", ["token"], unique=True)
    op.create_index(
        "ix_attendance_challenges_employee_id",
        "attendance_challenges",
        ["employee_id"],
        unique=False,
    )

    op.create_table(
        "attendance_records",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("work_date", sa.Date(), nullable=False),
        sa.Column("check_in", sa.DateTime(timezone=True), nullable=True),
        sa.Column("check_out", sa.DateTime(timezone=True), nullable=True),
        sa.Column("check_in_photo_url", sa.Text(), nullable=True),
        sa.Column("check_out_photo_url", sa.Text(), nullable=True),
        sa.Column("check_in_lat", sa.Float(), nullable=True),
        sa.Column("check_in_lon", sa.Float(), nullable=True),
        sa.Column("check_out_lat", sa.Float(), nullable=True),
        sa.Column("check_out_lon", sa.Float(), nullable=True),
        sa.Column("work_hours", sa.Float(), nullable=True),
        sa.Column("late_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("early_leave_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "verification_facts",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("device_fingerprint", sa.String(length=255), nullable=True),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "employee_id",
            "work_date",
            name="uq_attendance_records_employee_work_date",
        ),
    )
    op.create_index("ix_attendance_records_employee_id", "attendance_records", ["employee_id"], unique=False)
    op.create_index("ix_attendance_records_work_date", "attendance_records", ["work_date"], unique=False)

    op.create_table(
        "work_schedule_settings",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("standard_check_in_time", sa.Time(), nullable=False),
        sa.Column("standard_check_out_time", sa.Time(), nullable=False),
        sa.Column("monday", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("tuesday", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("wednesday", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("thursday", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("friday", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("saturday", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("sunday", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("standard_work_hours_per_day", sa.Float(), nullable=False, server_default=sa.text("8.0")),
        sa.Column("late_tolerance_minutes", sa.Integer(), nullable=False, server_default=sa.text("15")),
        sa.Column("early_leave_tolerance_minutes", sa.Integer(), nullable=False, server_default=sa.text("15")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )


def downgrade() -> None:
    op.drop_table("work_schedule_settings")
    op.drop_index("ix_attendance_records_work_date", table_name="attendance_records")
    op.drop_index("ix_attendance_records_employee_id", table_name="attendance_records")
    op.drop_table("attendance_records")
    op.drop_index("ix_attendance_challenges_employee_id", table_name="attendance_challenges")
    op.drop_index("ix_attendance_challenges_token", table_name="attendance_challenges")
    op.drop_table("attendance_challenges")
    op.drop_index("ix_employee_devices_employee_id", table_name="employee_devices")
    op.drop_table("employee_devices")

    bind = op.get_bind()
    attendance_action_type.drop(bind, checkfirst=True)
    device_status.drop(bind, checkfirst=True)
