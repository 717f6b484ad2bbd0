"""HR request header and per-type detail tables

Revision ID: 0003_hr_requests
Revises: 0002_attendance_verification
Create Date: 2026-10-01 00:20:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0003_hr_requests"
down_revision: Union[str, None] = "0002_attendance_verification"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

hr_request_type = postgresql.ENUM(
    "LEAVE",
    "OVERTIME",
    "LATE_EARLY",
    name="hr_request_type",
    create_type=False,
)
hr_request_status = postgresql.ENUM(
    "PENDING",
    "APPROVED",
    "REJECTED",
    "CANCELLED",
    name="hr_request_status",
    create_type=False,
)
leave_type = postgresql.ENUM(
    "ANNUAL",
    "SICK",
    "PERSONAL",
    "MATERNITY",
    "PATERNITY",
    "UNPAID",
    "OTHER",
    name="leave_type",
    create_type=False,
)
late_early_type = postgresql.ENUM(
    "LATE",
    "EARLY",
    name="late_early_type",
    create_type=False,
)


def upgrade() -> None:
    bind = op.get_bind()
    hr_request_type.create(bind, checkfirst=True)
    hr_request_status.create(bind, checkfirst=True)
    leave_type.create(bind, checkfirst=True)
    late_early_type.create(bind, checkfirst=True)

    op.create_table(
        "hr_requests",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("request_type", hr_request_type, nullable=False),
        sa.Column("status", hr_request_status, nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("approved_by", sa.Integer(), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approval_note", sa.Text(), nullable=True),
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
        sa.ForeignKeyConstraint(["approved_by"], ["employees.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_hr_requests_employee_id", "hr_requests", ["employee_id"], unique=False)
    op.create_index("ix_hr_requests_request_type", "hr_requests", ["request_type"], unique=False)
    op.create_index("ix_hr_requests_status", "hr_requests", ["status"], unique=False)

    op.create_table(
        "leave_request_details",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("request_id", sa.Integer(), nullable=False),
        sa.Column("leave_type", leave_type, nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("total_days", sa.Float(), nullable=False),
        sa.ForeignKeyConstraint(["request_id"], ["hr_requests.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("request_id", name="uq_leave_request_details_request_id"),
    )
    op.create_index(
        "ix_leave_request_details_start_date",
        "leave_request_details",
        ["start_date"],
        unique=False,
    )

    op.create_table(
        "overtime_request_details",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("request_id", sa.Integer(), nullable=False),
        sa.Column("overtime_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("overtime_hours", sa.Float(), nullable=False),
        sa.ForeignKeyConstraint(["request_id"], ["hr_requests.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("request_id", name="uq_overtime_request_details_request_id"),
    )

    op.create_table(
        "late_early_request_details",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("request_id", sa.Integer(), nullable=False),
        sa.Column("late_early_date", sa.Date(), nullable=False),
        sa.Column("late_early_type", late_early_type, nullable=False),
        sa.Column("actual_time", sa.Time(), nullable=True),
        sa.Column("minutes", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["request_id"], ["hr_requests.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("request_id", name="uq_late_early_request_details_request_id"),
    )


def downgrade() -> None:
    op.drop_table("late_early_request_details")
    op.drop_table("overtime_request_details")
    op.drop_index("ix_leave_request_details_start_date", table_name="leave_request_details")
    op.drop_table("leave_request_details")
    op.drop_index("ix_hr_requests_status", table_name="hr_requests")
    op.drop_index("ix_hr_requests_request_type", table_name="hr_requests")
    op.drop_index("ix_hr_requests_employee_id", table_name="hr_requests")
    op.drop_table("hr_requests")

    bind = op.get_bind()
    late_early_type.drop(bind, checkfirst=True)
    leave_type.drop(bind, checkfirst=True)
    hr_request_status.drop(bind, checkfirst=True)
    hr_request_type.drop(bind, checkfirst=True)
