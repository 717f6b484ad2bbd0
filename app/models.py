from __future__ import annotations

import enum
from datetime import date, datetime, time, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    SmallInteger,
    String,
    Text,
    Time,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


class RoleCode(str, enum.Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    EMPLOYEE = "EMPLOYEE"


class DeviceStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    BLOCKED = "BLOCKED"


class AttendanceActionType(str, enum.Enum):
    CHECK_IN = "CHECK_IN"
    CHECK_OUT = "CHECK_OUT"


class HrRequestType(str, enum.Enum):
    LEAVE = "LEAVE"
    OVERTIME = "OVERTIME"
    LATE_EARLY = "LATE_EARLY"


class HrRequestStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class LeaveType(str, enum.Enum):
    ANNUAL = "ANNUAL"
    SICK = "SICK"
    PERSONAL = "PERSONAL"
    MATERNITY = "MATERNITY"
    PATERNITY = "PATERNITY"
    UNPAID = "UNPAID"
    OTHER = "OTHER"


class LateEarlyType(str, enum.Enum):
    LATE = "LATE"
    EARLY = "EARLY"


class AuditActorType(str, enum.Enum):
    EMPLOYEE = "EMPLOYEE"
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


class Department(Base):
    __tablename__ = "departments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    assignments: Mapped[list[EmployeePosition]] = relationship(back_populates="department")


class Position(Base):
    __tablename__ = "positions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(150), nullable=False)
    # 1 is top management; larger numbers are more junior.
    level: Mapped[int | None] = mapped_column(SmallInteger, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    assignments: Mapped[list[EmployeePosition]] = relationship(back_populates="position")


class Employee(Base):
    __tablename__ = "employees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    annual_leave_limit: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        default=12,
        server_default=text("12"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    roles: Mapped[list[Role]] = relationship(secondary="employee_roles", back_populates="employees")
    positions: Mapped[list[EmployeePosition]] = relationship(back_populates="employee")
    devices: Mapped[list[EmployeeDevice]] = relationship(
        back_populates="employee",
        foreign_keys="EmployeeDevice.employee_id",
    )
    attendance_records: Mapped[list[AttendanceRecord]] = relationship(back_populates="employee")
    hr_requests: Mapped[list[HrRequest]] = relationship(
        back_populates="employee",
        foreign_keys="HrRequest.employee_id",
    )


class Role(Base):
    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    employees: Mapped[list[Employee]] = relationship(secondary="employee_roles", back_populates="roles")


class EmployeeRole(Base):
    __tablename__ = "employee_roles"

    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        primary_key=True,
    )
    role_id: Mapped[int] = mapped_column(
        ForeignKey("roles.id", ondelete="CASCADE"),
        primary_key=True,
    )


class EmployeePosition(Base):
    __tablename__ = "employee_positions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position_id: Mapped[int | None] = mapped_column(
        ForeignKey("positions.id", ondelete="SET NULL"),
        nullable=True,
    )
    department_id: Mapped[int | None] = mapped_column(
        ForeignKey("departments.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))

    employee: Mapped[Employee] = relationship(back_populates="positions")
    position: Mapped[Position | None] = relationship(back_populates="assignments")
    department: Mapped[Department | None] = relationship(back_populates="assignments")


class EmployeeDevice(Base):
    __tablename__ = "employee_devices"
    __table_args__ = (
        UniqueConstraint("employee_id", "device_fingerprint", name="uq_employee_devices_employee_fingerprint"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    device_fingerprint: Mapped[str] = mapped_column(String(255), nullable=False)
    device_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    device_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    os: Mapped[str | None] = mapped_column(String(100), nullable=True)
    browser: Mapped[str | None] = mapped_column(String(100), nullable=True)
    screen_resolution: Mapped[str | None] = mapped_column(String(50), nullable=True)
    timezone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    language: Mapped[str | None] = mapped_column(String(20), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[DeviceStatus] = mapped_column(
        Enum(DeviceStatus, name="device_status"),
        nullable=False,
        default=DeviceStatus.ACTIVE,
        server_default=text("'ACTIVE'"),
    )
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    registered_by: Mapped[int | None] = mapped_column(
        ForeignKey("employees.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    employee: Mapped[Employee] = relationship(back_populates="devices", foreign_keys=[employee_id])


class AttendanceChallenge(Base):
    __tablename__ = "attendance_challenges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    token: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    action_type: Mapped[AttendanceActionType] = mapped_column(
        Enum(AttendanceActionType, name="attendance_action_type"),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expected_device_fingerprint: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )


class AttendanceRecord(Base):
    __tablename__ = "attendance_records"
    __table_args__ = (
        UniqueConstraint("employee_id", "work_date", name="uq_attendance_records_employee_work_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    work_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    check_in: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    check_out: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    check_in_photo_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    check_out_photo_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    check_in_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    check_in_lon: Mapped[float | None] = mapped_column(Float, nullable=True)
    check_out_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    check_out_lon: Mapped[float | None] = mapped_column(Float, nullable=True)
    work_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    late_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    early_leave_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    verification_facts: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
    )
    device_fingerprint: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    employee: Mapped[Employee] = relationship(back_populates="attendance_records")


class WorkScheduleSettings(Base):
    __tablename__ = "work_schedule_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    standard_check_in_time: Mapped[time] = mapped_column(Time(timezone=False), nullable=False)
    standard_check_out_time: Mapped[time] = mapped_column(Time(timezone=False), nullable=False)
    monday: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    tuesday: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    wednesday: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    thursday: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    friday: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    saturday: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    sunday: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    standard_work_hours_per_day: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=8.0,
        server_default=text("8.0"),
    )
    late_tolerance_minutes: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=15,
        server_default=text("15"),
    )
    early_leave_tolerance_minutes: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=15,
        server_default=text("15"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class HrRequest(Base):
    __tablename__ = "hr_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    request_type: Mapped[HrRequestType] = mapped_column(
        Enum(HrRequestType, name="hr_request_type"),
        nullable=False,
        index=True,
    )
    status: Mapped[HrRequestStatus] = mapped_column(
        Enum(HrRequestStatus, name="hr_request_status"),
        nullable=False,
        default=HrRequestStatus.PENDING,
        server_default=text("'PENDING'"),
        index=True,
    )
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    approved_by: Mapped[int | None] = mapped_column(
        ForeignKey("employees.id", ondelete="SET NULL"),
        nullable=True,
    )
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approval_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    employee: Mapped[Employee] = relationship(back_populates="hr_requests", foreign_keys=[employee_id])
    approver: Mapped[Employee | None] = relationship(foreign_keys=[approved_by])
    leave: Mapped[LeaveRequestDetail | None] = relationship(
        back_populates="request",
        uselist=False,
        cascade="all, delete-orphan",
    )
    overtime: Mapped[OvertimeRequestDetail | None] = relationship(
        back_populates="request",
        uselist=False,
        cascade="all, delete-orphan",
    )
    late_early: Mapped[LateEarlyRequestDetail | None] = relationship(
        back_populates="request",
        uselist=False,
        cascade="all, delete-orphan",
    )

    @property
    def details(self) -> LeaveRequestDetail | OvertimeRequestDetail | LateEarlyRequestDetail | None:
        if self.request_type == HrRequestType.LEAVE:
            return self.leave
        if self.request_type == HrRequestType.OVERTIME:
            return self.overtime
        return self.late_early


class LeaveRequestDetail(Base):
    __tablename__ = "leave_request_details"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    request_id: Mapped[int] = mapped_column(
        ForeignKey("hr_requests.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    leave_type: Mapped[LeaveType] = mapped_column(Enum(LeaveType, name="leave_type"), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_days: Mapped[float] = mapped_column(Float, nullable=False)

    request: Mapped[HrRequest] = relationship(back_populates="leave")


class OvertimeRequestDetail(Base):
    __tablename__ = "overtime_request_details"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    request_id: Mapped[int] = mapped_column(
        ForeignKey("hr_requests.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    overtime_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time(timezone=False), nullable=False)
    end_time: Mapped[time] = mapped_column(Time(timezone=False), nullable=False)
    overtime_hours: Mapped[float] = mapped_column(Float, nullable=False)

    request: Mapped[HrRequest] = relationship(back_populates="overtime")


class LateEarlyRequestDetail(Base):
    __tablename__ = "late_early_request_details"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    request_id: Mapped[int] = mapped_column(
        ForeignKey("hr_requests.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    late_early_date: Mapped[date] = mapped_column(Date, nullable=False)
    late_early_type: Mapped[LateEarlyType] = mapped_column(
        Enum(LateEarlyType, name="late_early_type"),
        nullable=False,
    )
    actual_time: Mapped[time | None] = mapped_column(Time(timezone=False), nullable=True)
    minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)

    request: Mapped[HrRequest] = relationship(back_populates="late_early")


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    actor_type: Mapped[AuditActorType] = mapped_column(
        Enum(AuditActorType, name="audit_actor_type"),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    entity_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ip: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
    )
