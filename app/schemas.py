from datetime import date, datetime, time
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.models import (
    AttendanceActionType,
    AuditActorType,
    DeviceStatus,
    HrRequest,
    HrRequestStatus,
    HrRequestType,
    LateEarlyType,
    LeaveType,
)


class LoginRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class LoginResponse(BaseModel):
    access_token: str
    token_type: Literal["bearer"] = "bearer"
    expires_in: int
    employee_id: int
    roles: list[str]


class MeResponse(BaseModel):
    employee_id: int
    email: str | None
    roles: list[str]


class DeviceMetadata(BaseModel):
    device_name: str | None = Field(default=None, max_length=100)
    device_type: str | None = Field(default=None, max_length=50)
    os: str | None = Field(default=None, max_length=100)
    browser: str | None = Field(default=None, max_length=100)
    screen_resolution: str | None = Field(default=None, max_length=50)
    timezone: str | None = Field(default=None, max_length=50)
    language: str | None = Field(default=None, max_length=20)
    user_agent: str | None = None


class ChallengeRequest(DeviceMetadata):
    device_fingerprint: str = Field(min_length=1, max_length=255)
    action_type: AttendanceActionType


class OfficeLocationRead(BaseModel):
    latitude: float
    longitude: float
    radius_meters: int


class ChallengeResponse(BaseModel):
    token: str
    expires_at: datetime
    office_location: OfficeLocationRead
    device_status: Literal["registered", "pending", "new"]
    device_message: str | None = None


class AttendanceSubmitRequest(BaseModel):
    action_type: AttendanceActionType
    device_fingerprint: str = Field(min_length=1, max_length=255)
    challenge_token: str | None = Field(default=None, max_length=255)
    photo_url: str | None = None
    lat: float | None = Field(default=None, ge=-90, le=90)
    lon: float | None = Field(default=None, ge=-180, le=180)
    gps_accuracy: float | None = Field(default=None, ge=0, le=1000)
    note: str | None = Field(default=None, max_length=2000)


class AttendanceResultResponse(BaseModel):
    id: int
    action_type: AttendanceActionType
    timestamp: datetime
    is_within_geofence: bool | None = None
    distance_from_office: int | None = None
    device_verified: bool
    photo_captured: bool
    is_verified: bool
    verification_notes: str
    late_minutes: int | None = None
    early_leave_minutes: int | None = None


class TodayStatusResponse(BaseModel):
    date: date
    is_working_day: bool = True
    has_checked_in: bool
    has_checked_out: bool
    check_in_time: datetime | None = None
    check_out_time: datetime | None = None
    check_in_photo_url: str | None = None
    check_out_photo_url: str | None = None
    work_hours: float | None = None
    late_minutes: int | None = None
    early_leave_minutes: int | None = None
    is_verified: bool | None = None


class DeviceRegisterRequest(DeviceMetadata):
    device_fingerprint: str = Field(min_length=1, max_length=255)
    is_primary: bool = False


class DeviceStatusUpdateRequest(BaseModel):
    status: DeviceStatus


class DeviceRead(BaseModel):
    id: int
    employee_id: int
    device_fingerprint: str
    device_name: str | None
    device_type: str | None
    os: str | None
    browser: str | None
    status: DeviceStatus
    is_primary: bool
    last_used_at: datetime | None
    last_ip_address: str | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AttendanceRecordRead(BaseModel):
    id: int
    employee_id: int
    work_date: date
    check_in: datetime | None
    check_out: datetime | None
    check_in_photo_url: str | None
    check_out_photo_url: str | None
    work_hours: float | None
    late_minutes: int
    early_leave_minutes: int
    is_verified: bool
    verification_facts: list[dict[str, Any]] = Field(default_factory=list)
    verification_notes: str = ""
    note: str | None

    model_config = ConfigDict(from_attributes=True)


class AttendanceRecordPage(BaseModel):
    data: list[AttendanceRecordRead]
    total: int
    page: int
    page_size: int
    total_pages: int


class AttendanceRecordUpdateRequest(BaseModel):
    check_in: datetime | None = None
    check_out: datetime | None = None
    late_minutes: int | None = Field(default=None, ge=0)
    early_leave_minutes: int | None = Field(default=None, ge=0)
    note: str | None = Field(default=None, max_length=2000)


class AttendanceRecordCreateRequest(BaseModel):
    employee_id: int = Field(ge=1)
    work_date: date
    check_in: datetime | None = None
    check_out: datetime | None = None
    late_minutes: int | None = Field(default=None, ge=0)
    early_leave_minutes: int | None = Field(default=None, ge=0)
    note: str | None = Field(default=None, max_length=2000)


class OnBehalfAttendanceRequest(BaseModel):
    note: str | None = Field(default=None, max_length=2000)


class WorkScheduleRead(BaseModel):
    id: int
    standard_check_in_time: time
    standard_check_out_time: time
    monday: bool
    tuesday: bool
    wednesday: bool
    thursday: bool
    friday: bool
    saturday: bool
    sunday: bool
    standard_work_hours_per_day: float
    late_tolerance_minutes: int
    early_leave_tolerance_minutes: int

    model_config = ConfigDict(from_attributes=True)


class WorkScheduleUpdate(BaseModel):
    standard_check_in_time: time | None = None
    standard_check_out_time: time | None = None
    monday: bool | None = None
    tuesday: bool | None = None
    wednesday: bool | None = None
    thursday: bool | None = None
    friday: bool | None = None
    saturday: bool | None = None
    sunday: bool | None = None
    standard_work_hours_per_day: float | None = Field(default=None, gt=0, le=24)
    late_tolerance_minutes: int | None = Field(default=None, ge=0, le=240)
    early_leave_tolerance_minutes: int | None = Field(default=None, ge=0, le=240)


class LeaveCreateRequest(BaseModel):
    employee_id: int | None = Field(default=None, ge=1)
    leave_type: LeaveType
    start_date: date
    end_date: date
    reason: str | None = Field(default=None, max_length=2000)


class OvertimeCreateRequest(BaseModel):
    employee_id: int | None = Field(default=None, ge=1)
    date: date
    start_time: time
    end_time: time
    reason: str | None = Field(default=None, max_length=2000)


class LateEarlyCreateRequest(BaseModel):
    employee_id: int | None = Field(default=None, ge=1)
    date: date
    type: LateEarlyType
    actual_time: time | None = None
    minutes: int | None = Field(default=None, ge=0)
    reason: str | None = Field(default=None, max_length=2000)


class HrRequestUpdateRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)
    leave_type: LeaveType | None = None
    start_date: date | None = None
    end_date: date | None = None
    overtime_date: date | None = None
    start_time: time | None = None
    end_time: time | None = None
    late_early_date: date | None = None
    late_early_type: LateEarlyType | None = None
    actual_time: time | None = None
    minutes: int | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _require_any_field(self) -> "HrRequestUpdateRequest":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self


class HrRequestDecision(BaseModel):
    note: str | None = Field(default=None, max_length=2000)


class LeaveDetailsRead(BaseModel):
    request_type: Literal["LEAVE"] = "LEAVE"
    leave_type: LeaveType
    start_date: date
    end_date: date
    total_days: float


class OvertimeDetailsRead(BaseModel):
    request_type: Literal["OVERTIME"] = "OVERTIME"
    overtime_date: date
    start_time: time
    end_time: time
    overtime_hours: float


class LateEarlyDetailsRead(BaseModel):
    request_type: Literal["LATE_EARLY"] = "LATE_EARLY"
    late_early_date: date
    late_early_type: LateEarlyType
    actual_time: time | None = None
    minutes: int | None = None


HrRequestDetailsRead = Annotated[
    Union[LeaveDetailsRead, OvertimeDetailsRead, LateEarlyDetailsRead],
    Field(discriminator="request_type"),
]


class HrRequestRead(BaseModel):
    id: int
    employee_id: int
    employee_name: str | None = None
    request_type: HrRequestType
    status: HrRequestStatus
    reason: str | None = None
    approved_by: int | None = None
    approved_at: datetime | None = None
    approval_note: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    details: HrRequestDetailsRead | None = None

    @classmethod
    def from_model(cls, request: HrRequest) -> "HrRequestRead":
        details: dict[str, Any] | None = None
        if request.request_type == HrRequestType.LEAVE and request.leave is not None:
            details = {
                "request_type": "LEAVE",
                "leave_type": request.leave.leave_type,
                "start_date": request.leave.start_date,
                "end_date": request.leave.end_date,
                "total_days": request.leave.total_days,
            }
        elif request.request_type == HrRequestType.OVERTIME and request.overtime is not None:
            details = {
                "request_type": "OVERTIME",
                "overtime_date": request.overtime.overtime_date,
                "start_time": request.overtime.start_time,
                "end_time": request.overtime.end_time,
                "overtime_hours": request.overtime.overtime_hours,
            }
        elif request.request_type == HrRequestType.LATE_EARLY and request.late_early is not None:
            details = {
                "request_type": "LATE_EARLY",
                "late_early_date": request.late_early.late_early_date,
                "late_early_type": request.late_early.late_early_type,
                "actual_time": request.late_early.actual_time,
                "minutes": request.late_early.minutes,
            }

        employee = request.employee
        return cls(
            id=request.id,
            employee_id=request.employee_id,
            employee_name=employee.full_name if employee is not None else None,
            request_type=request.request_type,
            status=request.status,
            reason=request.reason,
            approved_by=request.approved_by,
            approved_at=request.approved_at,
            approval_note=request.approval_note,
            created_at=request.created_at,
            updated_at=request.updated_at,
            details=details,
        )


class LeaveBalanceRead(BaseModel):
    limit: int
    used: float
    remaining: float
    year: int


class DeleteResponse(BaseModel):
    ok: bool
    id: int


class AuditLogRead(BaseModel):
    id: int
    ts_utc: datetime
    actor_type: AuditActorType
    actor_id: str
    action: str
    entity_type: str | None = None
    entity_id: str | None = None
    ip: str | None = None
    user_agent: str | None = None
    success: bool
    details: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(from_attributes=True)
