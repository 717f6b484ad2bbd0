from datetime import date

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.audit import audit_request, client_ip
from app.db import get_db
from app.errors import ApiError
from app.models import AttendanceActionType, AttendanceRecord, AuditLog, DeviceStatus, RoleCode
from app.schemas import (
    AttendanceRecordCreateRequest,
    AttendanceRecordPage,
    AttendanceRecordRead,
    AttendanceRecordUpdateRequest,
    AuditLogRead,
    DeleteResponse,
    DeviceRead,
    DeviceRegisterRequest,
    DeviceStatusUpdateRequest,
    OnBehalfAttendanceRequest,
    WorkScheduleRead,
    WorkScheduleUpdate,
)
from app.security import CurrentUser, require_roles
from app.services.attendance import (
    create_attendance_record,
    delete_attendance_record,
    get_attendance_record,
    list_attendance_records,
    record_on_behalf,
    to_record_read,
    update_attendance_record,
)
from app.services.devices import delete_device, list_devices, register_device, set_device_status
from app.services.policy import resolve_org_facts, subordinate_employee_ids
from app.services.work_schedule import get_work_schedule, update_work_schedule

router = APIRouter(prefix="/api/admin", tags=["admin"])

require_staff = require_roles(RoleCode.SUPER_ADMIN, RoleCode.ADMIN, RoleCode.MANAGER)
require_admin = require_roles(RoleCode.SUPER_ADMIN, RoleCode.ADMIN)


def _visible_attendance_employee_ids(db: Session, current_user: CurrentUser) -> set[int] | None:
    # Managers without an admin role only see their own and their subordinates' records.
    if current_user.has_role(RoleCode.SUPER_ADMIN, RoleCode.ADMIN):
        return None
    manager = resolve_org_facts(db, current_user.id, current_user.roles)
    return subordinate_employee_ids(db, manager) | {current_user.id}


def _get_visible_record(db: Session, current_user: CurrentUser, record_id: int) -> AttendanceRecord:
    record = get_attendance_record(db, record_id)
    visible = _visible_attendance_employee_ids(db, current_user)
    if visible is not None and record.employee_id not in visible:
        raise ApiError(
            status_code=404,
            code="ATTENDANCE_RECORD_NOT_FOUND",
            message="Attendance record not found.",
        )
    return record


def _ensure_attendance_scope(db: Session, current_user: CurrentUser, employee_id: int) -> None:
    visible = _visible_attendance_employee_ids(db, current_user)
    if visible is not None and employee_id not in visible:
        raise ApiError(
            status_code=403,
            code="ATTENDANCE_SCOPE_FORBIDDEN",
            message="You can only manage attendance for your own team.",
        )


@router.get("/devices", response_model=list[DeviceRead], dependencies=[Depends(require_staff)])
def admin_list_devices(
    employee_id: int | None = Query(default=None, ge=1),
    device_status: DeviceStatus | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
) -> list[DeviceRead]:
    devices = list_devices(db, employee_id=employee_id, status=device_status)
    return [DeviceRead.model_validate(device) for device in devices]


@router.post(
    "/employees/{employee_id}/devices",
    response_model=DeviceRead,
    status_code=status.HTTP_201_CREATED,
)
def admin_register_device(
    employee_id: int,
    payload: DeviceRegisterRequest,
    request: Request,
    current_user: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> DeviceRead:
    device = register_device(
        db,
        employee_id=employee_id,
        device_fingerprint=payload.device_fingerprint,
        metadata=payload,
        is_primary=payload.is_primary,
        registered_by=current_user.id,
        ip_address=client_ip(request),
    )
    audit_request(
        db,
        request,
        action="DEVICE_REGISTERED",
        entity_type="employee_device",
        entity_id=device.id,
        details={"employee_id": employee_id, "is_primary": device.is_primary},
    )
    return DeviceRead.model_validate(device)


@router.patch("/devices/{device_id}/status", response_model=DeviceRead)
def admin_update_device_status(
    device_id: int,
    payload: DeviceStatusUpdateRequest,
    request: Request,
    _: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> DeviceRead:
    device = set_device_status(db, device_id, payload.status)
    audit_request(
        db,
        request,
        action="DEVICE_STATUS_UPDATED",
        entity_type="employee_device",
        entity_id=device.id,
        details={"employee_id": device.employee_id, "status": device.status.value},
    )
    return DeviceRead.model_validate(device)


@router.delete("/devices/{device_id}", response_model=DeleteResponse)
def admin_delete_device(
    device_id: int,
    request: Request,
    _: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> DeleteResponse:
    device = delete_device(db, device_id)
    audit_request(
        db,
        request,
        action="DEVICE_DELETED",
        entity_type="employee_device",
        entity_id=device_id,
        details={"employee_id": device.employee_id},
    )
    return DeleteResponse(ok=True, id=device_id)


@router.get("/attendance", response_model=AttendanceRecordPage)
def admin_list_attendance(
    employee_id: int | None = Query(default=None, ge=1),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=500),
    current_user: CurrentUser = Depends(require_staff),
    db: Session = Depends(get_db),
) -> AttendanceRecordPage:
    return list_attendance_records(
        db,
        employee_id=employee_id,
        employee_ids=_visible_attendance_employee_ids(db, current_user),
        start_date=start_date,
        end_date=end_date,
        page=page,
        page_size=page_size,
    )


@router.post("/attendance", response_model=AttendanceRecordRead, status_code=status.HTTP_201_CREATED)
def admin_create_attendance(
    payload: AttendanceRecordCreateRequest,
    request: Request,
    current_user: CurrentUser = Depends(require_staff),
    db: Session = Depends(get_db),
) -> AttendanceRecordRead:
    _ensure_attendance_scope(db, current_user, payload.employee_id)
    record = create_attendance_record(db, payload)
    request.state.employee_id = record.employee_id
    request.state.attendance_record_id = record.id
    audit_request(
        db,
        request,
        action="ATTENDANCE_RECORD_CREATED",
        entity_type="attendance_record",
        entity_id=record.id,
        details={"employee_id": record.employee_id, "work_date": record.work_date.isoformat()},
    )
    return to_record_read(record)


def _clock_on_behalf(
    action_type: AttendanceActionType,
    employee_id: int,
    payload: OnBehalfAttendanceRequest,
    request: Request,
    current_user: CurrentUser,
    db: Session,
) -> AttendanceRecordRead:
    _ensure_attendance_scope(db, current_user, employee_id)
    record = record_on_behalf(
        db,
        employee_id=employee_id,
        action_type=action_type,
        recorded_by=current_user.id,
        note=payload.note,
    )
    request.state.employee_id = employee_id
    request.state.attendance_record_id = record.id
    request.state.is_verified = record.is_verified
    audit_request(
        db,
        request,
        action=f"ATTENDANCE_{action_type.value}_ON_BEHALF",
        entity_type="attendance_record",
        entity_id=record.id,
        details={"employee_id": employee_id},
    )
    return to_record_read(record)


@router.post("/attendance/check-in/{employee_id}", response_model=AttendanceRecordRead)
def admin_check_in_employee(
    employee_id: int,
    request: Request,
    payload: OnBehalfAttendanceRequest | None = None,
    current_user: CurrentUser = Depends(require_staff),
    db: Session = Depends(get_db),
) -> AttendanceRecordRead:
    return _clock_on_behalf(
        AttendanceActionType.CHECK_IN,
        employee_id,
        payload or OnBehalfAttendanceRequest(),
        request,
        current_user,
        db,
    )


@router.post("/attendance/check-out/{employee_id}", response_model=AttendanceRecordRead)
def admin_check_out_employee(
    employee_id: int,
    request: Request,
    payload: OnBehalfAttendanceRequest | None = None,
    current_user: CurrentUser = Depends(require_staff),
    db: Session = Depends(get_db),
) -> AttendanceRecordRead:
    return _clock_on_behalf(
        AttendanceActionType.CHECK_OUT,
        employee_id,
        payload or OnBehalfAttendanceRequest(),
        request,
        current_user,
        db,
    )


@router.get("/attendance/{record_id}", response_model=AttendanceRecordRead)
def admin_get_attendance(
    record_id: int,
    current_user: CurrentUser = Depends(require_staff),
    db: Session = Depends(get_db),
) -> AttendanceRecordRead:
    return to_record_read(_get_visible_record(db, current_user, record_id))


@router.patch("/attendance/{record_id}", response_model=AttendanceRecordRead)
def admin_update_attendance(
    record_id: int,
    payload: AttendanceRecordUpdateRequest,
    request: Request,
    current_user: CurrentUser = Depends(require_staff),
    db: Session = Depends(get_db),
) -> AttendanceRecordRead:
    _get_visible_record(db, current_user, record_id)
    record = update_attendance_record(db, record_id, payload)
    request.state.attendance_record_id = record.id
    audit_request(
        db,
        request,
        action="ATTENDANCE_RECORD_UPDATED",
        entity_type="attendance_record",
        entity_id=record.id,
        details={"fields": sorted(payload.model_fields_set)},
    )
    return to_record_read(record)


@router.delete("/attendance/{record_id}", response_model=DeleteResponse)
def admin_delete_attendance(
    record_id: int,
    request: Request,
    _: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> DeleteResponse:
    record = delete_attendance_record(db, record_id)
    audit_request(
        db,
        request,
        action="ATTENDANCE_RECORD_DELETED",
        entity_type="attendance_record",
        entity_id=record_id,
        details={"employee_id": record.employee_id, "work_date": record.work_date.isoformat()},
    )
    return DeleteResponse(ok=True, id=record_id)


@router.get("/work-schedule", response_model=WorkScheduleRead, dependencies=[Depends(require_staff)])
def admin_get_work_schedule(db: Session = Depends(get_db)) -> WorkScheduleRead:
    schedule = get_work_schedule(db)
    db.commit()
    return WorkScheduleRead.model_validate(schedule)


@router.put("/work-schedule", response_model=WorkScheduleRead)
def admin_update_work_schedule(
    payload: WorkScheduleUpdate,
    request: Request,
    _: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> WorkScheduleRead:
    schedule = update_work_schedule(db, payload)
    audit_request(
        db,
        request,
        action="WORK_SCHEDULE_UPDATED",
        entity_type="work_schedule_settings",
        entity_id=schedule.id,
        details=payload.model_dump(mode="json", exclude_unset=True),
    )
    return WorkScheduleRead.model_validate(schedule)


@router.get("/audit-logs", response_model=list[AuditLogRead], dependencies=[Depends(require_admin)])
def list_audit_logs(
    action: str | None = Query(default=None),
    entity_type: str | None = Query(default=None),
    entity_id: str | None = Query(default=None),
    success: bool | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
) -> list[AuditLogRead]:
    stmt = select(AuditLog).order_by(AuditLog.id.desc()).limit(limit)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if entity_type:
        stmt = stmt.where(AuditLog.entity_type == entity_type)
    if entity_id:
        stmt = stmt.where(AuditLog.entity_id == entity_id)
    if success is not None:
        stmt = stmt.where(AuditLog.success.is_(success))
    return [AuditLogRead.model_validate(row) for row in db.scalars(stmt).all()]
