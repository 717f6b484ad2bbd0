from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from app.audit import audit_request, client_ip, user_agent
from app.db import get_db
from app.errors import ApiError
from app.schemas import (
    AttendanceResultResponse,
    AttendanceSubmitRequest,
    ChallengeRequest,
    ChallengeResponse,
    DeviceRead,
    DeviceRegisterRequest,
    TodayStatusResponse,
)
from app.security import CurrentUser, require_employee
from app.services.attendance import get_today_status, request_challenge, submit_attendance
from app.services.devices import list_employee_devices, register_device

router = APIRouter(prefix="/api/attendance", tags=["attendance"])


@router.post("/verify/request-challenge", response_model=ChallengeResponse)
def verify_request_challenge(
    payload: ChallengeRequest,
    request: Request,
    current_user: CurrentUser = Depends(require_employee),
    db: Session = Depends(get_db),
) -> ChallengeResponse:
    request.state.employee_id = current_user.id
    response = request_challenge(
        db,
        employee_id=current_user.id,
        payload=payload.model_copy(update={"user_agent": payload.user_agent or user_agent(request)}),
        ip_address=client_ip(request),
    )
    request.state.device_status = response.device_status
    audit_request(
        db,
        request,
        action="ATTENDANCE_CHALLENGE_ISSUED",
        entity_type="employee",
        entity_id=current_user.id,
        details={
            "action_type": payload.action_type.value,
            "device_status": response.device_status,
        },
    )
    return response


@router.post("/verify/submit", response_model=AttendanceResultResponse)
def verify_submit(
    payload: AttendanceSubmitRequest,
    request: Request,
    current_user: CurrentUser = Depends(require_employee),
    db: Session = Depends(get_db),
) -> AttendanceResultResponse:
    request.state.employee_id = current_user.id
    try:
        record, result = submit_attendance(
            db,
            employee_id=current_user.id,
            payload=payload,
            ip_address=client_ip(request),
            user_agent=user_agent(request),
        )
    except ApiError as exc:
        db.rollback()
        audit_request(
            db,
            request,
            action="ATTENDANCE_SUBMIT_REJECTED",
            entity_type="employee",
            entity_id=current_user.id,
            success=False,
            details={"action_type": payload.action_type.value, "code": exc.code},
        )
        raise

    request.state.attendance_record_id = record.id
    request.state.is_verified = result.is_verified
    audit_request(
        db,
        request,
        action=f"ATTENDANCE_{payload.action_type.value}",
        entity_type="attendance_record",
        entity_id=record.id,
        details={
            "is_verified": result.is_verified,
            "distance_from_office": result.distance_from_office,
            "is_within_geofence": result.is_within_geofence,
        },
    )
    return result


@router.get("/verify/today-status", response_model=TodayStatusResponse)
def verify_today_status(
    current_user: CurrentUser = Depends(require_employee),
    db: Session = Depends(get_db),
) -> TodayStatusResponse:
    return get_today_status(db, employee_id=current_user.id)


@router.post("/devices/register", response_model=DeviceRead, status_code=status.HTTP_201_CREATED)
def devices_register(
    payload: DeviceRegisterRequest,
    request: Request,
    current_user: CurrentUser = Depends(require_employee),
    db: Session = Depends(get_db),
) -> DeviceRead:
    device = register_device(
        db,
        employee_id=current_user.id,
        device_fingerprint=payload.device_fingerprint,
        metadata=payload.model_copy(update={"user_agent": payload.user_agent or user_agent(request)}),
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
        details={"is_primary": device.is_primary},
    )
    return DeviceRead.model_validate(device)


@router.get("/devices", response_model=list[DeviceRead])
def devices_list(
    current_user: CurrentUser = Depends(require_employee),
    db: Session = Depends(get_db),
) -> list[DeviceRead]:
    return [DeviceRead.model_validate(device) for device in list_employee_devices(db, current_user.id)]
