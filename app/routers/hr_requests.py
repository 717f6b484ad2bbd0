from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from app.audit import audit_request
from app.db import get_db
from app.errors import ApiError
from app.models import HrRequest, HrRequestStatus, HrRequestType, RoleCode
from app.schemas import (
    DeleteResponse,
    HrRequestDecision,
    HrRequestRead,
    HrRequestUpdateRequest,
    LateEarlyCreateRequest,
    LeaveBalanceRead,
    LeaveCreateRequest,
    OvertimeCreateRequest,
)
from app.security import ADMIN_ROLE_CODES, CurrentUser, require_employee, require_roles
from app.services.hr_requests import (
    approve_request,
    cancel_request,
    create_late_early,
    create_leave,
    create_overtime,
    delete_request,
    get_leave_balance,
    get_request,
    list_requests,
    reject_request,
    update_request,
)

router = APIRouter(prefix="/api/hr-requests", tags=["hr-requests"])

require_approver = require_roles(RoleCode.SUPER_ADMIN, RoleCode.MANAGER)


def _target_employee_id(current_user: CurrentUser, requested_id: int | None) -> int:
    if requested_id is None or requested_id == current_user.id:
        return current_user.id
    if not current_user.has_role(RoleCode.SUPER_ADMIN, RoleCode.ADMIN):
        raise ApiError(
            status_code=403,
            code="FORBIDDEN",
            message="Only administrators can file requests for another employee.",
        )
    return requested_id


def _audit_transition(db: Session, request: Request, hr_request: HrRequest, action: str, **details) -> None:
    request.state.hr_request_id = hr_request.id
    audit_request(
        db,
        request,
        action=action,
        entity_type="hr_request",
        entity_id=hr_request.id,
        details={
            "employee_id": hr_request.employee_id,
            "request_type": hr_request.request_type.value,
            "status": hr_request.status.value,
            **details,
        },
    )


@router.post("/leave", response_model=HrRequestRead, status_code=status.HTTP_201_CREATED)
def create_leave_request(
    payload: LeaveCreateRequest,
    request: Request,
    current_user: CurrentUser = Depends(require_employee),
    db: Session = Depends(get_db),
) -> HrRequestRead:
    employee_id = _target_employee_id(current_user, payload.employee_id)
    hr_request = create_leave(db, employee_id=employee_id, payload=payload)
    _audit_transition(db, request, hr_request, "HR_REQUEST_CREATED")
    return HrRequestRead.from_model(hr_request)


@router.post("/overtime", response_model=HrRequestRead, status_code=status.HTTP_201_CREATED)
def create_overtime_request(
    payload: OvertimeCreateRequest,
    request: Request,
    current_user: CurrentUser = Depends(require_employee),
    db: Session = Depends(get_db),
) -> HrRequestRead:
    employee_id = _target_employee_id(current_user, payload.employee_id)
    hr_request = create_overtime(db, employee_id=employee_id, payload=payload)
    _audit_transition(db, request, hr_request, "HR_REQUEST_CREATED")
    return HrRequestRead.from_model(hr_request)


@router.post("/late-early", response_model=HrRequestRead, status_code=status.HTTP_201_CREATED)
def create_late_early_request(
    payload: LateEarlyCreateRequest,
    request: Request,
    current_user: CurrentUser = Depends(require_employee),
    db: Session = Depends(get_db),
) -> HrRequestRead:
    employee_id = _target_employee_id(current_user, payload.employee_id)
    hr_request = create_late_early(db, employee_id=employee_id, payload=payload)
    _audit_transition(db, request, hr_request, "HR_REQUEST_CREATED")
    return HrRequestRead.from_model(hr_request)


@router.get("", response_model=list[HrRequestRead])
def list_hr_requests(
    employee_id: int | None = Query(default=None, ge=1),
    request_type: HrRequestType | None = Query(default=None),
    request_status: HrRequestStatus | None = Query(default=None, alias="status"),
    current_user: CurrentUser = Depends(require_employee),
    db: Session = Depends(get_db),
) -> list[HrRequestRead]:
    rows = list_requests(
        db,
        viewer_id=current_user.id,
        viewer_roles=current_user.roles,
        employee_id=employee_id,
        request_type=request_type,
        status=request_status,
    )
    return [HrRequestRead.from_model(row) for row in rows]


@router.get("/leave/balance", response_model=LeaveBalanceRead)
def my_leave_balance(
    year: int | None = Query(default=None, ge=1970, le=9999),
    current_user: CurrentUser = Depends(require_employee),
    db: Session = Depends(get_db),
) -> LeaveBalanceRead:
    return get_leave_balance(db, employee_id=current_user.id, year=year)


@router.get("/leave/balance/{employee_id}", response_model=LeaveBalanceRead)
def employee_leave_balance(
    employee_id: int,
    year: int | None = Query(default=None, ge=1970, le=9999),
    current_user: CurrentUser = Depends(require_employee),
    db: Session = Depends(get_db),
) -> LeaveBalanceRead:
    if employee_id != current_user.id and not current_user.roles & ADMIN_ROLE_CODES:
        raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")
    return get_leave_balance(db, employee_id=employee_id, year=year)


@router.get("/{request_id}", response_model=HrRequestRead)
def get_hr_request(
    request_id: int,
    current_user: CurrentUser = Depends(require_employee),
    db: Session = Depends(get_db),
) -> HrRequestRead:
    hr_request = get_request(
        db,
        request_id=request_id,
        viewer_id=current_user.id,
        viewer_roles=current_user.roles,
    )
    return HrRequestRead.from_model(hr_request)


@router.put("/{request_id}/approve", response_model=HrRequestRead)
def approve_hr_request(
    request_id: int,
    payload: HrRequestDecision,
    request: Request,
    current_user: CurrentUser = Depends(require_approver),
    db: Session = Depends(get_db),
) -> HrRequestRead:
    hr_request = approve_request(
        db,
        request_id=request_id,
        approver_id=current_user.id,
        approver_roles=current_user.roles,
        note=payload.note,
    )
    _audit_transition(db, request, hr_request, "HR_REQUEST_APPROVED", note=payload.note)
    return HrRequestRead.from_model(hr_request)


@router.put("/{request_id}/reject", response_model=HrRequestRead)
def reject_hr_request(
    request_id: int,
    payload: HrRequestDecision,
    request: Request,
    current_user: CurrentUser = Depends(require_approver),
    db: Session = Depends(get_db),
) -> HrRequestRead:
    hr_request = reject_request(
        db,
        request_id=request_id,
        approver_id=current_user.id,
        approver_roles=current_user.roles,
        note=payload.note,
    )
    _audit_transition(db, request, hr_request, "HR_REQUEST_REJECTED", note=payload.note)
    return HrRequestRead.from_model(hr_request)


@router.put("/{request_id}/cancel", response_model=HrRequestRead)
def cancel_hr_request(
    request_id: int,
    request: Request,
    current_user: CurrentUser = Depends(require_employee),
    db: Session = Depends(get_db),
) -> HrRequestRead:
    hr_request = cancel_request(db, request_id=request_id, employee_id=current_user.id)
    _audit_transition(db, request, hr_request, "HR_REQUEST_CANCELLED")
    return HrRequestRead.from_model(hr_request)


@router.patch("/{request_id}", response_model=HrRequestRead)
def update_hr_request(
    request_id: int,
    payload: HrRequestUpdateRequest,
    request: Request,
    current_user: CurrentUser = Depends(require_employee),
    db: Session = Depends(get_db),
) -> HrRequestRead:
    hr_request = update_request(
        db,
        request_id=request_id,
        employee_id=current_user.id,
        payload=payload,
    )
    _audit_transition(
        db,
        request,
        hr_request,
        "HR_REQUEST_UPDATED",
        fields=sorted(payload.model_fields_set),
    )
    return HrRequestRead.from_model(hr_request)


@router.delete("/{request_id}", response_model=DeleteResponse)
def delete_hr_request(
    request_id: int,
    request: Request,
    current_user: CurrentUser = Depends(require_employee),
    db: Session = Depends(get_db),
) -> DeleteResponse:
    hr_request = delete_request(db, request_id=request_id, employee_id=current_user.id)
    request.state.hr_request_id = request_id
    audit_request(
        db,
        request,
        action="HR_REQUEST_DELETED",
        entity_type="hr_request",
        entity_id=request_id,
        details={
            "employee_id": hr_request.employee_id,
            "request_type": hr_request.request_type.value,
        },
    )
    return DeleteResponse(ok=True, id=request_id)
