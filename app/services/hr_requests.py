from __future__ import annotations

import logging
from datetime import date, datetime, time, timezone
from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from app.errors import ApiError
from app.models import (
    Employee,
    HrRequest,
    HrRequestStatus,
    HrRequestType,
    LateEarlyRequestDetail,
    LeaveRequestDetail,
    OvertimeRequestDetail,
)
from app.schemas import (
    HrRequestUpdateRequest,
    LateEarlyCreateRequest,
    LeaveBalanceRead,
    LeaveCreateRequest,
    OvertimeCreateRequest,
)
from app.settings import get_settings
from app.services.locks import lock_employee
from app.services.policy import OrgFacts, can_approve, can_view, resolve_org_facts, subordinate_employee_ids
from app.services.work_time import inclusive_day_count, local_day, round_hours

logger = logging.getLogger("app.hr_requests")

ACTIVE_LEAVE_STATUSES = (HrRequestStatus.PENDING, HrRequestStatus.APPROVED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _today() -> date:
    return local_day(_utcnow())


def _get_employee_or_404(db: Session, employee_id: int) -> Employee:
    employee = db.get(Employee, employee_id)
    if employee is None:
        raise ApiError(status_code=404, code="EMPLOYEE_NOT_FOUND", message="Employee not found.")
    return employee


def _get_request_or_404(db: Session, request_id: int) -> HrRequest:
    request = db.scalar(
        select(HrRequest)
        .options(
            selectinload(HrRequest.employee),
            selectinload(HrRequest.leave),
            selectinload(HrRequest.overtime),
            selectinload(HrRequest.late_early),
        )
        .where(HrRequest.id == request_id)
    )
    if request is None:
        raise ApiError(status_code=404, code="HR_REQUEST_NOT_FOUND", message="HR request not found.")
    return request


def _resolve_org_facts(db: Session, employee_id: int, roles: Iterable[str] | None = None) -> OrgFacts:
    return resolve_org_facts(db, employee_id, roles)


def _ensure_pending(request: HrRequest, verb: str) -> None:
    if request.status != HrRequestStatus.PENDING:
        raise ApiError(
            status_code=400,
            code="REQUEST_NOT_PENDING",
            message=f"Only pending requests can be {verb}.",
        )


def _ensure_owner(request: HrRequest, employee_id: int, verb: str) -> None:
    if request.employee_id != employee_id:
        raise ApiError(
            status_code=400,
            code="NOT_REQUEST_OWNER",
            message=f"You can only {verb} your own requests.",
        )


def dates_overlap(start1: date, end1: date, start2: date, end2: date) -> bool:
    return start1 <= end2 and start2 <= end1


def _validate_leave_dates(start_date: date, end_date: date, *, today: date, check_past: bool = True) -> None:
    if check_past and start_date < today:
        raise ApiError(status_code=400, code="START_DATE_IN_PAST", message="Start date cannot be in the past.")
    if end_date < start_date:
        raise ApiError(
            status_code=400,
            code="INVALID_DATE_RANGE",
            message="End date must not be before start date.",
        )


def find_overlapping_leave(
    db: Session,
    *,
    employee_id: int,
    start_date: date,
    end_date: date,
    exclude_request_id: int | None = None,
) -> HrRequest | None:
    stmt = (
        select(HrRequest)
        .join(LeaveRequestDetail, LeaveRequestDetail.request_id == HrRequest.id)
        .where(
            HrRequest.employee_id == employee_id,
            HrRequest.request_type == HrRequestType.LEAVE,
            HrRequest.status.in_(ACTIVE_LEAVE_STATUSES),
            LeaveRequestDetail.start_date <= end_date,
            LeaveRequestDetail.end_date >= start_date,
        )
        .order_by(LeaveRequestDetail.start_date.asc())
        .limit(1)
    )
    if exclude_request_id is not None:
        stmt = stmt.where(HrRequest.id != exclude_request_id)
    return db.scalar(stmt)


def _ensure_no_leave_overlap(
    db: Session,
    *,
    employee_id: int,
    start_date: date,
    end_date: date,
    exclude_request_id: int | None = None,
) -> None:
    conflict = find_overlapping_leave(
        db,
        employee_id=employee_id,
        start_date=start_date,
        end_date=end_date,
        exclude_request_id=exclude_request_id,
    )
    if conflict is not None:
        logger.info(
            "hr_request_leave_overlap",
            extra={
                "employee_id": employee_id,
                "conflicting_request_id": conflict.id,
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
            },
        )
        raise ApiError(
            status_code=400,
            code="LEAVE_OVERLAP",
            message="Leave request dates overlap with an existing approved or pending request.",
        )


def overtime_hours(overtime_date: date, start_time: time, end_time: time) -> float:
    start = datetime.combine(overtime_date, start_time)
    end = datetime.combine(overtime_date, end_time)
    if end <= start:
        raise ApiError(status_code=400, code="INVALID_TIME_RANGE", message="End time must be after start time.")
    return round_hours(end - start)


def _save_new_request(db: Session, request: HrRequest) -> HrRequest:
    db.add(request)
    db.commit()
    db.refresh(request)
    logger.info(
        "hr_request_created",
        extra={
            "hr_request_id": request.id,
            "employee_id": request.employee_id,
            "request_type": request.request_type.value,
        },
    )
    return request


def create_leave(
    db: Session,
    *,
    employee_id: int,
    payload: LeaveCreateRequest,
    today: date | None = None,
) -> HrRequest:
    _get_employee_or_404(db, employee_id)
    _validate_leave_dates(payload.start_date, payload.end_date, today=today or _today())

    lock_employee(db, employee_id)
    _ensure_no_leave_overlap(
        db,
        employee_id=employee_id,
        start_date=payload.start_date,
        end_date=payload.end_date,
    )

    request = HrRequest(
        employee_id=employee_id,
        request_type=HrRequestType.LEAVE,
        status=HrRequestStatus.PENDING,
        reason=payload.reason or None,
    )
    request.leave = LeaveRequestDetail(
        leave_type=payload.leave_type,
        start_date=payload.start_date,
        end_date=payload.end_date,
        total_days=float(inclusive_day_count(payload.start_date, payload.end_date)),
    )
    return _save_new_request(db, request)


def create_overtime(db: Session, *, employee_id: int, payload: OvertimeCreateRequest) -> HrRequest:
    _get_employee_or_404(db, employee_id)
    hours = overtime_hours(payload.date, payload.start_time, payload.end_time)

    request = HrRequest(
        employee_id=employee_id,
        request_type=HrRequestType.OVERTIME,
        status=HrRequestStatus.PENDING,
        reason=payload.reason or None,
    )
    request.overtime = OvertimeRequestDetail(
        overtime_date=payload.date,
        start_time=payload.start_time,
        end_time=payload.end_time,
        overtime_hours=hours,
    )
    return _save_new_request(db, request)


def create_late_early(db: Session, *, employee_id: int, payload: LateEarlyCreateRequest) -> HrRequest:
    _get_employee_or_404(db, employee_id)

    request = HrRequest(
        employee_id=employee_id,
        request_type=HrRequestType.LATE_EARLY,
        status=HrRequestStatus.PENDING,
        reason=payload.reason or None,
    )
    # Minutes and actual time are stored as reported by the employee.
    request.late_early = LateEarlyRequestDetail(
        late_early_date=payload.date,
        late_early_type=payload.type,
        actual_time=payload.actual_time,
        minutes=payload.minutes,
    )
    return _save_new_request(db, request)


def _decide(
    db: Session,
    *,
    request_id: int,
    approver_id: int,
    approver_roles: Iterable[str],
    note: str | None,
    status: HrRequestStatus,
    verb: str,
) -> HrRequest:
    request = _get_request_or_404(db, request_id)
    _ensure_pending(request, verb)

    approver = _resolve_org_facts(db, approver_id, approver_roles)
    requester = _resolve_org_facts(db, request.employee_id, ())
    if not can_approve(approver, requester):
        logger.info(
            "hr_request_decision_forbidden",
            extra={
                "hr_request_id": request.id,
                "approver_id": approver_id,
                "employee_id": request.employee_id,
                "status": status.value,
            },
        )
        raise ApiError(
            status_code=403,
            code="APPROVAL_FORBIDDEN",
            message=(
                "You can only decide requests from employees in your department "
                "with a lower position level."
            ),
        )

    request.status = status
    request.approved_by = approver_id
    request.approved_at = _utcnow()
    request.approval_note = note or None
    db.commit()
    db.refresh(request)

    logger.info(
        f"hr_request_{status.value.lower()}",
        extra={
            "hr_request_id": request.id,
            "employee_id": request.employee_id,
            "approver_id": approver_id,
            "request_type": request.request_type.value,
        },
    )
    return request


def approve_request(
    db: Session,
    *,
    request_id: int,
    approver_id: int,
    approver_roles: Iterable[str],
    note: str | None = None,
) -> HrRequest:
    return _decide(
        db,
        request_id=request_id,
        approver_id=approver_id,
        approver_roles=approver_roles,
        note=note,
        status=HrRequestStatus.APPROVED,
        verb="approved",
    )


def reject_request(
    db: Session,
    *,
    request_id: int,
    approver_id: int,
    approver_roles: Iterable[str],
    note: str | None = None,
) -> HrRequest:
    return _decide(
        db,
        request_id=request_id,
        approver_id=approver_id,
        approver_roles=approver_roles,
        note=note,
        status=HrRequestStatus.REJECTED,
        verb="rejected",
    )


def cancel_request(db: Session, *, request_id: int, employee_id: int) -> HrRequest:
    request = _get_request_or_404(db, request_id)
    _ensure_owner(request, employee_id, "cancel")
    _ensure_pending(request, "cancelled")

    request.status = HrRequestStatus.CANCELLED
    db.commit()
    db.refresh(request)
    logger.info(
        "hr_request_cancelled",
        extra={"hr_request_id": request.id, "employee_id": employee_id},
    )
    return request


def _apply_leave_update(
    db: Session,
    request: HrRequest,
    changes: dict,
    *,
    today: date,
) -> None:
    detail = request.leave
    start_date = changes.get("start_date") or detail.start_date
    end_date = changes.get("end_date") or detail.end_date
    if "start_date" in changes or "end_date" in changes:
        _validate_leave_dates(
            start_date,
            end_date,
            today=today,
            check_past=changes.get("start_date") is not None,
        )
        lock_employee(db, request.employee_id)
        _ensure_no_leave_overlap(
            db,
            employee_id=request.employee_id,
            start_date=start_date,
            end_date=end_date,
            exclude_request_id=request.id,
        )
    if changes.get("leave_type") is not None:
        detail.leave_type = changes["leave_type"]
    detail.start_date = start_date
    detail.end_date = end_date
    detail.total_days = float(inclusive_day_count(start_date, end_date))


def _apply_overtime_update(request: HrRequest, changes: dict) -> None:
    detail = request.overtime
    overtime_date = changes.get("overtime_date") or detail.overtime_date
    start_time = changes.get("start_time") or detail.start_time
    end_time = changes.get("end_time") or detail.end_time
    detail.overtime_hours = overtime_hours(overtime_date, start_time, end_time)
    detail.overtime_date = overtime_date
    detail.start_time = start_time
    detail.end_time = end_time


def _apply_late_early_update(request: HrRequest, changes: dict) -> None:
    detail = request.late_early
    if changes.get("late_early_date") is not None:
        detail.late_early_date = changes["late_early_date"]
    if changes.get("late_early_type") is not None:
        detail.late_early_type = changes["late_early_type"]
    if "actual_time" in changes:
        detail.actual_time = changes["actual_time"]
    if "minutes" in changes:
        detail.minutes = changes["minutes"]


def update_request(
    db: Session,
    *,
    request_id: int,
    employee_id: int,
    payload: HrRequestUpdateRequest,
    today: date | None = None,
) -> HrRequest:
    request = _get_request_or_404(db, request_id)
    _ensure_owner(request, employee_id, "update")
    _ensure_pending(request, "updated")

    changes = payload.model_dump(exclude_unset=True)
    if "reason" in changes:
        request.reason = changes["reason"]

    if request.request_type == HrRequestType.LEAVE and request.leave is not None:
        _apply_leave_update(db, request, changes, today=today or _today())
    elif request.request_type == HrRequestType.OVERTIME and request.overtime is not None:
        _apply_overtime_update(request, changes)
    elif request.request_type == HrRequestType.LATE_EARLY and request.late_early is not None:
        _apply_late_early_update(request, changes)

    db.commit()
    db.refresh(request)
    logger.info(
        "hr_request_updated",
        extra={
            "hr_request_id": request.id,
            "employee_id": employee_id,
            "fields": sorted(changes),
        },
    )
    return request


def delete_request(db: Session, *, request_id: int, employee_id: int) -> HrRequest:
    request = _get_request_or_404(db, request_id)
    _ensure_owner(request, employee_id, "delete")
    _ensure_pending(request, "deleted")

    db.delete(request)
    db.commit()
    logger.info(
        "hr_request_deleted",
        extra={"hr_request_id": request_id, "employee_id": employee_id},
    )
    return request


def _visible_employee_ids(
    db: Session,
    viewer: OrgFacts,
    employee_id: int | None,
) -> set[int] | None:
    """``None`` means unrestricted."""
    if viewer.is_super_admin:
        return {employee_id} if employee_id is not None else None
    if viewer.is_manager:
        allowed = subordinate_employee_ids(db, viewer)
        if employee_id is not None:
            return allowed & {employee_id}
        return allowed
    return {viewer.employee_id}


def list_requests(
    db: Session,
    *,
    viewer_id: int,
    viewer_roles: Iterable[str],
    employee_id: int | None = None,
    request_type: HrRequestType | None = None,
    status: HrRequestStatus | None = None,
) -> list[HrRequest]:
    viewer = _resolve_org_facts(db, viewer_id, viewer_roles)
    employee_ids = _visible_employee_ids(db, viewer, employee_id)
    if employee_ids is not None and not employee_ids:
        return []

    stmt = select(HrRequest).options(
        selectinload(HrRequest.employee),
        selectinload(HrRequest.leave),
        selectinload(HrRequest.overtime),
        selectinload(HrRequest.late_early),
    )
    if employee_ids is not None:
        stmt = stmt.where(HrRequest.employee_id.in_(sorted(employee_ids)))
    if request_type is not None:
        stmt = stmt.where(HrRequest.request_type == request_type)
    if status is not None:
        stmt = stmt.where(HrRequest.status == status)

    return list(db.scalars(stmt.order_by(HrRequest.created_at.desc(), HrRequest.id.desc())).all())


def get_request(
    db: Session,
    *,
    request_id: int,
    viewer_id: int,
    viewer_roles: Iterable[str],
) -> HrRequest:
    request = _get_request_or_404(db, request_id)
    if viewer_id == request.employee_id:
        return request

    viewer = _resolve_org_facts(db, viewer_id, viewer_roles)
    requester = _resolve_org_facts(db, request.employee_id, ())
    if not can_view(viewer, requester):
        raise ApiError(
            status_code=403,
            code="REQUEST_VIEW_FORBIDDEN",
            message="You are not allowed to view this request.",
        )
    return request


def get_leave_balance(db: Session, *, employee_id: int, year: int | None = None) -> LeaveBalanceRead:
    employee = _get_employee_or_404(db, employee_id)
    target_year = year or _today().year
    year_start = date(target_year, 1, 1)
    year_end = date(target_year, 12, 31)

    used = db.scalar(
        select(func.coalesce(func.sum(LeaveRequestDetail.total_days), 0))
        .join(HrRequest, HrRequest.id == LeaveRequestDetail.request_id)
        .where(
            HrRequest.employee_id == employee_id,
            HrRequest.request_type == HrRequestType.LEAVE,
            HrRequest.status == HrRequestStatus.APPROVED,
            LeaveRequestDetail.start_date >= year_start,
            LeaveRequestDetail.start_date <= year_end,
        )
    )
    used_days = float(used or 0)
    limit = employee.annual_leave_limit or get_settings().default_annual_leave_limit
    return LeaveBalanceRead(
        limit=limit,
        used=used_days,
        remaining=max(0.0, limit - used_days),
        year=target_year,
    )

