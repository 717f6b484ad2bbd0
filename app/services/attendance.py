from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from math import ceil
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.errors import ApiError
from app.models import (
    AttendanceActionType,
    AttendanceRecord,
    DeviceStatus,
    Employee,
    EmployeeDevice,
    WorkScheduleSettings,
)
from app.schemas import (
    AttendanceRecordCreateRequest,
    AttendanceRecordPage,
    AttendanceRecordRead,
    AttendanceRecordUpdateRequest,
    AttendanceResultResponse,
    AttendanceSubmitRequest,
    ChallengeRequest,
    ChallengeResponse,
    DeviceMetadata,
    OfficeLocationRead,
    TodayStatusResponse,
)
from app.settings import get_office_location, get_settings
from app.services.challenges import consume_challenge, issue_challenge
from app.services.devices import resolve_or_register, touch_device
from app.services.location import GeofenceResult, evaluate_office_location
from app.services.locks import lock_employee
from app.services.work_schedule import (
    get_work_schedule,
    is_working_day,
    standard_check_in_minutes,
    standard_check_out_minutes,
)
from app.services.work_time import (
    early_leave_minutes,
    late_minutes,
    local_day,
    local_time,
    normalize_ts,
    round_hours,
)

logger = logging.getLogger("app.attendance")

NOTES_EVENT_SEPARATOR = "\n---\n"


@dataclass(slots=True)
class AttendanceEvent:
    """One verified clock action, ready to be applied to the day's record."""

    ts: datetime
    device: EmployeeDevice | None
    photo_url: str | None = None
    lat: float | None = None
    lon: float | None = None
    geofence: GeofenceResult | None = None
    gps_accuracy: float | None = None
    ip_address: str | None = None
    note: str | None = None
    recorded_by: int | None = None

    @property
    def device_known(self) -> bool:
        return self.device is not None and self.device.status == DeviceStatus.ACTIVE

    @property
    def photo_present(self) -> bool:
        return bool(self.photo_url)

    @property
    def is_verified(self) -> bool:
        return self.photo_present and self.device_known


def _get_employee_or_404(db: Session, employee_id: int) -> Employee:
    employee = db.get(Employee, employee_id)
    if employee is None:
        raise ApiError(status_code=404, code="EMPLOYEE_NOT_FOUND", message="Employee not found.")
    if not employee.is_active:
        raise ApiError(
            status_code=403,
            code="EMPLOYEE_INACTIVE",
            message="Inactive employee cannot perform attendance actions.",
        )
    return employee


def _find_day_record(db: Session, employee_id: int, work_date: date) -> AttendanceRecord | None:
    return db.scalar(
        select(AttendanceRecord).where(
            AttendanceRecord.employee_id == employee_id,
            AttendanceRecord.work_date == work_date,
        )
    )


def _device_label(device: EmployeeDevice | None) -> str | None:
    if device is None:
        return None
    if device.device_name:
        return device.device_name
    return f"{device.device_fingerprint[:8]}..."


def _presented_distance(geofence: GeofenceResult | None) -> int | None:
    if geofence is None or geofence.distance_m is None:
        return None
    return int(round(geofence.distance_m))


def build_verification_fact(action_type: AttendanceActionType, event: AttendanceEvent) -> dict[str, Any]:
    return {
        "action": action_type.value,
        "recorded_at": normalize_ts(event.ts).isoformat(),
        "device_known": event.device_known,
        "device_label": _device_label(event.device),
        "photo_present": event.photo_present,
        "distance_m": _presented_distance(event.geofence),
        "within_geofence": event.geofence.within_geofence if event.geofence is not None else None,
        "gps_accuracy_m": round(event.gps_accuracy, 1) if event.gps_accuracy is not None else None,
        "recorded_by": event.recorded_by,
    }


def _fact_lines(fact: dict[str, Any]) -> list[str]:
    label = fact.get("device_label") or "unknown"
    device_line = f"Device: {label}"
    if not fact.get("device_known"):
        device_line += " (not verified)"
    lines = [device_line, f"Photo: {'Yes' if fact.get('photo_present') else 'No'}"]

    distance = fact.get("distance_m")
    if distance is not None:
        location_line = f"Location: {distance}m from office"
        if fact.get("within_geofence") is False:
            location_line += " (outside geofence)"
        accuracy = fact.get("gps_accuracy_m")
        if accuracy is not None:
            location_line += f", accuracy {accuracy:g}m"
        lines.append(location_line)
    if fact.get("recorded_by") is not None:
        lines.append(f"Recorded by: employee #{fact['recorded_by']}")
    return lines


def render_verification_notes(facts: list[dict[str, Any]] | None, *, line_separator: str = "\n") -> str:
    return NOTES_EVENT_SEPARATOR.join(line_separator.join(_fact_lines(fact)) for fact in facts or [])


def to_record_read(record: AttendanceRecord) -> AttendanceRecordRead:
    read = AttendanceRecordRead.model_validate(record)
    read.verification_notes = render_verification_notes(record.verification_facts)
    return read


def _late_for(schedule: WorkScheduleSettings, check_in_ts: datetime | None) -> int:
    if check_in_ts is None:
        return 0
    return late_minutes(
        local_time(normalize_ts(check_in_ts)),
        standard_check_in_minutes(schedule),
        schedule.late_tolerance_minutes,
    )


def _early_for(schedule: WorkScheduleSettings, check_out_ts: datetime | None) -> int:
    if check_out_ts is None:
        return 0
    return early_leave_minutes(
        local_time(normalize_ts(check_out_ts)),
        standard_check_out_minutes(schedule),
        schedule.early_leave_tolerance_minutes,
    )


def _work_hours_between(check_in_ts: datetime | None, check_out_ts: datetime | None) -> float | None:
    if check_in_ts is None or check_out_ts is None:
        return None
    start = normalize_ts(check_in_ts)
    end = normalize_ts(check_out_ts)
    if end < start:
        raise ApiError(
            status_code=400,
            code="INVALID_TIME_RANGE",
            message="check_out must not be before check_in.",
        )
    return round_hours(end - start)


def _append_fact(record: AttendanceRecord, fact: dict[str, Any]) -> None:
    # Reassign so the JSON column is flagged dirty.
    record.verification_facts = [*(record.verification_facts or []), fact]


def check_in(db: Session, *, employee_id: int, event: AttendanceEvent) -> AttendanceRecord:
    ts = normalize_ts(event.ts)
    work_date = local_day(ts)
    lock_employee(db, employee_id)

    record = _find_day_record(db, employee_id, work_date)
    if record is not None and record.check_in is not None:
        raise ApiError(status_code=400, code="ALREADY_CHECKED_IN", message="Already checked in today.")

    computed_late = _late_for(get_work_schedule(db), ts)
    fact = build_verification_fact(AttendanceActionType.CHECK_IN, event)

    if record is None:
        record = AttendanceRecord(
            employee_id=employee_id,
            work_date=work_date,
            verification_facts=[],
            note=event.note,
        )
        db.add(record)
    elif event.note:
        record.note = event.note

    record.check_in = ts
    record.check_in_photo_url = event.photo_url
    record.check_in_lat = event.lat
    record.check_in_lon = event.lon
    record.late_minutes = computed_late
    record.is_verified = event.is_verified
    record.device_fingerprint = event.device.device_fingerprint if event.device is not None else None
    record.ip_address = event.ip_address
    _append_fact(record, fact)

    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise ApiError(status_code=400, code="ALREADY_CHECKED_IN", message="Already checked in today.") from exc

    logger.info(
        "attendance_checked_in",
        extra={
            "employee_id": employee_id,
            "attendance_record_id": record.id,
            "work_date": work_date.isoformat(),
            "late_minutes": computed_late,
            "is_verified": record.is_verified,
        },
    )
    return record


def check_out(db: Session, *, employee_id: int, event: AttendanceEvent) -> AttendanceRecord:
    ts = normalize_ts(event.ts)
    work_date = local_day(ts)

    record = _find_day_record(db, employee_id, work_date)
    if record is None:
        raise ApiError(status_code=404, code="NO_CHECKIN_TODAY", message="No check-in record found for today.")
    if record.check_in is None:
        raise ApiError(status_code=400, code="CHECKIN_REQUIRED", message="Must check in before checking out.")
    if record.check_out is not None:
        raise ApiError(status_code=400, code="ALREADY_CHECKED_OUT", message="Already checked out today.")

    computed_early = _early_for(get_work_schedule(db), ts)

    record.check_out = ts
    record.check_out_photo_url = event.photo_url
    record.check_out_lat = event.lat
    record.check_out_lon = event.lon
    record.work_hours = round_hours(ts - normalize_ts(record.check_in))
    record.early_leave_minutes = computed_early
    record.is_verified = event.is_verified
    _append_fact(record, build_verification_fact(AttendanceActionType.CHECK_OUT, event))
    if event.note:
        record.note = f"{record.note}\n{event.note}" if record.note else event.note
    db.flush()

    logger.info(
        "attendance_checked_out",
        extra={
            "employee_id": employee_id,
            "attendance_record_id": record.id,
            "work_date": work_date.isoformat(),
            "work_hours": record.work_hours,
            "early_leave_minutes": computed_early,
            "is_verified": record.is_verified,
        },
    )
    return record


def request_challenge(
    db: Session,
    *,
    employee_id: int,
    payload: ChallengeRequest,
    ip_address: str | None,
    now: datetime | None = None,
) -> ChallengeResponse:
    _get_employee_or_404(db, employee_id)
    device, device_status, device_message = resolve_or_register(
        db,
        employee_id=employee_id,
        device_fingerprint=payload.device_fingerprint,
        metadata=payload,
        ip_address=ip_address,
    )
    challenge = issue_challenge(
        db,
        employee_id=employee_id,
        device_fingerprint=device.device_fingerprint,
        action_type=payload.action_type,
        now=now,
    )
    db.commit()

    office_lat, office_lon, radius_m = get_office_location()
    return ChallengeResponse(
        token=challenge.token,
        expires_at=normalize_ts(challenge.expires_at),
        office_location=OfficeLocationRead(
            latitude=office_lat,
            longitude=office_lon,
            radius_meters=radius_m,
        ),
        device_status=device_status,
        device_message=device_message,
    )


def submit_attendance(
    db: Session,
    *,
    employee_id: int,
    payload: AttendanceSubmitRequest,
    ip_address: str | None,
    user_agent: str | None,
    now: datetime | None = None,
) -> tuple[AttendanceRecord, AttendanceResultResponse]:
    ts = normalize_ts(now)
    _get_employee_or_404(db, employee_id)

    if get_settings().attendance_challenge_required or payload.challenge_token:
        consume_challenge(
            db,
            employee_id=employee_id,
            token=payload.challenge_token,
            device_fingerprint=payload.device_fingerprint,
            action_type=payload.action_type,
            now=ts,
        )

    device, _, _ = resolve_or_register(
        db,
        employee_id=employee_id,
        device_fingerprint=payload.device_fingerprint,
        metadata=DeviceMetadata(user_agent=user_agent),
        ip_address=ip_address,
    )
    geofence = evaluate_office_location(payload.lat, payload.lon)
    event = AttendanceEvent(
        ts=ts,
        device=device,
        photo_url=payload.photo_url,
        lat=payload.lat,
        lon=payload.lon,
        geofence=geofence,
        gps_accuracy=payload.gps_accuracy,
        ip_address=ip_address,
        note=payload.note,
    )

    if payload.action_type == AttendanceActionType.CHECK_IN:
        record = check_in(db, employee_id=employee_id, event=event)
    else:
        record = check_out(db, employee_id=employee_id, event=event)

    touch_device(device, ip_address=ip_address, user_agent=user_agent, now=ts)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if payload.action_type == AttendanceActionType.CHECK_IN:
            raise ApiError(status_code=400, code="ALREADY_CHECKED_IN", message="Already checked in today.") from exc
        raise
    db.refresh(record)

    fact = record.verification_facts[-1]
    is_check_in = payload.action_type == AttendanceActionType.CHECK_IN
    result = AttendanceResultResponse(
        id=record.id,
        action_type=payload.action_type,
        timestamp=ts,
        is_within_geofence=geofence.within_geofence,
        distance_from_office=_presented_distance(geofence),
        device_verified=event.device_known,
        photo_captured=event.photo_present,
        is_verified=record.is_verified,
        verification_notes=render_verification_notes([fact], line_separator="; "),
        late_minutes=(record.late_minutes or None) if is_check_in else None,
        early_leave_minutes=None if is_check_in else (record.early_leave_minutes or None),
    )
    return record, result


def get_today_status(db: Session, *, employee_id: int, now: datetime | None = None) -> TodayStatusResponse:
    today = local_day(normalize_ts(now))
    working_day = is_working_day(today, get_work_schedule(db))
    record = _find_day_record(db, employee_id, today)
    if record is None:
        return TodayStatusResponse(
            date=today,
            is_working_day=working_day,
            has_checked_in=False,
            has_checked_out=False,
        )
    return TodayStatusResponse(
        date=today,
        is_working_day=working_day,
        has_checked_in=record.check_in is not None,
        has_checked_out=record.check_out is not None,
        check_in_time=record.check_in,
        check_out_time=record.check_out,
        check_in_photo_url=record.check_in_photo_url,
        check_out_photo_url=record.check_out_photo_url,
        work_hours=record.work_hours,
        late_minutes=record.late_minutes,
        early_leave_minutes=record.early_leave_minutes,
        is_verified=record.is_verified,
    )


def list_attendance_records(
    db: Session,
    *,
    employee_id: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    employee_ids: set[int] | None = None,
    page: int = 1,
    page_size: int = 50,
) -> AttendanceRecordPage:
    if start_date is not None and end_date is not None and start_date > end_date:
        raise ApiError(status_code=400, code="INVALID_DATE_RANGE", message="start_date must not be after end_date.")

    filters = []
    if employee_id is not None:
        filters.append(AttendanceRecord.employee_id == employee_id)
    if employee_ids is not None:
        filters.append(AttendanceRecord.employee_id.in_(sorted(employee_ids)))
    if start_date is not None:
        filters.append(AttendanceRecord.work_date >= start_date)
    if end_date is not None:
        filters.append(AttendanceRecord.work_date <= end_date)

    total = int(db.scalar(select(func.count(AttendanceRecord.id)).where(*filters)) or 0)
    rows = db.scalars(
        select(AttendanceRecord)
        .where(*filters)
        .order_by(AttendanceRecord.work_date.desc(), AttendanceRecord.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).all()
    return AttendanceRecordPage(
        data=[to_record_read(row) for row in rows],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=ceil(total / page_size) if total else 0,
    )


def get_attendance_record(db: Session, record_id: int) -> AttendanceRecord:
    record = db.get(AttendanceRecord, record_id)
    if record is None:
        raise ApiError(
            status_code=404,
            code="ATTENDANCE_RECORD_NOT_FOUND",
            message="Attendance record not found.",
        )
    return record


def update_attendance_record(
    db: Session,
    record_id: int,
    payload: AttendanceRecordUpdateRequest,
) -> AttendanceRecord:
    record = get_attendance_record(db, record_id)
    changes = payload.model_dump(exclude_unset=True)

    if "check_in" in changes:
        record.check_in = normalize_ts(changes["check_in"]) if changes["check_in"] is not None else None
    if "check_out" in changes:
        record.check_out = normalize_ts(changes["check_out"]) if changes["check_out"] is not None else None
    if "note" in changes:
        record.note = changes["note"]

    if "check_in" in changes or "check_out" in changes:
        record.work_hours = _work_hours_between(record.check_in, record.check_out)
        schedule = get_work_schedule(db)
        # Explicit minutes win over the schedule.
        if "check_in" in changes and changes.get("late_minutes") is None:
            record.late_minutes = _late_for(schedule, record.check_in)
        if "check_out" in changes and changes.get("early_leave_minutes") is None:
            record.early_leave_minutes = _early_for(schedule, record.check_out)
    for field_name in ("late_minutes", "early_leave_minutes"):
        if changes.get(field_name) is not None:
            setattr(record, field_name, changes[field_name])

    db.commit()
    db.refresh(record)
    logger.info(
        "attendance_record_updated",
        extra={"attendance_record_id": record.id, "fields": sorted(changes)},
    )
    return record


def create_attendance_record(db: Session, payload: AttendanceRecordCreateRequest) -> AttendanceRecord:
    """Back-fill a day the employee never clocked, e.g. a missed or forgotten day."""
    if db.get(Employee, payload.employee_id) is None:
        raise ApiError(status_code=404, code="EMPLOYEE_NOT_FOUND", message="Employee not found.")

    lock_employee(db, payload.employee_id)
    if _find_day_record(db, payload.employee_id, payload.work_date) is not None:
        raise ApiError(
            status_code=409,
            code="ATTENDANCE_RECORD_EXISTS",
            message="Attendance record already exists for this date.",
        )

    check_in_ts = normalize_ts(payload.check_in) if payload.check_in is not None else None
    check_out_ts = normalize_ts(payload.check_out) if payload.check_out is not None else None
    schedule = get_work_schedule(db)
    record = AttendanceRecord(
        employee_id=payload.employee_id,
        work_date=payload.work_date,
        check_in=check_in_ts,
        check_out=check_out_ts,
        work_hours=_work_hours_between(check_in_ts, check_out_ts),
        late_minutes=(
            payload.late_minutes if payload.late_minutes is not None else _late_for(schedule, check_in_ts)
        ),
        early_leave_minutes=(
            payload.early_leave_minutes
            if payload.early_leave_minutes is not None
            else _early_for(schedule, check_out_ts)
        ),
        is_verified=False,
        verification_facts=[],
        note=payload.note,
    )
    db.add(record)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ApiError(
            status_code=409,
            code="ATTENDANCE_RECORD_EXISTS",
            message="Attendance record already exists for this date.",
        ) from exc
    db.refresh(record)
    logger.info(
        "attendance_record_created",
        extra={
            "attendance_record_id": record.id,
            "employee_id": record.employee_id,
            "work_date": record.work_date.isoformat(),
        },
    )
    return record


def record_on_behalf(
    db: Session,
    *,
    employee_id: int,
    action_type: AttendanceActionType,
    recorded_by: int,
    note: str | None = None,
    now: datetime | None = None,
) -> AttendanceRecord:
    """Clock an employee in or out from the admin console.

    There is no device or photo behind the event, so the record stays unverified.
    """
    _get_employee_or_404(db, employee_id)
    event = AttendanceEvent(ts=normalize_ts(now), device=None, note=note, recorded_by=recorded_by)
    if action_type == AttendanceActionType.CHECK_IN:
        record = check_in(db, employee_id=employee_id, event=event)
    else:
        record = check_out(db, employee_id=employee_id, event=event)

    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ApiError(status_code=400, code="ALREADY_CHECKED_IN", message="Already checked in today.") from exc
    db.refresh(record)
    return record


def delete_attendance_record(db: Session, record_id: int) -> AttendanceRecord:
    record = get_attendance_record(db, record_id)
    db.delete(record)
    db.commit()
    logger.info(
        "attendance_record_deleted",
        extra={"attendance_record_id": record_id, "employee_id": record.employee_id},
    )
    return record
