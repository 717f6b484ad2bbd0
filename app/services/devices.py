from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Literal

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.errors import ApiError
from app.models import DeviceStatus, Employee, EmployeeDevice
from app.schemas import DeviceMetadata

logger = logging.getLogger("app.devices")

DeviceResolution = Literal["registered", "pending", "new"]

_MOBILE_PATTERN = re.compile(r"mobile|android|iphone|ipad|ipod")
_TABLET_PATTERN = re.compile(r"ipad|tablet")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def detect_device_type(user_agent: str | None) -> str:
    ua = (user_agent or "").lower()
    if _MOBILE_PATTERN.search(ua):
        if _TABLET_PATTERN.search(ua):
            return "tablet"
        return "mobile"
    return "desktop"


def _find_employee_device(db: Session, employee_id: int, device_fingerprint: str) -> EmployeeDevice | None:
    return db.scalar(
        select(EmployeeDevice).where(
            EmployeeDevice.employee_id == employee_id,
            EmployeeDevice.device_fingerprint == device_fingerprint,
        )
    )


def _get_device_or_404(db: Session, device_id: int) -> EmployeeDevice:
    device = db.get(EmployeeDevice, device_id)
    if device is None:
        raise ApiError(status_code=404, code="DEVICE_NOT_FOUND", message="Device not found.")
    return device


def _blocked_device_error() -> ApiError:
    return ApiError(
        status_code=403,
        code="DEVICE_BLOCKED",
        message="This device has been blocked. Please contact administrator.",
    )


def touch_device(
    device: EmployeeDevice,
    *,
    ip_address: str | None,
    user_agent: str | None,
    now: datetime | None = None,
) -> None:
    device.last_used_at = now or _utcnow()
    device.last_ip_address = ip_address
    if user_agent:
        device.user_agent = user_agent


def resolve_or_register(
    db: Session,
    *,
    employee_id: int,
    device_fingerprint: str,
    metadata: DeviceMetadata,
    ip_address: str | None,
) -> tuple[EmployeeDevice, DeviceResolution, str | None]:
    """Look up the caller's device, auto-registering unseen fingerprints as ACTIVE.

    Returns the device, its resolution status and an optional human message.
    A BLOCKED device raises ``DEVICE_BLOCKED``. Changes are flushed, not committed.
    """
    now = _utcnow()
    device = _find_employee_device(db, employee_id, device_fingerprint)
    if device is not None:
        if device.status == DeviceStatus.BLOCKED:
            raise _blocked_device_error()
        touch_device(device, ip_address=ip_address, user_agent=metadata.user_agent, now=now)
        db.flush()
        if device.status == DeviceStatus.ACTIVE:
            return device, "registered", None
        return device, "pending", "Device is pending approval"

    device = EmployeeDevice(
        employee_id=employee_id,
        device_fingerprint=device_fingerprint,
        device_name=metadata.device_name,
        device_type=metadata.device_type or detect_device_type(metadata.user_agent),
        os=metadata.os,
        browser=metadata.browser,
        screen_resolution=metadata.screen_resolution,
        timezone=metadata.timezone,
        language=metadata.language,
        user_agent=metadata.user_agent,
        status=DeviceStatus.ACTIVE,
        is_primary=False,
        last_used_at=now,
        last_ip_address=ip_address,
    )
    db.add(device)
    db.flush()
    logger.info(
        "device_auto_registered",
        extra={"employee_id": employee_id, "device_id": device.id},
    )
    return device, "new", "New device registered successfully"


def register_device(
    db: Session,
    *,
    employee_id: int,
    device_fingerprint: str,
    metadata: DeviceMetadata,
    is_primary: bool = False,
    registered_by: int | None = None,
    ip_address: str | None = None,
) -> EmployeeDevice:
    if db.get(Employee, employee_id) is None:
        raise ApiError(status_code=404, code="EMPLOYEE_NOT_FOUND", message="Employee not found.")
    if _find_employee_device(db, employee_id, device_fingerprint) is not None:
        raise ApiError(
            status_code=400,
            code="DEVICE_ALREADY_REGISTERED",
            message="Device is already registered.",
        )

    if is_primary:
        db.execute(
            update(EmployeeDevice)
            .where(
                EmployeeDevice.employee_id == employee_id,
                EmployeeDevice.is_primary.is_(True),
            )
            .values(is_primary=False)
        )

    device = EmployeeDevice(
        employee_id=employee_id,
        device_fingerprint=device_fingerprint,
        device_name=metadata.device_name,
        device_type=metadata.device_type or detect_device_type(metadata.user_agent),
        os=metadata.os,
        browser=metadata.browser,
        screen_resolution=metadata.screen_resolution,
        timezone=metadata.timezone,
        language=metadata.language,
        user_agent=metadata.user_agent,
        status=DeviceStatus.ACTIVE,
        is_primary=is_primary,
        registered_by=registered_by,
        last_ip_address=ip_address,
    )
    db.add(device)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ApiError(
            status_code=400,
            code="DEVICE_ALREADY_REGISTERED",
            message="Device is already registered.",
        ) from exc
    db.refresh(device)

    logger.info(
        "device_registered",
        extra={
            "employee_id": employee_id,
            "device_id": device.id,
            "is_primary": is_primary,
            "registered_by": registered_by,
        },
    )
    return device


def list_employee_devices(db: Session, employee_id: int) -> list[EmployeeDevice]:
    return list(
        db.scalars(
            select(EmployeeDevice)
            .where(EmployeeDevice.employee_id == employee_id)
            .order_by(
                EmployeeDevice.is_primary.desc(),
                EmployeeDevice.last_used_at.desc().nulls_last(),
                EmployeeDevice.id.desc(),
            )
        ).all()
    )


def list_devices(
    db: Session,
    *,
    employee_id: int | None = None,
    status: DeviceStatus | None = None,
) -> list[EmployeeDevice]:
    stmt = select(EmployeeDevice)
    if employee_id is not None:
        stmt = stmt.where(EmployeeDevice.employee_id == employee_id)
    if status is not None:
        stmt = stmt.where(EmployeeDevice.status == status)
    return list(db.scalars(stmt.order_by(EmployeeDevice.id.desc())).all())


def set_device_status(db: Session, device_id: int, status: DeviceStatus) -> EmployeeDevice:
    device = _get_device_or_404(db, device_id)
    previous_status = device.status
    device.status = status
    db.commit()
    db.refresh(device)
    logger.info(
        "device_status_changed",
        extra={
            "device_id": device.id,
            "employee_id": device.employee_id,
            "previous_status": previous_status.value if previous_status else None,
            "status": status.value,
        },
    )
    return device


def delete_device(db: Session, device_id: int) -> EmployeeDevice:
    device = _get_device_or_404(db, device_id)
    db.delete(device)
    db.commit()
    logger.info("device_deleted", extra={"device_id": device_id, "employee_id": device.employee_id})
    return device
