from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.errors import ApiError
from app.models import AttendanceActionType, AttendanceChallenge
from app.settings import get_settings
from app.services.work_time import normalize_ts

logger = logging.getLogger("app.challenges")

TOKEN_BYTES = 32


def generate_challenge_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


def _challenge_ttl() -> timedelta:
    return timedelta(seconds=max(1, int(get_settings().challenge_ttl_seconds)))


def _challenge_error(code: str, message: str) -> ApiError:
    return ApiError(status_code=400, code=code, message=message)


def issue_challenge(
    db: Session,
    *,
    employee_id: int,
    device_fingerprint: str,
    action_type: AttendanceActionType,
    now: datetime | None = None,
) -> AttendanceChallenge:
    """Supersede every open challenge of the employee and store a fresh one.

    The caller owns the transaction; nothing is committed here.
    """
    issued_at = normalize_ts(now)
    db.execute(
        update(AttendanceChallenge)
        .where(
            AttendanceChallenge.employee_id == employee_id,
            AttendanceChallenge.is_used.is_(False),
        )
        .values(is_used=True, used_at=issued_at)
    )

    challenge = AttendanceChallenge(
        employee_id=employee_id,
        token=generate_challenge_token(),
        action_type=action_type,
        expires_at=issued_at + _challenge_ttl(),
        is_used=False,
        expected_device_fingerprint=device_fingerprint,
    )
    db.add(challenge)
    db.flush()
    logger.info(
        "attendance_challenge_issued",
        extra={
            "employee_id": employee_id,
            "challenge_id": challenge.id,
            "action_type": action_type.value,
        },
    )
    return challenge


def _find_challenge(db: Session, token: str) -> AttendanceChallenge | None:
    return db.scalar(select(AttendanceChallenge).where(AttendanceChallenge.token == token))


def consume_challenge(
    db: Session,
    *,
    employee_id: int,
    token: str | None,
    device_fingerprint: str,
    action_type: AttendanceActionType,
    now: datetime | None = None,
) -> AttendanceChallenge:
    checked_at = normalize_ts(now)
    challenge = _find_challenge(db, token) if token else None
    if challenge is None or challenge.employee_id != employee_id:
        raise _challenge_error("CHALLENGE_NOT_FOUND", "Challenge token is missing or unknown.")
    if challenge.is_used:
        raise _challenge_error("CHALLENGE_ALREADY_USED", "Challenge token has already been used.")
    if normalize_ts(challenge.expires_at) < checked_at:
        raise _challenge_error("CHALLENGE_EXPIRED", "Challenge token has expired.")
    if challenge.action_type != action_type:
        raise _challenge_error("CHALLENGE_MISMATCH", "Challenge was issued for a different action.")
    if (
        challenge.expected_device_fingerprint is not None
        and challenge.expected_device_fingerprint != device_fingerprint
    ):
        raise _challenge_error("CHALLENGE_MISMATCH", "Challenge was issued for a different device.")

    challenge.is_used = True
    challenge.used_at = checked_at
    db.flush()
    return challenge
