from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.settings import get_settings

_TWO_PLACES = Decimal("0.01")


@lru_cache
def attendance_timezone() -> ZoneInfo:
    raw_name = (get_settings().attendance_timezone or "").strip() or "Asia/Ho_Chi_Minh"
    try:
        return ZoneInfo(raw_name)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("Asia/Ho_Chi_Minh")


def normalize_ts(ts_utc: datetime | None) -> datetime:
    if ts_utc is None:
        return datetime.now(timezone.utc)
    if ts_utc.tzinfo is None:
        return ts_utc.replace(tzinfo=timezone.utc)
    return ts_utc.astimezone(timezone.utc)


def local_day(ts: datetime) -> date:
    return normalize_ts(ts).astimezone(attendance_timezone()).date()


def local_time(ts: datetime) -> time:
    return normalize_ts(ts).astimezone(attendance_timezone()).time()


def parse_clock(value: str) -> time:
    """Parse ``HH:mm`` or ``HH:mm:ss`` into a ``time``; raises ``ValueError`` on bad input."""
    parts = value.strip().split(":")
    if len(parts) not in (2, 3) or not all(part.isdigit() for part in parts):
        raise ValueError(f"Invalid clock value: {value!r}")
    hour, minute = int(parts[0]), int(parts[1])
    second = int(parts[2]) if len(parts) == 3 else 0
    return time(hour=hour, minute=minute, second=second)


def minutes_since_midnight(value: str | time) -> int:
    # Seconds are ignored.
    clock = parse_clock(value) if isinstance(value, str) else value
    return clock.hour * 60 + clock.minute


def late_minutes(check_in: str | time, standard_check_in_minutes: int, tolerance_minutes: int) -> int:
    check_in_minutes = minutes_since_midnight(check_in)
    return max(0, check_in_minutes - (standard_check_in_minutes + tolerance_minutes))


def early_leave_minutes(check_out: str | time, standard_check_out_minutes: int, tolerance_minutes: int) -> int:
    check_out_minutes = minutes_since_midnight(check_out)
    return max(0, (standard_check_out_minutes - tolerance_minutes) - check_out_minutes)


def round_hours(delta: timedelta) -> float:
    hours = Decimal(repr(delta.total_seconds() / 3600))
    return float(hours.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP))


def inclusive_day_count(start: date, end: date) -> int:
    return abs((end - start).days) + 1
