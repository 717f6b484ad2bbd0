from __future__ import annotations

import logging
from datetime import date, time

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import WorkScheduleSettings
from app.schemas import WorkScheduleUpdate
from app.services.work_time import minutes_since_midnight

logger = logging.getLogger("app.work_schedule")

DEFAULT_CHECK_IN_TIME = time(8, 0, 0)
DEFAULT_CHECK_OUT_TIME = time(17, 0, 0)
DEFAULT_TOLERANCE_MINUTES = 15

_WEEKDAY_FIELDS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def _latest_schedule(db: Session) -> WorkScheduleSettings | None:
    return db.scalar(
        select(WorkScheduleSettings)
        .order_by(WorkScheduleSettings.id.desc())
        .limit(1)
    )


def get_work_schedule(db: Session) -> WorkScheduleSettings:
    schedule = _latest_schedule(db)
    if schedule is not None:
        return schedule

    schedule = WorkScheduleSettings(
        standard_check_in_time=DEFAULT_CHECK_IN_TIME,
        standard_check_out_time=DEFAULT_CHECK_OUT_TIME,
        monday=True,
        tuesday=True,
        wednesday=True,
        thursday=True,
        friday=True,
        saturday=False,
        sunday=False,
        standard_work_hours_per_day=8.0,
        late_tolerance_minutes=DEFAULT_TOLERANCE_MINUTES,
        early_leave_tolerance_minutes=DEFAULT_TOLERANCE_MINUTES,
    )
    db.add(schedule)
    db.flush()
    logger.info("work_schedule_defaults_created", extra={"work_schedule_id": schedule.id})
    return schedule


def update_work_schedule(db: Session, payload: WorkScheduleUpdate) -> WorkScheduleSettings:
    schedule = get_work_schedule(db)
    for field_name, value in payload.model_dump(exclude_unset=True).items():
        if value is None:
            continue
        setattr(schedule, field_name, value)

    db.commit()
    db.refresh(schedule)
    logger.info(
        "work_schedule_updated",
        extra={
            "work_schedule_id": schedule.id,
            "fields": sorted(payload.model_fields_set),
        },
    )
    return schedule


def is_working_day(day: date, schedule: WorkScheduleSettings) -> bool:
    return bool(getattr(schedule, _WEEKDAY_FIELDS[day.weekday()]))


def standard_check_in_minutes(schedule: WorkScheduleSettings) -> int:
    return minutes_since_midnight(schedule.standard_check_in_time)


def standard_check_out_minutes(schedule: WorkScheduleSettings) -> int:
    return minutes_since_midnight(schedule.standard_check_out_time)
