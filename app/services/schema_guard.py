from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine


@dataclass(frozen=True, slots=True)
class SchemaGuardResult:
    ok: bool
    checked_at_utc: datetime
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "checked_at_utc": self.checked_at_utc.isoformat(),
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "issue_count": len(self.issues),
            "warning_count": len(self.warnings),
        }


REQUIRED_TABLE_COLUMNS: dict[str, set[str]] = {
    "employees": {"id", "email", "password_hash", "is_active", "annual_leave_limit"},
    "employee_positions": {"employee_id", "position_id", "department_id", "is_current"},
    "positions": {"id", "level"},
    "employee_devices": {"employee_id", "device_fingerprint", "status", "is_primary", "last_used_at"},
    "attendance_challenges": {"employee_id", "token", "action_type", "expires_at", "is_used", "used_at"},
    "attendance_records": {"employee_id", "work_date", "check_in", "check_out", "verification_facts"},
    "work_schedule_settings": {"standard_check_in_time", "standard_check_out_time", "late_tolerance_minutes"},
    "hr_requests": {"employee_id", "request_type", "status", "approved_by"},
    "leave_request_details": {"request_id", "start_date", "end_date", "total_days"},
    "overtime_request_details": {"request_id", "overtime_date", "overtime_hours"},
    "late_early_request_details": {"request_id", "late_early_date", "late_early_type"},
    "audit_logs": {"id", "action", "details"},
    "alembic_version": {"version_num"},
}

# Column sets that must be backed by a unique constraint or unique index.
REQUIRED_UNIQUE_KEYS: dict[str, tuple[str, ...]] = {
    "employee_devices": ("employee_id", "device_fingerprint"),
    "attendance_challenges": ("token",),
    "attendance_records": ("employee_id", "work_date"),
}

REQUIRED_ENUM_VALUES: dict[str, set[str]] = {
    "device_status": {"ACTIVE", "INACTIVE", "BLOCKED"},
    "attendance_action_type": {"CHECK_IN", "CHECK_OUT"},
    "hr_request_type": {"LEAVE", "OVERTIME", "LATE_EARLY"},
    "hr_request_status": {"PENDING", "APPROVED", "REJECTED", "CANCELLED"},
}


def _unique_column_sets(inspector, table_name: str) -> set[tuple[str, ...]]:
    column_sets: set[tuple[str, ...]] = set()
    for constraint in inspector.get_unique_constraints(table_name) or []:
        columns = constraint.get("column_names") or []
        column_sets.add(tuple(sorted(str(item) for item in columns)))
    for index in inspector.get_indexes(table_name) or []:
        if index.get("unique"):
            columns = index.get("column_names") or []
            column_sets.add(tuple(sorted(str(item) for item in columns if item)))
    return column_sets


def verify_runtime_schema(engine: Engine) -> SchemaGuardResult:
    issues: list[str] = []
    warnings: list[str] = []
    checked_at_utc = datetime.now(timezone.utc)
    inspector = inspect(engine)

    for table_name, required_columns in REQUIRED_TABLE_COLUMNS.items():
        try:
            column_names = {str(item.get("name")) for item in inspector.get_columns(table_name)}
        except Exception as exc:  # pragma: no cover
            issues.append(f"TABLE_UNREADABLE:{table_name}:{exc.__class__.__name__}")
            continue

        missing_columns = sorted(item for item in required_columns if item not in column_names)
        if missing_columns:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing_columns)}")

    for table_name, key_columns in REQUIRED_UNIQUE_KEYS.items():
        try:
            unique_sets = _unique_column_sets(inspector, table_name)
        except Exception as exc:  # pragma: no cover
            issues.append(f"CONSTRAINT_INSPECTION_FAILED:{table_name}:{exc.__class__.__name__}")
            continue
        if tuple(sorted(key_columns)) not in unique_sets:
            issues.append(f"MISSING_UNIQUE:{table_name}:{','.join(key_columns)}")

    try:
        enums = inspector.get_enums() or []
    except Exception as exc:  # pragma: no cover
        warnings.append(f"ENUM_INSPECTION_FAILED:{exc.__class__.__name__}")
        enums = []

    enum_values_by_name: dict[str, set[str]] = {}
    for enum_item in enums:
        name = str(enum_item.get("name") or "").strip()
        if not name:
            continue
        labels = enum_item.get("labels")
        if isinstance(labels, list):
            enum_values_by_name[name] = {str(label) for label in labels}

    for enum_name, required_values in REQUIRED_ENUM_VALUES.items():
        if enum_name not in enum_values_by_name:
            warnings.append(f"ENUM_NOT_FOUND:{enum_name}")
            continue
        missing_values = sorted(item for item in required_values if item not in enum_values_by_name[enum_name])
        if missing_values:
            issues.append(f"MISSING_ENUM_VALUES:{enum_name}:{','.join(missing_values)}")

    try:
        with engine.connect() as connection:
            row = connection.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).scalar()
            version = str(row).strip() if row is not None else ""
            if not version:
                issues.append("ALEMBIC_VERSION_EMPTY")
    except Exception as exc:  # pragma: no cover
        issues.append(f"ALEMBIC_VERSION_CHECK_FAILED:{exc.__class__.__name__}")

    return SchemaGuardResult(
        ok=len(issues) == 0,
        checked_at_utc=checked_at_utc,
        issues=issues,
        warnings=warnings,
    )
