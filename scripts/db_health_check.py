#!/usr/bin/env python
from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import create_engine, text

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.settings import get_settings

EXPECTED_HEAD = "0003_hr_requests"

REQUIRED_TABLES = [
    "employees",
    "employee_positions",
    "employee_devices",
    "attendance_challenges",
    "attendance_records",
    "work_schedule_settings",
    "hr_requests",
    "leave_request_details",
    "overtime_request_details",
    "late_early_request_details",
    "audit_logs",
]

# (check name, table, key columns)
DUPLICATE_KEY_CHECKS = [
    ("duplicate_employee_device_fingerprint", "employee_devices", ("employee_id", "device_fingerprint")),
    ("duplicate_challenge_token", "attendance_challenges", ("token",)),
    ("duplicate_attendance_record_per_day", "attendance_records", ("employee_id", "work_date")),
]


def run() -> dict:
    engine = create_engine(get_settings().database_url)
    report: dict = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "checks": [],
    }

    def add(name: str, status: str, details: dict) -> None:
        report["checks"].append(
            {
                "name": name,
                "status": status,
                "details": details,
            }
        )

    with engine.connect() as conn:
        tables = set(
            conn.execute(
                text(
                    """
                    select table_name
                    from information_schema.tables
                    where table_schema='public'
                    """
                )
            ).scalars()
        )

        current_versions: list[str] = []
        if "alembic_version" in tables:
            current_versions = [
                row[0]
                for row in conn.execute(text("select version_num from alembic_version")).fetchall()
            ]
        add("alembic_version", "ok" if current_versions else "fail", {"current": current_versions})

        add(
            "migration_up_to_date",
            "ok" if EXPECTED_HEAD in current_versions else "warn",
            {"expected_head": EXPECTED_HEAD, "current": current_versions},
        )

        missing_tables = [table for table in REQUIRED_TABLES if table not in tables]
        add("missing_tables", "fail" if missing_tables else "ok", {"missing": missing_tables})

        for check_name, table, columns in DUPLICATE_KEY_CHECKS:
            if table not in tables:
                continue
            column_list = ", ".join(columns)
            duplicates = conn.execute(
                text(
                    f"""
                    select {column_list}, count(*)
                    from {table}
                    group by {column_list}
                    having count(*) > 1
                    limit 20
                    """
                )
            ).fetchall()
            add(
                check_name,
                "fail" if duplicates else "ok",
                {"rows": [[str(value) for value in row] for row in duplicates]},
            )

        if "hr_requests" in tables and "leave_request_details" in tables:
            orphan_leave_headers = conn.execute(
                text(
                    """
                    select r.id
                    from hr_requests r
                    left join leave_request_details d on d.request_id = r.id
                    where r.request_type = 'LEAVE' and d.id is null
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "leave_request_without_details",
                "fail" if orphan_leave_headers else "ok",
                {"sample_ids": [row[0] for row in orphan_leave_headers]},
            )

        if "attendance_records" in tables:
            reversed_times = conn.execute(
                text(
                    """
                    select id
                    from attendance_records
                    where check_in is not null
                      and check_out is not null
                      and check_out < check_in
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "attendance_checkout_before_checkin",
                "fail" if reversed_times else "ok",
                {"sample_ids": [row[0] for row in reversed_times]},
            )

    engine.dispose()
    return report


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2))
