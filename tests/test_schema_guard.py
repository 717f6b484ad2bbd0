from __future__ import annotations

import unittest
from unittest.mock import patch

from app.services.schema_guard import REQUIRED_ENUM_VALUES, REQUIRED_TABLE_COLUMNS, verify_runtime_schema


class _FakeResult:
    def __init__(self, value):
        self._value = value

    def scalar(self):  # type: ignore[no-untyped-def]
        return self._value


class _FakeConnection:
    def __init__(self, version_value):
        self._version_value = version_value

    def __enter__(self):  # type: ignore[no-untyped-def]
        return self

    def __exit__(self, exc_type, exc, tb):  # type: ignore[no-untyped-def]
        return False

    def execute(self, _statement):  # type: ignore[no-untyped-def]
        return _FakeResult(self._version_value)


class _FakeEngine:
    def __init__(self, version_value):
        self._version_value = version_value

    def connect(self):  # type: ignore[no-untyped-def]
        return _FakeConnection(self._version_value)


class _FakeInspector:
    def __init__(
        self,
        *,
        columns_by_table: dict[str, set[str]],
        unique_constraints: dict[str, list[dict[str, object]]],
        indexes: dict[str, list[dict[str, object]]],
        enums: list[dict[str, object]],
    ):
        self._columns_by_table = columns_by_table
        self._unique_constraints = unique_constraints
        self._indexes = indexes
        self._enums = enums

    def get_columns(self, table_name: str):  # type: ignore[no-untyped-def]
        columns = self._columns_by_table[table_name]
        return [{"name": item} for item in columns]

    def get_unique_constraints(self, table_name: str):  # type: ignore[no-untyped-def]
        return self._unique_constraints.get(table_name, [])

    def get_indexes(self, table_name: str):  # type: ignore[no-untyped-def]
        return self._indexes.get(table_name, [])

    def get_enums(self):  # type: ignore[no-untyped-def]
        return self._enums


def _healthy_inspector_kwargs() -> dict[str, object]:
    return {
        "columns_by_table": {table: set(columns) for table, columns in REQUIRED_TABLE_COLUMNS.items()},
        "unique_constraints": {
            "employee_devices": [
                {
                    "name": "uq_employee_devices_employee_fingerprint",
                    "column_names": ["employee_id", "device_fingerprint"],
                }
            ],
            "attendance_records": [
                {
                    "name": "uq_attendance_records_employee_work_date",
                    "column_names": ["employee_id", "work_date"],
                }
            ],
        },
        "indexes": {
            "attendance_challenges": [
                {"name": "ix_attendance_challenges_token", "column_names": ["token"], "unique": True},
            ],
        },
        "enums": [{"name": name, "labels": sorted(values)} for name, values in REQUIRED_ENUM_VALUES.items()],
    }


class SchemaGuardTests(unittest.TestCase):
    def test_verify_runtime_schema_ok_when_schema_matches(self) -> None:
        fake_inspector = _FakeInspector(**_healthy_inspector_kwargs())  # type: ignore[arg-type]
        fake_engine = _FakeEngine("0003_hr_requests")

        with patch("app.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(fake_engine)  # type: ignore[arg-type]

        self.assertTrue(result.ok)
        self.assertEqual(result.issues, [])
        self.assertEqual(result.warnings, [])

    def test_verify_runtime_schema_reports_drift(self) -> None:
        kwargs = _healthy_inspector_kwargs()
        columns_by_table = kwargs["columns_by_table"]
        columns_by_table["attendance_records"] = {"employee_id", "work_date", "check_in", "check_out"}  # type: ignore[index]
        kwargs["unique_constraints"] = {
            "employee_devices": kwargs["unique_constraints"]["employee_devices"],  # type: ignore[index]
        }
        # A plain index on the same columns does not back the uniqueness rule.
        kwargs["indexes"] = {
            "attendance_records": [
                {"name": "ix_attendance_records_day", "column_names": ["employee_id", "work_date"], "unique": False},
            ],
            "attendance_challenges": [
                {"name": "ix_attendance_challenges_token", "column_names": ["token"], "unique": True},
            ],
        }
        kwargs["enums"] = [
            {"name": "device_status", "labels": ["ACTIVE", "INACTIVE", "BLOCKED"]},
            {"name": "attendance_action_type", "labels": ["CHECK_IN", "CHECK_OUT"]},
            {"name": "hr_request_status", "labels": ["PENDING", "APPROVED", "REJECTED"]},
        ]
        fake_inspector = _FakeInspector(**kwargs)  # type: ignore[arg-type]
        fake_engine = _FakeEngine("")

        with patch("app.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(fake_engine)  # type: ignore[arg-type]

        self.assertFalse(result.ok)
        self.assertIn("MISSING_COLUMNS:attendance_records:verification_facts", result.issues)
        self.assertIn("MISSING_UNIQUE:attendance_records:employee_id,work_date", result.issues)
        self.assertIn("MISSING_ENUM_VALUES:hr_request_status:CANCELLED", result.issues)
        self.assertIn("ALEMBIC_VERSION_EMPTY", result.issues)
        self.assertIn("ENUM_NOT_FOUND:hr_request_type", result.warnings)
        self.assertFalse(any(item.startswith("MISSING_UNIQUE:employee_devices") for item in result.issues))
        self.assertFalse(any(item.startswith("MISSING_UNIQUE:attendance_challenges") for item in result.issues))

    def test_to_dict_counts_issues_and_warnings(self) -> None:
        fake_inspector = _FakeInspector(**_healthy_inspector_kwargs())  # type: ignore[arg-type]
        with patch("app.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(_FakeEngine(""))  # type: ignore[arg-type]

        payload = result.to_dict()
        self.assertEqual(payload["issue_count"], 1)
        self.assertEqual(payload["warning_count"], 0)
        self.assertFalse(payload["ok"])


if __name__ == "__main__":
    unittest.main()
