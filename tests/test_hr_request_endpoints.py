from __future__ import annotations

import unittest
from datetime import date, timedelta

from sqlalchemy import select

from app.models import AuditLog
from tests.sqlite_support import EndpointTestCase, add_department, add_employee, auth_headers


class HrRequestEndpointTests(EndpointTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.dept_a = add_department(self.db, "Warehouse")
        self.dept_b = add_department(self.db, "Marketing")
        self.manager = add_employee(self.db, "Warehouse Lead", roles=("MANAGER",), department=self.dept_a, level=3)
        self.staff = add_employee(self.db, "Warehouse Picker", department=self.dept_a, level=2)
        self.outsider = add_employee(self.db, "Marketing Intern", department=self.dept_b, level=1)
        self.admin = add_employee(self.db, "HR Admin", roles=("ADMIN",))

        self.staff_headers = auth_headers(self.staff)
        self.manager_headers = auth_headers(self.manager, "MANAGER")
        self.admin_headers = auth_headers(self.admin, "ADMIN")

        self.start = date.today() + timedelta(days=30)

    def _create_leave(self, headers: dict[str, str] | None = None, **overrides):  # type: ignore[no-untyped-def]
        payload = {
            "leave_type": "ANNUAL",
            "start_date": self.start.isoformat(),
            "end_date": (self.start + timedelta(days=2)).isoformat(),
            "reason": "Wedding",
        }
        payload.update(overrides)
        return self.client.post("/api/hr-requests/leave", json=payload, headers=headers or self.staff_headers)

    def test_create_leave_returns_typed_details(self) -> None:
        response = self._create_leave()

        self.assertEqual(response.status_code, 201, response.text)
        body = response.json()
        self.assertEqual(body["employee_id"], self.staff.id)
        self.assertEqual(body["status"], "PENDING")
        self.assertEqual(body["request_type"], "LEAVE")
        self.assertEqual(body["details"]["request_type"], "LEAVE")
        self.assertEqual(body["details"]["total_days"], 3.0)

        audit = self.db.scalar(select(AuditLog).where(AuditLog.action == "HR_REQUEST_CREATED"))
        self.assertIsNotNone(audit)
        self.assertEqual(audit.entity_id, str(body["id"]))

    def test_overlapping_leave_returns_error_envelope(self) -> None:
        self.assertEqual(self._create_leave().status_code, 201)

        response = self._create_leave(
            start_date=(self.start + timedelta(days=2)).isoformat(),
            end_date=(self.start + timedelta(days=4)).isoformat(),
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["code"], "LEAVE_OVERLAP")

    def test_only_approvers_reach_decision_endpoints(self) -> None:
        request_id = self._create_leave().json()["id"]

        forbidden = self.client.put(f"/api/hr-requests/{request_id}/approve", json={}, headers=self.staff_headers)
        self.assertEqual(forbidden.status_code, 403)
        self.assertEqual(forbidden.json()["error"]["code"], "FORBIDDEN")

        approved = self.client.put(
            f"/api/hr-requests/{request_id}/approve",
            json={"note": "Approved for peak-free week"},
            headers=self.manager_headers,
        )
        self.assertEqual(approved.status_code, 200, approved.text)
        self.assertEqual(approved.json()["status"], "APPROVED")
        self.assertEqual(approved.json()["approved_by"], self.manager.id)

        again = self.client.put(f"/api/hr-requests/{request_id}/reject", json={}, headers=self.manager_headers)
        self.assertEqual(again.status_code, 400)
        self.assertEqual(again.json()["error"]["code"], "REQUEST_NOT_PENDING")

    def test_manager_cannot_decide_outside_department(self) -> None:
        request_id = self._create_leave(headers=auth_headers(self.outsider)).json()["id"]

        response = self.client.put(f"/api/hr-requests/{request_id}/approve", json={}, headers=self.manager_headers)
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"]["code"], "APPROVAL_FORBIDDEN")

    def test_filing_for_another_employee_requires_admin(self) -> None:
        response = self._create_leave(employee_id=self.outsider.id)
        self.assertEqual(response.status_code, 403)

        response = self._create_leave(headers=self.admin_headers, employee_id=self.outsider.id)
        self.assertEqual(response.status_code, 201, response.text)
        self.assertEqual(response.json()["employee_id"], self.outsider.id)

    def test_overtime_validation_errors(self) -> None:
        missing = self.client.post(
            "/api/hr-requests/overtime",
            json={"date": self.start.isoformat()},
            headers=self.staff_headers,
        )
        self.assertEqual(missing.status_code, 422)
        self.assertEqual(missing.json()["error"]["code"], "VALIDATION_ERROR")

        inverted = self.client.post(
            "/api/hr-requests/overtime",
            json={"date": self.start.isoformat(), "start_time": "20:00", "end_time": "18:00"},
            headers=self.staff_headers,
        )
        self.assertEqual(inverted.status_code, 400)
        self.assertEqual(inverted.json()["error"]["code"], "INVALID_TIME_RANGE")

    def test_owner_cancel_and_visibility(self) -> None:
        request_id = self._create_leave().json()["id"]

        hidden = self.client.get(f"/api/hr-requests/{request_id}", headers=auth_headers(self.outsider))
        self.assertEqual(hidden.status_code, 403)
        self.assertEqual(hidden.json()["error"]["code"], "REQUEST_VIEW_FORBIDDEN")

        listed = self.client.get("/api/hr-requests", headers=self.manager_headers)
        self.assertEqual([row["id"] for row in listed.json()], [request_id])

        not_owner = self.client.put(f"/api/hr-requests/{request_id}/cancel", headers=self.manager_headers)
        self.assertEqual(not_owner.json()["error"]["code"], "NOT_REQUEST_OWNER")

        cancelled = self.client.put(f"/api/hr-requests/{request_id}/cancel", headers=self.staff_headers)
        self.assertEqual(cancelled.status_code, 200)
        self.assertEqual(cancelled.json()["status"], "CANCELLED")

    def test_leave_balance_access(self) -> None:
        own = self.client.get("/api/hr-requests/leave/balance", headers=self.staff_headers)
        self.assertEqual(own.status_code, 200)
        self.assertEqual(own.json()["limit"], 12)
        self.assertEqual(own.json()["remaining"], 12.0)

        other = self.client.get(f"/api/hr-requests/leave/balance/{self.outsider.id}", headers=self.staff_headers)
        self.assertEqual(other.status_code, 403)

        as_admin = self.client.get(f"/api/hr-requests/leave/balance/{self.outsider.id}", headers=self.admin_headers)
        self.assertEqual(as_admin.status_code, 200)

    def test_unknown_request_is_not_found(self) -> None:
        response = self.client.get("/api/hr-requests/987654", headers=self.staff_headers)
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"]["code"], "HR_REQUEST_NOT_FOUND")


if __name__ == "__main__":
    unittest.main()
