from __future__ import annotations

import unittest
from datetime import date, time

from app.errors import ApiError
from app.models import HrRequestStatus, HrRequestType, LateEarlyType, LeaveType
from app.schemas import (
    HrRequestRead,
    HrRequestUpdateRequest,
    LateEarlyCreateRequest,
    LeaveCreateRequest,
    OvertimeCreateRequest,
)
from app.services.hr_requests import (
    approve_request,
    cancel_request,
    create_late_early,
    create_leave,
    create_overtime,
    dates_overlap,
    delete_request,
    get_leave_balance,
    get_request,
    list_requests,
    overtime_hours,
    reject_request,
    update_request,
)
from tests.sqlite_support import add_department, add_employee, make_session

TODAY = date(2026, 3, 1)


class OverlapRuleTests(unittest.TestCase):
    def test_dates_overlap_is_inclusive(self) -> None:
        self.assertTrue(dates_overlap(date(2026, 3, 10), date(2026, 3, 12), date(2026, 3, 12), date(2026, 3, 14)))
        self.assertFalse(dates_overlap(date(2026, 3, 10), date(2026, 3, 12), date(2026, 3, 13), date(2026, 3, 15)))
        self.assertTrue(dates_overlap(date(2026, 3, 9), date(2026, 3, 20), date(2026, 3, 10), date(2026, 3, 12)))

    def test_overtime_hours(self) -> None:
        self.assertEqual(overtime_hours(TODAY, time(18, 0), time(20, 30)), 2.5)
        self.assertEqual(overtime_hours(TODAY, time(18, 0), time(18, 20)), 0.33)
        with self.assertRaises(ApiError) as exc:
            overtime_hours(TODAY, time(20, 0), time(20, 0))
        self.assertEqual(exc.exception.code, "INVALID_TIME_RANGE")


class HrRequestEngineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.dept_a = add_department(self.db, "Operations")
        self.dept_b = add_department(self.db, "Sales")
        self.super_admin = add_employee(self.db, "Root Admin", roles=("SUPER_ADMIN",))
        self.manager = add_employee(self.db, "Ops Manager", roles=("MANAGER",), department=self.dept_a, level=3)
        self.staff = add_employee(self.db, "Ops Staff", department=self.dept_a, level=2)
        self.peer = add_employee(self.db, "Ops Peer", department=self.dept_a, level=3)
        self.outsider = add_employee(self.db, "Sales Staff", department=self.dept_b, level=2)

    def tearDown(self) -> None:
        self.db.close()

    def _leave(self, employee_id: int, start: date, end: date, leave_type: LeaveType = LeaveType.ANNUAL):
        return create_leave(
            self.db,
            employee_id=employee_id,
            payload=LeaveCreateRequest(leave_type=leave_type, start_date=start, end_date=end, reason="Family trip"),
            today=TODAY,
        )

    def _set_status(self, request, status: HrRequestStatus) -> None:  # type: ignore[no-untyped-def]
        request.status = status
        self.db.commit()

    def test_create_leave_counts_inclusive_days(self) -> None:
        request = self._leave(self.staff.id, date(2026, 3, 10), date(2026, 3, 12))

        self.assertEqual(request.request_type, HrRequestType.LEAVE)
        self.assertEqual(request.status, HrRequestStatus.PENDING)
        self.assertEqual(request.leave.total_days, 3.0)

        read = HrRequestRead.from_model(request)
        self.assertEqual(read.employee_name, "Ops Staff")
        self.assertEqual(read.details.request_type, "LEAVE")  # type: ignore[union-attr]

    def test_create_leave_validates_dates(self) -> None:
        with self.assertRaises(ApiError) as exc:
            self._leave(self.staff.id, date(2026, 2, 28), date(2026, 3, 2))
        self.assertEqual(exc.exception.code, "START_DATE_IN_PAST")

        with self.assertRaises(ApiError) as exc:
            self._leave(self.staff.id, date(2026, 3, 12), date(2026, 3, 10))
        self.assertEqual(exc.exception.code, "INVALID_DATE_RANGE")

        with self.assertRaises(ApiError) as exc:
            self._leave(9999, date(2026, 3, 10), date(2026, 3, 12))
        self.assertEqual(exc.exception.code, "EMPLOYEE_NOT_FOUND")

    def test_overlapping_leave_is_rejected_and_adjacent_is_allowed(self) -> None:
        existing = self._leave(self.staff.id, date(2026, 3, 10), date(2026, 3, 12))
        self._set_status(existing, HrRequestStatus.APPROVED)

        with self.assertRaises(ApiError) as exc:
            self._leave(self.staff.id, date(2026, 3, 12), date(2026, 3, 14))
        self.assertEqual(exc.exception.code, "LEAVE_OVERLAP")

        adjacent = self._leave(self.staff.id, date(2026, 3, 13), date(2026, 3, 15))
        self.assertEqual(adjacent.status, HrRequestStatus.PENDING)

    def test_rejected_and_cancelled_leave_do_not_block(self) -> None:
        rejected = self._leave(self.staff.id, date(2026, 3, 10), date(2026, 3, 12))
        self._set_status(rejected, HrRequestStatus.REJECTED)
        cancelled = self._leave(self.staff.id, date(2026, 3, 10), date(2026, 3, 12))
        self._set_status(cancelled, HrRequestStatus.CANCELLED)

        again = self._leave(self.staff.id, date(2026, 3, 11), date(2026, 3, 11))
        self.assertEqual(again.leave.total_days, 1.0)

        other_employee = self._leave(self.outsider.id, date(2026, 3, 11), date(2026, 3, 11))
        self.assertEqual(other_employee.employee_id, self.outsider.id)

    def test_create_overtime_and_late_early(self) -> None:
        overtime = create_overtime(
            self.db,
            employee_id=self.staff.id,
            payload=OvertimeCreateRequest(date=date(2026, 3, 3), start_time=time(18, 0), end_time=time(20, 30)),
        )
        self.assertEqual(overtime.overtime.overtime_hours, 2.5)

        with self.assertRaises(ApiError) as exc:
            create_overtime(
                self.db,
                employee_id=self.staff.id,
                payload=OvertimeCreateRequest(date=date(2026, 3, 3), start_time=time(20, 0), end_time=time(19, 0)),
            )
        self.assertEqual(exc.exception.code, "INVALID_TIME_RANGE")

        late = create_late_early(
            self.db,
            employee_id=self.staff.id,
            payload=LateEarlyCreateRequest(
                date=date(2026, 3, 3),
                type=LateEarlyType.LATE,
                actual_time=time(9, 10),
                minutes=55,
                reason="Flat tyre",
            ),
        )
        self.assertEqual(late.late_early.minutes, 55)
        self.assertEqual(late.late_early.late_early_type, LateEarlyType.LATE)

    def test_manager_approves_only_subordinates(self) -> None:
        staff_request = self._leave(self.staff.id, date(2026, 3, 10), date(2026, 3, 12))
        peer_request = self._leave(self.peer.id, date(2026, 3, 10), date(2026, 3, 12))
        outsider_request = self._leave(self.outsider.id, date(2026, 3, 10), date(2026, 3, 12))

        approved = approve_request(
            self.db,
            request_id=staff_request.id,
            approver_id=self.manager.id,
            approver_roles=("MANAGER",),
            note="Enjoy",
        )
        self.assertEqual(approved.status, HrRequestStatus.APPROVED)
        self.assertEqual(approved.approved_by, self.manager.id)
        self.assertIsNotNone(approved.approved_at)
        self.assertEqual(approved.approval_note, "Enjoy")

        for request in (peer_request, outsider_request):
            with self.subTest(employee_id=request.employee_id):
                with self.assertRaises(ApiError) as exc:
                    approve_request(
                        self.db,
                        request_id=request.id,
                        approver_id=self.manager.id,
                        approver_roles=("MANAGER",),
                    )
                self.assertEqual(exc.exception.status_code, 403)
                self.assertEqual(exc.exception.code, "APPROVAL_FORBIDDEN")

        rejected = reject_request(
            self.db,
            request_id=outsider_request.id,
            approver_id=self.super_admin.id,
            approver_roles=("SUPER_ADMIN",),
            note="Busy season",
        )
        self.assertEqual(rejected.status, HrRequestStatus.REJECTED)

    def test_decisions_require_pending_status(self) -> None:
        request = self._leave(self.staff.id, date(2026, 3, 10), date(2026, 3, 12))
        approve_request(self.db, request_id=request.id, approver_id=self.super_admin.id, approver_roles=("SUPER_ADMIN",))

        with self.assertRaises(ApiError) as exc:
            reject_request(self.db, request_id=request.id, approver_id=self.super_admin.id, approver_roles=("SUPER_ADMIN",))
        self.assertEqual(exc.exception.code, "REQUEST_NOT_PENDING")

        with self.assertRaises(ApiError) as exc:
            cancel_request(self.db, request_id=request.id, employee_id=self.staff.id)
        self.assertEqual(exc.exception.code, "REQUEST_NOT_PENDING")

        with self.assertRaises(ApiError) as exc:
            approve_request(self.db, request_id=424242, approver_id=self.super_admin.id, approver_roles=("SUPER_ADMIN",))
        self.assertEqual(exc.exception.code, "HR_REQUEST_NOT_FOUND")

    def test_owner_only_cancel_update_delete(self) -> None:
        request = self._leave(self.staff.id, date(2026, 3, 10), date(2026, 3, 12))

        for action in (
            lambda: cancel_request(self.db, request_id=request.id, employee_id=self.peer.id),
            lambda: delete_request(self.db, request_id=request.id, employee_id=self.peer.id),
            lambda: update_request(
                self.db,
                request_id=request.id,
                employee_id=self.peer.id,
                payload=HrRequestUpdateRequest(reason="Hijack"),
                today=TODAY,
            ),
        ):
            with self.assertRaises(ApiError) as exc:
                action()
            self.assertEqual(exc.exception.code, "NOT_REQUEST_OWNER")

        cancelled = cancel_request(self.db, request_id=request.id, employee_id=self.staff.id)
        self.assertEqual(cancelled.status, HrRequestStatus.CANCELLED)

        with self.assertRaises(ApiError) as exc:
            update_request(
                self.db,
                request_id=request.id,
                employee_id=self.staff.id,
                payload=HrRequestUpdateRequest(reason="Too late"),
                today=TODAY,
            )
        self.assertEqual(exc.exception.code, "REQUEST_NOT_PENDING")

    def test_update_leave_recomputes_days_and_excludes_itself_from_overlap(self) -> None:
        request = self._leave(self.staff.id, date(2026, 3, 10), date(2026, 3, 12))
        other = self._leave(self.staff.id, date(2026, 3, 20), date(2026, 3, 21))

        updated = update_request(
            self.db,
            request_id=request.id,
            employee_id=self.staff.id,
            payload=HrRequestUpdateRequest(start_date=date(2026, 3, 11), end_date=date(2026, 3, 14)),
            today=TODAY,
        )
        self.assertEqual(updated.leave.total_days, 4.0)

        with self.assertRaises(ApiError) as exc:
            update_request(
                self.db,
                request_id=other.id,
                employee_id=self.staff.id,
                payload=HrRequestUpdateRequest(start_date=date(2026, 3, 14)),
                today=TODAY,
            )
        self.assertEqual(exc.exception.code, "LEAVE_OVERLAP")
        self.db.rollback()

    def test_update_overtime_recomputes_hours(self) -> None:
        request = create_overtime(
            self.db,
            employee_id=self.staff.id,
            payload=OvertimeCreateRequest(date=date(2026, 3, 3), start_time=time(18, 0), end_time=time(20, 0)),
        )
        updated = update_request(
            self.db,
            request_id=request.id,
            employee_id=self.staff.id,
            payload=HrRequestUpdateRequest(end_time=time(21, 15)),
        )
        self.assertEqual(updated.overtime.overtime_hours, 3.25)

    def test_delete_pending_request(self) -> None:
        request = self._leave(self.staff.id, date(2026, 3, 10), date(2026, 3, 12))
        delete_request(self.db, request_id=request.id, employee_id=self.staff.id)

        with self.assertRaises(ApiError) as exc:
            get_request(self.db, request_id=request.id, viewer_id=self.staff.id, viewer_roles=("EMPLOYEE",))
        self.assertEqual(exc.exception.code, "HR_REQUEST_NOT_FOUND")

    def test_list_requests_scoping(self) -> None:
        staff_request = self._leave(self.staff.id, date(2026, 3, 10), date(2026, 3, 12))
        peer_request = self._leave(self.peer.id, date(2026, 3, 10), date(2026, 3, 12))
        outsider_request = self._leave(self.outsider.id, date(2026, 3, 10), date(2026, 3, 12))
        manager_request = self._leave(self.manager.id, date(2026, 3, 10), date(2026, 3, 12))

        def ids(viewer, roles, **filters):  # type: ignore[no-untyped-def]
            rows = list_requests(self.db, viewer_id=viewer.id, viewer_roles=roles, **filters)
            return {row.id for row in rows}

        self.assertEqual(
            ids(self.super_admin, ("SUPER_ADMIN",)),
            {staff_request.id, peer_request.id, outsider_request.id, manager_request.id},
        )
        self.assertEqual(ids(self.super_admin, ("SUPER_ADMIN",), employee_id=self.peer.id), {peer_request.id})
        self.assertEqual(ids(self.manager, ("MANAGER",)), {staff_request.id})
        self.assertEqual(ids(self.manager, ("MANAGER",), employee_id=self.outsider.id), set())
        self.assertEqual(ids(self.staff, ("EMPLOYEE",), employee_id=self.outsider.id), {staff_request.id})
        self.assertEqual(ids(self.super_admin, ("SUPER_ADMIN",), status=HrRequestStatus.APPROVED), set())
        self.assertEqual(ids(self.super_admin, ("SUPER_ADMIN",), request_type=HrRequestType.OVERTIME), set())

    def test_get_request_visibility(self) -> None:
        outsider_request = self._leave(self.outsider.id, date(2026, 3, 10), date(2026, 3, 12))
        staff_request = self._leave(self.staff.id, date(2026, 3, 10), date(2026, 3, 12))

        self.assertEqual(
            get_request(self.db, request_id=staff_request.id, viewer_id=self.manager.id, viewer_roles=("MANAGER",)).id,
            staff_request.id,
        )
        with self.assertRaises(ApiError) as exc:
            get_request(self.db, request_id=outsider_request.id, viewer_id=self.manager.id, viewer_roles=("MANAGER",))
        self.assertEqual(exc.exception.code, "REQUEST_VIEW_FORBIDDEN")

    def test_leave_balance_counts_approved_days_in_year(self) -> None:
        approved = self._leave(self.staff.id, date(2026, 4, 6), date(2026, 4, 10))
        self._set_status(approved, HrRequestStatus.APPROVED)
        self._leave(self.staff.id, date(2026, 5, 4), date(2026, 5, 5))

        balance = get_leave_balance(self.db, employee_id=self.staff.id, year=2026)
        self.assertEqual(balance.limit, 12)
        self.assertEqual(balance.used, 5.0)
        self.assertEqual(balance.remaining, 7.0)

        other_year = get_leave_balance(self.db, employee_id=self.staff.id, year=2027)
        self.assertEqual(other_year.used, 0.0)
        self.assertEqual(other_year.remaining, 12.0)

    def test_leave_balance_never_goes_negative(self) -> None:
        tight = add_employee(self.db, "Tight Limit", department=self.dept_a, level=2, annual_leave_limit=3)
        approved = self._leave(tight.id, date(2026, 4, 6), date(2026, 4, 10))
        self._set_status(approved, HrRequestStatus.APPROVED)

        balance = get_leave_balance(self.db, employee_id=tight.id, year=2026)
        self.assertEqual(balance.limit, 3)
        self.assertEqual(balance.used, 5.0)
        self.assertEqual(balance.remaining, 0.0)


if __name__ == "__main__":
    unittest.main()
