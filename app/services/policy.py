"""Approval and visibility rules for HR requests.

Every decision about who may approve or see another employee's request goes
through ``can_approve`` / ``can_view`` over resolved ``OrgFacts``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import EmployeePosition, EmployeeRole, Position, Role, RoleCode


@dataclass(frozen=True, slots=True)
class OrgFacts:
    employee_id: int
    roles: frozenset[str] = field(default_factory=frozenset)
    position_level: int | None = None
    department_id: int | None = None

    @property
    def is_super_admin(self) -> bool:
        return RoleCode.SUPER_ADMIN.value in self.roles

    @property
    def is_manager(self) -> bool:
        return RoleCode.MANAGER.value in self.roles

    @property
    def has_assignment(self) -> bool:
        return self.position_level is not None and self.department_id is not None


def _current_assignment(db: Session, employee_id: int) -> tuple[int | None, int | None]:
    row = db.execute(
        select(Position.level, EmployeePosition.department_id)
        .join(Position, Position.id == EmployeePosition.position_id, isouter=True)
        .where(
            EmployeePosition.employee_id == employee_id,
            EmployeePosition.is_current.is_(True),
        )
        .order_by(EmployeePosition.start_date.desc(), EmployeePosition.id.desc())
        .limit(1)
    ).first()
    if row is None:
        return None, None
    return row[0], row[1]


def _employee_role_codes(db: Session, employee_id: int) -> frozenset[str]:
    codes = db.scalars(
        select(Role.code)
        .join(EmployeeRole, EmployeeRole.role_id == Role.id)
        .where(EmployeeRole.employee_id == employee_id)
    ).all()
    return frozenset(codes)


def resolve_org_facts(db: Session, employee_id: int, roles: Iterable[str] | None = None) -> OrgFacts:
    level, department_id = _current_assignment(db, employee_id)
    resolved_roles = frozenset(roles) if roles is not None else _employee_role_codes(db, employee_id)
    return OrgFacts(
        employee_id=employee_id,
        roles=resolved_roles,
        position_level=level,
        department_id=department_id,
    )


def can_approve(approver: OrgFacts, requester: OrgFacts) -> bool:
    if approver.is_super_admin:
        return True
    if not approver.is_manager:
        return False
    if not approver.has_assignment or not requester.has_assignment:
        return False
    if approver.department_id != requester.department_id:
        return False
    # Level numbers are compared as stored; equal levels never qualify.
    return requester.position_level < approver.position_level


def can_view(viewer: OrgFacts, requester: OrgFacts) -> bool:
    if viewer.employee_id == requester.employee_id:
        return True
    return can_approve(viewer, requester)


def subordinate_employee_ids(db: Session, manager: OrgFacts) -> set[int]:
    """Employees whose requests ``manager`` may see and act on."""
    if not manager.is_manager or not manager.has_assignment:
        return set()

    rows = db.execute(
        select(EmployeePosition.employee_id)
        .join(Position, Position.id == EmployeePosition.position_id)
        .where(
            EmployeePosition.is_current.is_(True),
            EmployeePosition.department_id == manager.department_id,
            Position.level.is_not(None),
            Position.level < manager.position_level,
        )
    ).all()
    return {int(row[0]) for row in rows}
