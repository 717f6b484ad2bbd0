from __future__ import annotations

from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from app.models import Employee


def employee_lock_statement(employee_id: int) -> Select:
    return select(Employee).where(Employee.id == employee_id).with_for_update()


def lock_employee(db: Session, employee_id: int) -> Employee | None:
    """Row-lock the employee until the transaction ends.

    Check-ins and leave writes for one employee queue behind each other on the
    lock. SQLite has no FOR UPDATE, so the statement runs unlocked there.
    """
    return db.scalar(employee_lock_statement(employee_id))
