from __future__ import annotations

import os
import unittest
from collections.abc import Generator, Iterable
from datetime import date
from unittest.mock import patch

from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from app.db import Base, get_db
from app.main import app
from app.models import Department, Employee, EmployeePosition, EmployeeRole, Position, Role
from app.security import _FAILED_ATTEMPTS, create_access_token
from app.settings import get_settings

TEST_JWT_SECRET = "endpoint-test-secret-0123456789abcdef"


def make_session() -> Session:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return Session(bind=engine, autoflush=False, expire_on_commit=False)


def override_get_db(db: Session):
    def _override() -> Generator[Session, None, None]:
        yield db

    return _override


def add_department(db: Session, name: str) -> Department:
    department = Department(name=name)
    db.add(department)
    db.commit()
    return department


def _get_or_create_role(db: Session, code: str) -> Role:
    role = db.scalar(select(Role).where(Role.code == code))
    if role is None:
        role = Role(code=code, name=code.replace("_", " ").title())
        db.add(role)
        db.flush()
    return role


def add_employee(
    db: Session,
    full_name: str,
    *,
    email: str | None = None,
    roles: Iterable[str] = ("EMPLOYEE",),
    department: Department | None = None,
    level: int | None = None,
    password_hash: str | None = None,
    annual_leave_limit: int | None = 12,
    is_active: bool = True,
) -> Employee:
    employee = Employee(
        full_name=full_name,
        email=email or f"{full_name.lower().replace(' ', '.')}@example.com",
        password_hash=password_hash,
        annual_leave_limit=annual_leave_limit,
        is_active=is_active,
    )
    db.add(employee)
    db.flush()

    for code in roles:
        role = _get_or_create_role(db, code)
        db.add(EmployeeRole(employee_id=employee.id, role_id=role.id))

    if department is not None:
        position = Position(title=f"{full_name} position", level=level)
        db.add(position)
        db.flush()
        db.add(
            EmployeePosition(
                employee_id=employee.id,
                position_id=position.id,
                department_id=department.id,
                start_date=date(2024, 1, 1),
                is_current=True,
            )
        )

    db.commit()
    return employee


def auth_headers(employee: Employee, *roles: str) -> dict[str, str]:
    token, _, _ = create_access_token(
        employee_id=employee.id,
        email=employee.email,
        roles=roles or ("EMPLOYEE",),
    )
    return {"Authorization": f"Bearer {token}"}


class EndpointTestCase(unittest.TestCase):
    """SQLite-backed TestClient with a fixed JWT secret and a clean login throttle."""

    def setUp(self) -> None:
        self._env_patch = patch.dict(os.environ, {"JWT_SECRET": TEST_JWT_SECRET})
        self._env_patch.start()
        get_settings.cache_clear()
        _FAILED_ATTEMPTS.clear()

        self.db = make_session()
        app.dependency_overrides[get_db] = override_get_db(self.db)
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        _FAILED_ATTEMPTS.clear()
        self.db.close()
        self._env_patch.stop()
        get_settings.cache_clear()
