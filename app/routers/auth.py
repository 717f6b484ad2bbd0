from fastapi import APIRouter, Depends, Request
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from app.audit import client_ip, log_audit, user_agent
from app.db import get_db
from app.errors import ApiError
from app.models import AuditActorType, Employee
from app.schemas import LoginRequest, LoginResponse, MeResponse
from app.security import (
    ADMIN_ROLE_CODES,
    CurrentUser,
    create_access_token,
    ensure_login_attempt_allowed,
    register_login_failure,
    register_login_success,
    require_employee,
    verify_password,
)

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/login", response_model=LoginResponse)
def login(
    payload: LoginRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> LoginResponse:
    email = payload.email.strip().lower()
    ip = client_ip(request)
    agent = user_agent(request)
    request_id = getattr(request.state, "request_id", None)
    request.state.actor = "system"
    request.state.actor_id = "system"

    if ip:
        try:
            ensure_login_attempt_allowed(ip)
        except ApiError:
            log_audit(
                db,
                actor_type=AuditActorType.SYSTEM,
                actor_id=email,
                action="LOGIN_FAIL",
                success=False,
                ip=ip,
                user_agent=agent,
                details={"reason": "TOO_MANY_ATTEMPTS"},
                request_id=request_id,
            )
            raise

    employee = db.scalar(
        select(Employee)
        .options(selectinload(Employee.roles))
        .where(func.lower(Employee.email) == email)
    )
    if employee is None or not employee.is_active or not verify_password(payload.password, employee.password_hash):
        if ip:
            register_login_failure(ip)
        log_audit(
            db,
            actor_type=AuditActorType.SYSTEM,
            actor_id=email,
            action="LOGIN_FAIL",
            success=False,
            ip=ip,
            user_agent=agent,
            details={"reason": "INVALID_CREDENTIALS"},
            request_id=request_id,
        )
        raise ApiError(status_code=401, code="INVALID_CREDENTIALS", message="Invalid credentials.")

    if ip:
        register_login_success(ip)

    roles = sorted({role.code for role in employee.roles})
    access_token, expires_in, claims = create_access_token(
        employee_id=employee.id,
        email=employee.email,
        roles=roles,
    )
    actor_type = AuditActorType.ADMIN if ADMIN_ROLE_CODES.intersection(roles) else AuditActorType.EMPLOYEE
    request.state.actor = actor_type.value.lower()
    request.state.actor_id = str(employee.id)
    log_audit(
        db,
        actor_type=actor_type,
        actor_id=str(employee.id),
        action="LOGIN_SUCCESS",
        success=True,
        entity_type="employee",
        entity_id=str(employee.id),
        ip=ip,
        user_agent=agent,
        details={"access_jti": claims["jti"]},
        request_id=request_id,
    )
    return LoginResponse(
        access_token=access_token,
        expires_in=expires_in,
        employee_id=employee.id,
        roles=roles,
    )


@router.get("/me", response_model=MeResponse)
def me(current_user: CurrentUser = Depends(require_employee)) -> MeResponse:
    return MeResponse(
        employee_id=current_user.id,
        email=current_user.email,
        roles=sorted(current_user.roles),
    )
