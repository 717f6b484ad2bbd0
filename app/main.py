import asyncio
from datetime import datetime, timezone
import logging
import time
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from app.db import engine
from app.errors import register_exception_handlers
from app.logging_utils import setup_json_logging
from app.routers import admin, attendance, auth, hr_requests
from app.settings import get_cors_origins, get_settings
from app.services.schema_guard import SchemaGuardResult, verify_runtime_schema

settings = get_settings()
setup_json_logging(settings.log_level)
logger = logging.getLogger("app.request")
startup_logger = logging.getLogger("app.startup")

# Per-request context that routers may attach to request.state for the access log.
REQUEST_LOG_FIELDS = (
    "employee_id",
    "attendance_record_id",
    "hr_request_id",
    "device_status",
    "is_verified",
)

app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_exception_handlers(app)


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id
    request.state.actor = "system"
    request.state.actor_id = "system"

    started = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        extra: dict[str, Any] = {
            "request_id": request_id,
            "path": request.url.path,
            "method": request.method,
            "status_code": status_code,
            "latency_ms": round((time.perf_counter() - started) * 1000, 2),
            "actor": request.state.actor,
            "actor_id": request.state.actor_id,
        }
        for name in REQUEST_LOG_FIELDS:
            extra[name] = getattr(request.state, name, None)
        logger.info("request_complete", extra=extra)


app.include_router(auth.router)
app.include_router(attendance.router)
app.include_router(hr_requests.router)
app.include_router(admin.router)


@app.on_event("startup")
async def run_schema_guard() -> None:
    result = await asyncio.to_thread(verify_runtime_schema, engine)
    app.state.schema_guard_result = result
    if result.ok:
        startup_logger.info("schema_guard_ok", extra=result.to_dict())
        return

    startup_logger.error("schema_guard_failed", extra=result.to_dict())
    if settings.schema_guard_strict:
        raise RuntimeError(f"Runtime schema guard failed: {'; '.join(result.issues)}")


@app.get("/health")
def health() -> dict[str, Any]:
    result: SchemaGuardResult | None = getattr(app.state, "schema_guard_result", None)
    if result is None:
        result = SchemaGuardResult(
            ok=False,
            checked_at_utc=datetime.now(timezone.utc),
            issues=["SCHEMA_GUARD_NOT_RUN"],
            warnings=[],
        )
    return {
        "status": "ok",
        "timezone": settings.attendance_timezone,
        "schema_guard": result.to_dict(),
    }
