#!/usr/bin/env python
from __future__ import annotations

import json
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.services.schema_guard import verify_runtime_schema
from app.settings import get_settings

MAX_REVISION_LENGTH = 32
MIN_JWT_SECRET_LENGTH = 32


@dataclass(slots=True)
class CheckResult:
    name: str
    status: str
    details: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {"name": self.name, "status": self.status, "details": self.details}


def _script_directory() -> ScriptDirectory:
    return ScriptDirectory.from_config(Config(str(ROOT_DIR / "alembic.ini")))


def check_migration_chain() -> CheckResult:
    """alembic_version.version_num is VARCHAR(32) and deploys assume a single head."""
    script = _script_directory()
    revisions = [revision.revision for revision in script.walk_revisions()]
    heads = sorted(script.get_heads())
    too_long = [revision for revision in revisions if len(revision) > MAX_REVISION_LENGTH]

    problems: list[str] = []
    if too_long:
        problems.append("REVISION_ID_TOO_LONG")
    if len(heads) != 1:
        problems.append("MULTIPLE_HEADS" if heads else "NO_HEAD")

    return CheckResult(
        name="migration_chain",
        status="fail" if problems else "ok",
        details={"heads": heads, "revisions": len(revisions), "too_long": too_long, "problems": problems},
    )


def check_jwt_secret() -> CheckResult:
    secret = (get_settings().jwt_secret or "").strip()
    long_enough = len(secret) >= MIN_JWT_SECRET_LENGTH
    return CheckResult(
        name="jwt_secret_configured",
        status="ok" if long_enough else "fail",
        details={"configured": bool(secret), "min_length": MIN_JWT_SECRET_LENGTH, "length_ok": long_enough},
    )


def check_attendance_config() -> CheckResult:
    settings = get_settings()
    problems: list[str] = []
    if not -90.0 <= settings.office_latitude <= 90.0:
        problems.append("OFFICE_LATITUDE_OUT_OF_RANGE")
    if not -180.0 <= settings.office_longitude <= 180.0:
        problems.append("OFFICE_LONGITUDE_OUT_OF_RANGE")
    if settings.office_radius_m <= 0:
        problems.append("OFFICE_RADIUS_NOT_POSITIVE")
    if settings.challenge_ttl_seconds <= 0:
        problems.append("CHALLENGE_TTL_NOT_POSITIVE")

    warnings: list[str] = []
    if not settings.attendance_challenge_required:
        warnings.append("CHALLENGE_NOT_REQUIRED")

    status = "fail" if problems else ("warn" if warnings else "ok")
    return CheckResult(
        name="attendance_config",
        status=status,
        details={
            "timezone": settings.attendance_timezone,
            "office_radius_m": settings.office_radius_m,
            "challenge_ttl_seconds": settings.challenge_ttl_seconds,
            "problems": problems,
            "warnings": warnings,
        },
    )


def check_database() -> CheckResult:
    if os.getenv("PREDEPLOY_SKIP_DB", "").strip().lower() in {"1", "true", "yes"}:
        return CheckResult(name="database_schema_guard", status="warn", details={"reason": "SKIPPED"})

    expected_heads = sorted(_script_directory().get_heads())
    engine = create_engine(get_settings().database_url, pool_pre_ping=True)
    try:
        with engine.connect() as connection:
            applied = sorted(
                str(value).strip()
                for value in connection.execute(text("SELECT version_num FROM alembic_version")).scalars()
                if value is not None
            )
        schema_result = verify_runtime_schema(engine)
    except SQLAlchemyError as exc:
        return CheckResult(
            name="database_schema_guard",
            status="fail",
            details={"reason": "DATABASE_UNREACHABLE", "error": exc.__class__.__name__},
        )
    finally:
        engine.dispose()

    not_applied = [head for head in expected_heads if head not in applied]
    return CheckResult(
        name="database_schema_guard",
        status="fail" if not_applied or not schema_result.ok else "ok",
        details={
            "expected_heads": expected_heads,
            "applied_versions": applied,
            "not_applied": not_applied,
            "schema_guard": schema_result.to_dict(),
        },
    )


def main() -> int:
    checks = [
        check_migration_chain(),
        check_jwt_secret(),
        check_attendance_config(),
        check_database(),
    ]
    ok = all(check.status != "fail" for check in checks)
    print(
        json.dumps(
            {
                "generated_at_utc": datetime.now(timezone.utc).isoformat(),
                "ok": ok,
                "checks": [check.as_dict() for check in checks],
            },
            ensure_ascii=False,
            indent=2,
        )
    )
    return 0 if ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
