"""Health check endpoint."""
from __future__ import annotations

import logging

from alembic.config import Config
from alembic.script import ScriptDirectory
from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.config import get_settings
from app.core.runtime_state import is_scheduler_active, last_sweep
from app.db import get_engine

router = APIRouter(prefix="/health", tags=["health"])
logger = logging.getLogger(__name__)


def _db_status() -> str:
    """Return 'ok' if the DB is reachable, 'error' otherwise."""

    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return "ok"
    except SQLAlchemyError:
        logger.exception("DB health check failed")
        return "error"


def _expected_migration_head() -> str | None:
    try:
        config = Config("alembic.ini")
        script = ScriptDirectory.from_config(config)
        return script.get_current_head()
    except Exception:  # noqa: BLE001
        logger.exception("Failed to load Alembic head revision")
        return None


def _migrations_status() -> tuple[bool, str]:
    expected_head = _expected_migration_head()
    try:
        engine = get_engine()
        with engine.connect() as conn:
            current = conn.execute(text("SELECT version_num FROM alembic_version")).scalar()
    except SQLAlchemyError:
        logger.exception("Migration check failed")
        return False, "unknown"
    if expected_head is None:
        return False, "unknown"
    if current == expected_head:
        return True, "up_to_date"
    return False, "out_of_date"


@router.get("", summary="Health check")
def healthcheck() -> dict[str, object]:
    """Return DB, migration, gateway and scheduler status."""

    settings = get_settings()
    db_status = _db_status()
    db_ok = db_status == "ok"
    if db_ok:
        migration_ok, migration_status = _migrations_status()
    else:
        migration_ok, migration_status = False, "unknown"
    degraded = not (db_ok and migration_ok)
    return {
        "status": "degraded" if degraded else "ok",
        "stripe": {
            "enabled": bool(settings.STRIPE_ENABLED),
            "webhook_configured": bool(settings.STRIPE_WEBHOOK_SECRET),
            "api_key_configured": bool(settings.STRIPE_SECRET_KEY),
        },
        "scheduler_config_enabled": bool(settings.SCHEDULER_ENABLED),
        "scheduler_running": is_scheduler_active(),
        "last_pending_sweep": last_sweep(),
        "db_ok": db_ok,
        "db_status": db_status,
        "migrations_ok": migration_ok,
        "migrations_status": migration_status,
    }
