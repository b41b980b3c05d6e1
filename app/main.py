"""FastAPI application wiring and its startup lifecycle."""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app import db
from app.config import RELAXED_ENVS, AppInfo, get_settings
from app.core.logging import get_logger, setup_logging
from app.core.runtime_state import set_scheduler_active
import app.models  # registers the tables
from app.routers import get_api_router
from app.services.cron import cancel_stale_pending_orders_once
from app.utils.errors import DomainError, error_response

logger = get_logger(__name__)
scheduler: AsyncIOScheduler | None = None


def _current_settings():
    return get_settings()


def _configure_middlewares(fastapi_app: FastAPI) -> None:
    """Configure middleware using a fresh snapshot of the settings."""

    runtime_settings = _current_settings()
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=runtime_settings.CORS_ALLOW_ORIGINS,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )

    if runtime_settings.PROMETHEUS_ENABLED:
        from starlette_exporter import PrometheusMiddleware, handle_metrics

        fastapi_app.add_middleware(PrometheusMiddleware)
        fastapi_app.add_route("/metrics", handle_metrics)

    if runtime_settings.SENTRY_DSN:
        import sentry_sdk

        sentry_sdk.init(dsn=runtime_settings.SENTRY_DSN, traces_sample_rate=0.2)


def _assert_stripe_webhook_secret(settings: Any) -> None:
    """Fail fast when Stripe is enabled without a webhook secret outside dev."""

    if not settings.STRIPE_ENABLED or settings.STRIPE_WEBHOOK_SECRET:
        return
    env_lower = settings.app_env.lower()
    if env_lower not in RELAXED_ENVS:
        logger.error(
            "Stripe webhook secret is missing; configure STRIPE_WEBHOOK_SECRET before startup.",
            extra={"env": settings.app_env},
        )
        raise RuntimeError("Missing Stripe webhook secret in non-dev environment.")
    logger.warning(
        "Stripe webhook secret is not configured; allowed in dev only.",
        extra={"env": settings.app_env},
    )


def _start_scheduler(settings: Any) -> None:
    global scheduler
    scheduler = AsyncIOScheduler()
    scheduler.start()
    scheduler.add_job(
        cancel_stale_pending_orders_once,
        "interval",
        minutes=settings.PENDING_SWEEP_INTERVAL_MINUTES,
        id="cancel-stale-pending-orders",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    set_scheduler_active(True)
    if settings.app_env.lower() not in RELAXED_ENVS:
        logger.warning(
            "APScheduler enabled; the pending-order sweep is idempotent but one runner is enough.",
            extra={"env": settings.app_env},
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    global scheduler
    setup_logging()
    settings = _current_settings()
    logger.info("Application startup", extra={"env": settings.app_env})
    _assert_stripe_webhook_secret(settings)

    db.init_engine()  # sync, idempotent
    env_lower = settings.app_env.lower()
    if settings.ALLOW_DB_CREATE_ALL and env_lower in RELAXED_ENVS:
        logger.warning(
            "Running Base.metadata.create_all() because APP_ENV=%s and ALLOW_DB_CREATE_ALL=True",
            settings.app_env,
        )
        db.create_all()
    else:
        logger.info(
            "Skipping create_all(); use Alembic migrations. APP_ENV=%s, ALLOW_DB_CREATE_ALL=%s",
            settings.app_env,
            settings.ALLOW_DB_CREATE_ALL,
        )

    set_scheduler_active(False)
    if settings.SCHEDULER_ENABLED:
        _start_scheduler(settings)
    try:
        yield
    finally:
        if scheduler:
            scheduler.shutdown(wait=False)
            scheduler = None
        set_scheduler_active(False)
        db.close_engine()
        logger.info("Application shutdown", extra={"env": settings.app_env})


app_info = AppInfo()

app = FastAPI(title=app_info.name, version=app_info.version, lifespan=lifespan)

_configure_middlewares(app)
app.include_router(get_api_router())


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning(
            "Request failed",
            extra={"path": request.url.path, "error_code": exc.code},
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception", exc_info=exc)
    payload = error_response("INTERNAL_SERVER_ERROR", "An unexpected error occurred.")
    return JSONResponse(status_code=500, content=payload)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict) and "error" in detail:
        content: dict[str, Any] = detail
    else:
        content = error_response("HTTP_ERROR", str(detail))
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


__all__ = ["app"]
