"""Application configuration settings."""
from __future__ import annotations

import os
from functools import lru_cache

from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Runtime toggles -----------------------------------------------------
# Execution environment: "dev" | "staging" | "prod"
ENV = os.getenv("APP_ENV", "dev").lower()

# Environments in which Stripe may run without a webhook secret.
RELAXED_ENVS = {"dev", "local", "test"}


class Settings(BaseSettings):
    """Environment configuration for the marketplace backend."""

    app_env: str = ENV
    database_url: str = "sqlite:///marketplace.db"
    SECRET_KEY: str = "change-me"
    INTERNAL_API_KEY: str | None = None
    CORS_ALLOW_ORIGINS: list[str] = [
        "http://localhost:3000",
    ]
    SENTRY_DSN: str | None = None
    PROMETHEUS_ENABLED: bool = True
    ALLOW_DB_CREATE_ALL: bool = False

    # --- Stripe ----------------------------------------------------------
    STRIPE_ENABLED: bool = True
    STRIPE_SECRET_KEY: str | None = None
    STRIPE_WEBHOOK_SECRET: str | None = None
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300

    # --- Checkout --------------------------------------------------------
    CHECKOUT_CURRENCY: str = "jpy"
    CHECKOUT_SUCCESS_URL: str = "http://localhost:3000/purchase-complete?session_id={CHECKOUT_SESSION_ID}"
    CHECKOUT_CANCEL_URL: str = "http://localhost:3000/result"
    CHECKOUT_SHIPPING_COUNTRIES: list[str] = ["JP"]
    # Stripe accepts 30 minutes to 24 hours.
    CHECKOUT_SESSION_TTL_MINUTES: int = 60

    # --- Webhooks --------------------------------------------------------
    WEBHOOK_PROCESSING_LEASE_SECONDS: int = 120

    # --- Scheduler / sweep -----------------------------------------------
    SCHEDULER_ENABLED: bool = False
    PENDING_SWEEP_INTERVAL_MINUTES: int = 15
    PENDING_SWEEP_GRACE_MINUTES: int = 30

    # --- Sessions --------------------------------------------------------
    SESSION_TTL_DAYS: int = 30

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="", env_file_encoding="utf-8"
    )

    @field_validator("STRIPE_WEBHOOK_SECRET", "INTERNAL_API_KEY")
    @classmethod
    def _strip_empty_secret(cls, value: str | None) -> str | None:
        """Normalise empty secrets to ``None`` for easier validation."""

        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    @field_validator("CHECKOUT_CURRENCY")
    @classmethod
    def _lower_currency(cls, value: str) -> str:
        return value.strip().lower()


class AppInfo(BaseModel):
    name: str = "marketplace-backend"
    version: str = "0.1.0"


settings = Settings()


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""

    return settings


__all__ = [
    "ENV",
    "RELAXED_ENVS",
    "Settings",
    "AppInfo",
    "settings",
    "get_settings",
]
