"""Application configuration settings."""
from __future__ import annotations

import os
from decimal import Decimal
from functools import lru_cache

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Runtime toggles -----------------------------------------------------
# Execution environment: "dev" | "staging" | "prod"
ENV = os.getenv("SETTLEMENT_ENV", "dev").lower()

# Legacy shared key, only honoured in dev
DEV_API_KEY = os.getenv("DEV_API_KEY") or os.getenv("API_KEY") or "dev-secret-key"
DEV_API_KEY_ALLOWED = ENV in {"dev", "local", "dev_local"}


# Auto-release scheduler (optional, one runner only)
SCHEDULER_ENABLED = os.getenv("SETTLEMENT_SCHEDULER_ENABLED", "0") in {
    "1",
    "true",
    "yes",
    "True",
    "YES",
}


class Settings(BaseSettings):
    """Environment configuration for the settlement engine."""

    app_env: str = ENV
    database_url: str = "sqlite:///settlement.db"
    SECRET_KEY: str = "change-me"
    DEV_API_KEY: str | None = Field(
        default=DEV_API_KEY,
        validation_alias=AliasChoices("DEV_API_KEY", "API_KEY"),
    )
    CORS_ALLOW_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]
    SENTRY_DSN: str | None = None
    PROMETHEUS_ENABLED: bool = True
    ALLOW_DB_CREATE_ALL: bool = False
    LOG_LEVEL: str = "INFO"
    SCHEDULER_ENABLED: bool = SCHEDULER_ENABLED

    # --- Escrow holds ------------------------------------------------------
    DEFAULT_CURRENCY: str = "INR"
    ESCROW_AUTO_RELEASE_DAYS: int = 7
    AUTO_RELEASE_SWEEP_MINUTES: int = 60
    # A release_pending claim older than this is considered abandoned and may be re-claimed.
    RELEASE_CLAIM_TTL_SECONDS: int = 900

    # --- Distribution defaults (percent values, 0-100) ----------------------
    PLATFORM_FEE_PERCENT: Decimal = Decimal("15.00")
    FIRM_COMMISSION_PERCENT: Decimal = Decimal("10.00")
    WITHHOLDING_TAX_PERCENT: Decimal = Decimal("10.00")
    # Practitioner gross shares below this amount are not subject to withholding.
    WITHHOLDING_THRESHOLD: Decimal = Decimal("0.00")

    # --- Disputes ----------------------------------------------------------
    DISPUTE_REASON_MIN_LENGTH: int = 20
    DISPUTE_REASON_MAX_LENGTH: int = 2000
    RESOLUTION_NOTES_MIN_LENGTH: int = 20
    RESOLUTION_NOTES_MAX_LENGTH: int = 2000
    ARBITER_NOTE_MAX_LENGTH: int = 4000
    DISPUTE_PRIORITY_MEDIUM_ABOVE: Decimal = Decimal("5000")
    DISPUTE_PRIORITY_HIGH_ABOVE: Decimal = Decimal("10000")
    REQUIRE_COUNTERPARTY_EVIDENCE: bool = False

    # --- Notifications -----------------------------------------------------
    NOTIFICATION_BACKEND: str = "log"
    NOTIFICATION_WEBHOOK_URL: str | None = None
    NOTIFICATION_TIMEOUT_SECONDS: float = 5.0

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="", env_file_encoding="utf-8"
    )

    @field_validator("NOTIFICATION_BACKEND")
    @classmethod
    def _normalise_backend(cls, value: str) -> str:
        backend = (value or "log").strip().lower()
        if backend not in {"log", "webhook"}:
            raise ValueError(f"Unsupported notification backend: {value!r}")
        return backend

    @field_validator(
        "PLATFORM_FEE_PERCENT",
        "FIRM_COMMISSION_PERCENT",
        "WITHHOLDING_TAX_PERCENT",
    )
    @classmethod
    def _percent_in_range(cls, value: Decimal) -> Decimal:
        if value < 0 or value > 100:
            raise ValueError("percentages must be between 0 and 100")
        return value

    @model_validator(mode="after")
    def _webhook_needs_url(self) -> Settings:
        if self.NOTIFICATION_BACKEND == "webhook" and not self.NOTIFICATION_WEBHOOK_URL:
            raise ValueError("NOTIFICATION_WEBHOOK_URL is required when NOTIFICATION_BACKEND=webhook")
        return self


class AppInfo(BaseModel):
    name: str = "escrow-settlement-engine"
    version: str = "0.1.0"


settings = Settings()


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""

    return settings


__all__ = [
    "ENV",
    "DEV_API_KEY",
    "DEV_API_KEY_ALLOWED",
    "SCHEDULER_ENABLED",
    "Settings",
    "AppInfo",
    "settings",
    "get_settings",
]
