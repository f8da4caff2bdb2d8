"""Application settings loaded from environment variables.

Uses pydantic-settings for validation and type coercion. App-specific
settings use the ``AEROBANTU_`` prefix; provider credentials (Twilio,
SMTP, authority webhook) use their canonical environment variable names
via ``validation_alias``.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Central configuration for the AeroBantu backend.

    Environment variables are loaded from a ``.env`` file when present.
    None of these options change the shape of the dispatch or tracking
    protocols; they only select providers and timing thresholds.
    """

    model_config = SettingsConfigDict(
        env_prefix="AEROBANTU_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )

    # ── App ────────────────────────────────────────────────────────────
    env: Literal["development", "production"] = "development"
    cors_origins: str = Field(default="", validation_alias="CORS_ORIGINS")

    # ── Redis ──────────────────────────────────────────────────────────
    redis_url: str = Field(default="", validation_alias="REDIS_URL")

    # ── API ────────────────────────────────────────────────────────────
    api_host: str = Field(default="0.0.0.0", validation_alias="API_HOST")
    api_port: int = Field(default=3001, validation_alias="PORT")

    # ── Rate Limiting ──────────────────────────────────────────────────
    rate_limit_per_minute: int = Field(default=120, validation_alias="RATE_LIMIT_PER_MINUTE")
    trusted_proxy_count: int = Field(
        default=1,
        ge=0,
        validation_alias="TRUSTED_PROXY_COUNT",
    )

    # ── Logging ────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_format: str = Field(default="json", validation_alias="LOG_FORMAT")

    # ── SMS (Twilio) ───────────────────────────────────────────────────
    sms_provider: str = Field(default="twilio", validation_alias="SMS_PROVIDER")
    twilio_account_sid: str = Field(default="", validation_alias="TWILIO_ACCOUNT_SID")
    twilio_auth_token: str = Field(default="", validation_alias="TWILIO_AUTH_TOKEN")
    twilio_from_number: str = Field(default="", validation_alias="TWILIO_FROM_NUMBER")

    # ── Email (SMTP) ───────────────────────────────────────────────────
    email_provider: str = Field(default="smtp", validation_alias="EMAIL_PROVIDER")
    smtp_host: str = Field(default="", validation_alias="SMTP_HOST")
    smtp_port: int = Field(default=587, validation_alias="SMTP_PORT")
    smtp_secure: bool = Field(default=False, validation_alias="SMTP_SECURE")
    smtp_user: str = Field(default="", validation_alias="SMTP_USER")
    smtp_pass: str = Field(default="", validation_alias="SMTP_PASS")
    email_from: str = Field(default="", validation_alias="EMAIL_FROM")

    # ── Authority webhook ──────────────────────────────────────────────
    authority_webhook_url: str = Field(default="", validation_alias="AUTHORITY_WEBHOOK_URL")
    authority_webhook_token: str = Field(default="", validation_alias="AUTHORITY_WEBHOOK_TOKEN")
    authority_webhook_timeout_ms: int = Field(
        default=5_000,
        gt=0,
        validation_alias="AUTHORITY_WEBHOOK_TIMEOUT_MS",
    )

    # ── Live tracking ──────────────────────────────────────────────────
    tracking_ttl_ms: int = Field(default=86_400_000, gt=0, validation_alias="TRACKING_TTL_MS")  # 24 hours
    tracking_sweep_interval_seconds: float = 300.0

    # ── Gemini (distress messages, safe-zone lookup) ───────────────────
    gemini_api_key: str = Field(default="", validation_alias="GEMINI_API_KEY")
    gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")

    # ── Derived Properties ─────────────────────────────────────────────

    @property
    def is_production(self) -> bool:
        return self.env == Environment.PRODUCTION

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


# Module-level singleton; import ``settings`` everywhere.
settings = Settings()
