"""
secure_gate/config.py - Pydantic BaseSettings configuration
Server secrets, cooldown/retention windows, Telegram + Supabase endpoints,
and the visitor-side client defaults (polling, countdown, storage).
"""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ────────────────────────────────────────────────────────────
    environment: str = "development"
    log_level: str = "INFO"
    port: int = 8000
    rate_limit_enabled: bool = True
    cors_allow_origins: list[str] = ["*"]

    # ── Secrets (optional at load; missing ones surface as 500 per request) ───
    cron_secret: Optional[str] = None
    token_secret: Optional[str] = None

    # ── Link tokens + visitor session ─────────────────────────────────────────
    token_ttl_minutes: int = 60
    token_clock_skew_seconds: int = 30
    session_ttl_minutes: int = 60

    # ── Cooldown ledger ───────────────────────────────────────────────────────
    # Retention must outlive the cooldown or old rows vanish while still
    # needed to block a device.
    cooldown_minutes: int = 30
    retention_minutes: int = 60
    store_backend: str = "supabase"

    # ── Supabase (PostgREST) ──────────────────────────────────────────────────
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    supabase_table: str = "device_submissions"
    supabase_timeout_seconds: float = 10.0

    # ── Telegram notification sink ───────────────────────────────────────────
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    telegram_api_base: str = "https://api.telegram.org"
    telegram_timeout_seconds: float = 10.0
    notification_timezone: str = "Africa/Cairo"

    # ── Form field limits ─────────────────────────────────────────────────────
    max_name_length: int = 100
    max_id_length: int = 50
    max_week_length: int = 20

    # ── Visitor client defaults ───────────────────────────────────────────────
    gate_api_base_url: str = "http://localhost:8000"
    gate_api_timeout_seconds: float = 10.0
    client_storage_path: str = "~/.secure_gate/storage.json"
    client_cookie_path: str = "~/.secure_gate/cookies.json"
    cooldown_backend: str = "remote"
    form_schema: str = "basic"
    validation_delay_seconds: float = 1.5
    cooldown_poll_seconds: float = 10.0
    countdown_tick_seconds: float = 1.0

    @field_validator("environment")
    @classmethod
    def validate_env(cls, v: str) -> str:
        allowed = {"development", "production", "testing"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("store_backend")
    @classmethod
    def validate_store_backend(cls, v: str) -> str:
        allowed = {"memory", "supabase"}
        if v not in allowed:
            raise ValueError(f"store_backend must be one of {allowed}")
        return v

    @field_validator("cooldown_backend")
    @classmethod
    def validate_cooldown_backend(cls, v: str) -> str:
        allowed = {"remote", "local", "local+cookie"}
        if v not in allowed:
            raise ValueError(f"cooldown_backend must be one of {allowed}")
        return v

    @field_validator("form_schema")
    @classmethod
    def validate_form_schema(cls, v: str) -> str:
        allowed = {"basic", "extended"}
        if v not in allowed:
            raise ValueError(f"form_schema must be one of {allowed}")
        return v

    @model_validator(mode="after")
    def validate_windows(self) -> "Settings":
        if self.cooldown_minutes <= 0:
            raise ValueError("cooldown_minutes must be positive")
        if self.retention_minutes <= self.cooldown_minutes:
            raise ValueError(
                f"retention_minutes ({self.retention_minutes}) must exceed "
                f"cooldown_minutes ({self.cooldown_minutes})"
            )
        return self

    @property
    def cooldown_ms(self) -> int:
        return self.cooldown_minutes * 60 * 1000

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


@lru_cache()
def get_settings() -> Settings:
    """Return cached Settings instance. Use this everywhere."""
    return Settings()
