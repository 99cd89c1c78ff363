from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SyncSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="medvandrerne_",
        extra="ignore",
        env_file=".env",
    )

    db_path: Path = Path.home() / ".medvandrerne" / "sync.db"

    # Remote data gateway
    api_base_url: str = "https://henrikb30.sg-host.com/api"
    request_timeout_seconds: float = 15.0

    # TTL classes for cached categories
    static_ttl_seconds: float = 24 * 60 * 60
    dynamic_ttl_seconds: float = 5 * 60
    default_ttl_seconds: float = 30 * 60

    # Lifecycle: background time after which a soft refresh runs on resume
    resume_refresh_threshold_seconds: float = 60.0

    # Activity reminders
    reminder_hour: int = Field(default=18, ge=0, le=23)  # evening before the activity
    reminder_lead_minutes: int = 60  # fallback when the evening reminder has passed
    default_activity_hour: int = Field(default=9, ge=0, le=23)  # activities without a clock time

    # Registrations and contacts
    user_name: str = "Anonym"
    default_phone_prefix: str = "+47"

    @field_validator(
        "static_ttl_seconds",
        "dynamic_ttl_seconds",
        "default_ttl_seconds",
        "resume_refresh_threshold_seconds",
        "request_timeout_seconds",
        mode="after",
    )
    @classmethod
    def _positive_seconds(cls, value: float) -> float:
        return max(1.0, float(value))

    @field_validator("reminder_lead_minutes", mode="after")
    @classmethod
    def _positive_lead(cls, value: int) -> int:
        return max(1, int(value))

    @field_validator("api_base_url", mode="before")
    @classmethod
    def _strip_base_url(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().rstrip("/")
        return value
