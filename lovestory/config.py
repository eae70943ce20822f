"""
Configuration and settings for the Love Story backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service and daemon.

    Each field reads the environment variable of the same name, upper-cased.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")

    # Database (any SQLAlchemy URL, Postgres expected in production)
    database_url: Optional[str] = Field(default=None)

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    # Session tokens
    jwt_secret: str = Field(default="fallback_jwt_secret_for_development")
    jwt_expires_days: int = Field(default=30, ge=1)

    # Registration lock: when False only the first (admin) user may register.
    allow_open_registration: bool = Field(default=True)

    # EmailJS
    emailjs_service_id: str = Field(default="")
    emailjs_template_id: str = Field(default="")
    emailjs_today_template_id: str = Field(default="")
    emailjs_public_key: str = Field(default="")
    emailjs_private_key: str = Field(default="")
    emailjs_api_url: str = Field(
        default="https://api.emailjs.com/api/v1.0/email/send"
    )

    # Reminders
    cron_auth_token: Optional[str] = Field(default=None)
    reminder_timezone: str = Field(default="Asia/Shanghai")
    reminder_send_interval_seconds: float = Field(default=1.0, ge=0)
    reminder_daily_hour: int = Field(default=7, ge=0, le=23)
    reminder_daily_minute: int = Field(default=0, ge=0, le=59)

    @field_validator("reminder_timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown reminder timezone: {value!r}")
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
