# /chatflow/config/settings.py

import sys
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # App Behavior
    environment: str = "production"
    log_level: str = "INFO"

    # Rule evaluation
    default_timezone: str = "UTC"
    default_confidence_threshold: float = 0.8

    # Timer runner
    scheduler_timezone: str = "UTC"
    scheduler_misfire_grace_seconds: int = Field(default=300, ge=0)
    timer_sweep_interval_seconds: int = Field(default=60, ge=0)

    # Observability
    alerting_webhook_url: str | None = None
    alerting_service_name: str = "chatflow-engine"

    model_config = SettingsConfigDict(
        env_prefix="CHATFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ---------------- Validators ---------------- #

    @field_validator("default_timezone", "scheduler_timezone")
    @classmethod
    def timezone_must_exist(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone '{v}'")
        return v

    @field_validator("default_confidence_threshold")
    @classmethod
    def threshold_in_unit_range(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("default_confidence_threshold must be between 0 and 1")
        return v

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper()


def validate_environment(settings_obj: Settings):
    try:
        if settings_obj.environment == "production" and settings_obj.log_level == "DEBUG":
            raise ValueError("DEBUG logging is not allowed in production")

        return settings_obj

    except Exception as e:
        print(f"--- [ERROR] Environment validation failed: {e}")
        sys.exit(1)


settings = Settings()
validate_environment(settings)
