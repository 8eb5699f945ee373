"""Application settings loaded from environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration sourced from environment variables and .env."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    DATABASE_URL: str
    HOST: str = "0.0.0.0"
    PORT: int = Field(default=8000, ge=1, le=65535)
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    LOG_FORMAT: Literal["json", "text"] = "text"
    LOG_FILE: Path | None = None
    LOG_FILE_MAX_BYTES: int = Field(default=10_485_760, ge=1)
    LOG_FILE_BACKUP_COUNT: int = Field(default=5, ge=1)
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_TIMEZONE: str = "UTC"
    SCHEDULER_MISFIRE_GRACE_SECONDS: int = Field(default=60, ge=1)
    RUN_RECOVERY_ON_STARTUP: bool = True
    SHUTDOWN_GRACE_PERIOD_SECONDS: int = Field(default=30, ge=1)
    HISTORY_MAX_PAGE_SIZE: int = Field(default=100, ge=1)
    PIPELINE_EXECUTOR_URL: str | None = None
    PIPELINE_EXECUTOR_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0)
    PIPELINE_CALLBACK_BASE_URL: str = "http://localhost:8000"
    OUTBOUND_HTTP_USER_AGENT: str = "RecipeAutomationScheduler"

    @field_validator("LOG_FILE", mode="before")
    @classmethod
    def parse_log_file(cls, value: object) -> object:
        if value in (None, ""):
            return None
        return value

    @field_validator("SCHEDULER_TIMEZONE")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as error:
            raise ValueError(f"Unknown timezone: {value}") from error
        return value

    @field_validator("PIPELINE_EXECUTOR_URL", mode="before")
    @classmethod
    def parse_executor_url(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]
