"""Application configuration settings."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_FILE = ".env"
ENV_FILE_ENCODING = "utf-8"


class Settings(BaseSettings):
    """Application configuration values loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=ENV_FILE, env_file_encoding=ENV_FILE_ENCODING, extra="ignore"
    )

    database_url: str = Field(
        default="sqlite:///./notifications.db",
        description="Database connection URL used by SQLAlchemy to connect to the DB",
        min_length=1,
    )
    app_timezone: str = Field(
        default="UTC",
        description="IANA timezone (or UTC±HH:MM offset) used for stored timestamps",
    )
    sendgrid_api_key: str | None = Field(
        default=None,
        description="SendGrid API key used for sending transactional emails via the REST API",
    )
    sendgrid_sender: str | None = Field(
        default=None,
        description="Email address that will appear as the sender of transactional messages",
        min_length=3,
    )
    retry_base_delay_seconds: float = Field(
        default=5.0,
        description="Delay before the first retry of a transiently failed channel attempt",
        ge=0,
    )
    retry_backoff_factor: float = Field(
        default=5.0,
        description="Multiplier applied to the retry delay after every failed attempt",
        ge=1,
    )
    retry_max_attempts: int = Field(
        default=4,
        description="Total number of attempts (including the first) per channel",
        gt=0,
    )
    channel_send_timeout_seconds: float = Field(
        default=10.0,
        description="Upper bound for a single channel send; exceeding it is a transient failure",
        gt=0,
    )
    dispatch_worker_count: int = Field(
        default=8,
        description="Number of worker threads executing channel attempts",
        gt=0,
    )
    deadline_scan_enabled: bool = Field(
        default=True,
        description="Whether the deadline reminder scan runs with the application",
    )
    deadline_scan_interval_seconds: float = Field(
        default=60.0,
        description="Seconds between two scans for upcoming task deadlines",
        gt=0,
    )
    deadline_reminder_offsets_minutes: list[int] = Field(
        default_factory=lambda: [24 * 60, 60],
        description="Lead times (minutes before due) at which deadline reminders fire",
        min_length=1,
    )

    @model_validator(mode="after")
    def _validate_sendgrid_pair(self) -> "Settings":
        if bool(self.sendgrid_api_key) ^ bool(self.sendgrid_sender):
            raise ValueError(
                "SENDGRID_API_KEY and SENDGRID_SENDER must both be provided to enable email"
            )
        if self.sendgrid_sender and "@" not in self.sendgrid_sender:
            raise ValueError("SENDGRID_SENDER must be a valid email address")
        if any(offset <= 0 for offset in self.deadline_reminder_offsets_minutes):
            raise ValueError("DEADLINE_REMINDER_OFFSETS_MINUTES must be positive")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings instance."""

    return Settings()


def reset_settings_cache() -> None:
    """Clear the settings cache to force reloading from the environment."""

    get_settings.cache_clear()


__all__ = ["Settings", "get_settings", "reset_settings_cache"]
