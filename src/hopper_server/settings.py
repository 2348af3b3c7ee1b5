"""Pydantic-based settings for the Hopper job server."""

import os

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration settings for the Hopper job server."""

    model_config = SettingsConfigDict(
        env_prefix="HOPPER_",
        case_sensitive=False,
        env_file=os.getenv("SETTINGS_ENV_FILE", ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Service settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8010, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")
    environment: str = Field(default="development", description="development, staging or production")

    # Database settings
    database_url: str = Field(default="sqlite+aiosqlite:///data/hopper.db", description="Async database URL")

    # Trigger settings
    cron_secret: str = Field(default="", description="Shared secret expected in the x-cron-secret header")

    # Queue settings
    default_max_attempts: int = Field(default=3, ge=1, description="Attempts allowed when enqueue gives none")
    worker_batch_size: int = Field(default=10, ge=1, description="Jobs claimed per poll")
    poll_interval_seconds: float = Field(default=2.0, gt=0, description="Base poll interval when idle")
    max_poll_interval_seconds: float = Field(default=10.0, gt=0, description="Idle poll interval ceiling")
    lease_seconds: int = Field(default=900, ge=1, description="Lease length granted on claim")
    handler_timeout_seconds: float = Field(default=3600.0, ge=0, description="Handler timeout, 0 disables")
    backoff_base_seconds: float = Field(default=2.0, gt=0, description="Delay before the first retry")
    backoff_max_seconds: float = Field(default=60.0, gt=0, description="Retry delay ceiling")
    backoff_jitter_ratio: float = Field(default=0.1, ge=0, le=1, description="Per-job jitter fraction")
    reaper_interval_seconds: int = Field(default=60, ge=1, description="Lease reaper sweep interval")
    handler_modules: list[str] = Field(default_factory=list, description="Modules exposing register(registry)")
    run_triggers_in_worker: bool = Field(default=False, description="Fire cron triggers from the worker process")

    # Webhook settings
    webhook_debounce_seconds: int = Field(default=5, ge=0, description="Delay applied to webhook sync jobs")

    # CLI settings
    api_base_url: str = Field(default="http://localhost:8010/v1", description="Base URL used by the CLI")

    @property
    def is_development(self) -> bool:
        return self.environment.lower() in ("development", "dev", "local", "test")

    @property
    def handler_timeout(self) -> float | None:
        return self.handler_timeout_seconds or None

    @property
    def log_format(self) -> str:
        """Log message format."""
        return "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
