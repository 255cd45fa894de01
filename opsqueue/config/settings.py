from typing import Literal

from fastapi import Depends
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="OpsQueue", description="Application name")
    version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment")
    debug: bool = Field(default=True, description="Debug mode")

    # Trigger authentication
    cron_secret: str | None = Field(
        default=None, description="Bearer secret required on trigger endpoints"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )

    # Server
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8000, description="Server port")
    workers: int = Field(default=1, description="Number of workers")

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./opsqueue.db",
        description="Database connection URL",
    )
    db_echo: bool = Field(default=False, description="Echo SQL statements")
    db_pool_size: int = Field(default=10, description="Database connection pool size")
    db_max_overflow: int = Field(default=20, description="Database max overflow connections")
    db_pool_timeout: int = Field(default=30, description="Database pool timeout in seconds")
    db_pool_recycle: int = Field(default=3600, description="Database connection recycle time in seconds")

    # Job queue
    job_default_max_attempts: int = Field(
        default=5, ge=1, description="Attempt ceiling when a spec does not set one"
    )
    job_default_priority: int = Field(
        default=0, description="Priority when a spec does not set one"
    )
    job_backoff_base_s: float = Field(
        default=30.0, gt=0, description="Base delay for transient retries"
    )
    job_max_backoff_s: float = Field(
        default=3600.0, gt=0, description="Upper bound on retry delay"
    )
    job_concurrency: int = Field(
        default=4, ge=1, description="Jobs executed concurrently per claim round"
    )
    job_batch_size: int = Field(
        default=25, ge=1, description="Default claim ceiling for one dispatch pass"
    )
    job_time_budget_s: float = Field(
        default=240.0, gt=0, description="Default time budget for one dispatch pass"
    )
    job_handler_timeout_s: float = Field(
        default=120.0, gt=0, description="Per-job execution timeout"
    )
    job_stale_after_s: int = Field(
        default=600, ge=1, description="Running jobs older than this are reaped"
    )
    job_registry_factory: str = Field(
        default="opsqueue.v1.infra.jobs.registry_init:build_job_registry",
        description="Import path of the callable building the job registry",
    )

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    def model_post_init(self, __context) -> None:
        """Validate settings after initialization."""
        if self.environment == "production" and not self.cron_secret:
            raise ValueError(
                "CRON_SECRET must be set in production environment. "
                "Trigger endpoints cannot be left unauthenticated."
            )
        if self.job_max_backoff_s < self.job_backoff_base_s:
            raise ValueError("JOB_MAX_BACKOFF_S must be >= JOB_BACKOFF_BASE_S")


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Dependency injection function for settings."""
    return settings


# Convenience type alias for dependency injection
SettingsDep = Depends(get_settings)
