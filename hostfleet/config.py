"""Service configuration."""
from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from HOSTFLEET_* environment variables."""

    model_config = SettingsConfigDict(env_prefix="HOSTFLEET_", env_file=".env", extra="ignore")

    # Persistence
    database_url: str = "sqlite:///./hostfleet.db"
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    redis_url: str = "redis://localhost:6379/0"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json | text
    log_forward_url: str | None = None

    # Cloud status reconciliation
    cloud_status_interval: int = 30  # seconds between passes
    cloud_status_batch_concurrency: int = 4
    cloud_status_max_hosts: int = 5000
    cloud_status_excluded_providers: list[str] = Field(default_factory=lambda: ["static"])
    cloud_status_pass_timeout: float = 300.0
    cloud_status_lock_ttl: int = 360  # must outlive cloud_status_pass_timeout

    # Provider status queries
    provider_max_retries: int = 3
    provider_retry_backoff_base: float = 1.0
    provider_retry_backoff_max: float = 10.0
    provider_request_timeout: float = 30.0
    ec2_default_region: str = "us-east-1"

    # Per-monitor interval overrides, e.g. {"cloud_status": 10}
    interval_overrides: dict[str, int] = Field(default_factory=dict)

    def get_interval(self, name: str) -> int:
        """Return the polling interval for a monitor.

        Falls back to ``<name>_interval`` when no override is configured.
        """
        if name in self.interval_overrides:
            return self.interval_overrides[name]
        return int(getattr(self, f"{name}_interval"))


settings = Settings()
