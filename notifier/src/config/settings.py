"""
Worker settings configuration for the notification worker.

Centralized settings loaded from environment variables.
"""

from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class WorkerSettings(BaseSettings):
    """
    Worker settings loaded from environment variables.

    Environment Variables:
        WORKER_POLL_MS: Milliseconds between scheduler cycles (default: 5000)
        WORKER_CLAIM_WINDOW_SECONDS: Lookahead past "now" when claiming (default: 5)
        WORKER_GRACE_MINUTES: How far back overdue jobs are still claimed (default: 120)
        WORKER_CLAIM_LIMIT: Maximum jobs claimed per cycle (default: 500)
        WORKER_MAX_CONCURRENCY: Maximum in-flight jobs per cycle (default: 100)
        WORKER_RECLAIM_MINUTES: Age after which a processing claim is stale (default: 5)
        WORKER_METRICS_INTERVAL_MS: Milliseconds between metrics log lines (default: 60000)
        WORKER_HEALTH_PORT: Port for the /health endpoint (default: 8787)
        WORKER_RETRY_DELAYS_SECONDS: Comma-separated backoff table (default: "30,120,600,3600")
        APP_URL: Public URL of the web app, used for notification links
        GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET: OAuth client for calendar token refresh
        VAPID_PUBLIC_KEY / VAPID_PRIVATE_KEY / VAPID_SUBJECT: Web Push credentials
    """

    # Scheduler cadence
    poll_interval_ms: int = Field(default=5000, validation_alias="WORKER_POLL_MS", ge=100)
    claim_window_seconds: int = Field(
        default=5,
        validation_alias="WORKER_CLAIM_WINDOW_SECONDS",
        ge=0,
    )
    grace_minutes: int = Field(default=120, validation_alias="WORKER_GRACE_MINUTES", ge=0)
    claim_limit: int = Field(default=500, validation_alias="WORKER_CLAIM_LIMIT", ge=1)
    max_concurrency: int = Field(default=100, validation_alias="WORKER_MAX_CONCURRENCY", ge=1)
    reclaim_minutes: int = Field(default=5, validation_alias="WORKER_RECLAIM_MINUTES", ge=1)
    metrics_interval_ms: int = Field(
        default=60000,
        validation_alias="WORKER_METRICS_INTERVAL_MS",
        ge=1000,
    )
    health_port: int = Field(default=8787, validation_alias="WORKER_HEALTH_PORT", ge=1, le=65535)

    # Retry backoff table, one entry per allowed retry
    retry_delays_seconds: str = Field(
        default="30,120,600,3600",
        validation_alias="WORKER_RETRY_DELAYS_SECONDS",
        description="Comma-separated delays in seconds; its length is the retry budget",
    )

    app_url: str = Field(default="http://localhost:3000", validation_alias="APP_URL")

    # Calendar provider OAuth client (token refresh only)
    google_client_id: str = Field(default="", validation_alias="GOOGLE_CLIENT_ID")
    google_client_secret: str = Field(default="", validation_alias="GOOGLE_CLIENT_SECRET")

    # VAPID settings for Web Push notifications
    vapid_public_key: str = Field(
        default="",
        validation_alias="VAPID_PUBLIC_KEY",
        description="Base64url-encoded VAPID public key for Web Push subscriptions"
    )
    vapid_private_key: str = Field(
        default="",
        validation_alias="VAPID_PRIVATE_KEY",
        description="Base64url-encoded VAPID private key for signing push messages"
    )
    vapid_subject: str = Field(
        default="",
        validation_alias="VAPID_SUBJECT",
        description="VAPID subject (mailto: or https: URL identifying the push sender)"
    )

    class Config:
        env_file = ".env"
        extra = "ignore"

    @field_validator("retry_delays_seconds")
    @classmethod
    def validate_retry_delays(cls, v: str) -> str:
        """Validate that the backoff table is a list of positive integers."""
        parts = [p.strip() for p in v.split(",") if p.strip()]
        if not parts:
            raise ValueError("WORKER_RETRY_DELAYS_SECONDS must contain at least one delay")
        for part in parts:
            if not part.isdigit() or int(part) <= 0:
                raise ValueError(f"Invalid retry delay: {part!r}")
        return v

    @field_validator("app_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def retry_delays(self) -> List[int]:
        """
        Get the backoff table as integers.

        Returns:
            List of delays in seconds, indexed by attempt number - 1
        """
        return [int(p.strip()) for p in self.retry_delays_seconds.split(",") if p.strip()]

    @property
    def vapid_configured(self) -> bool:
        """Check if VAPID keys are properly configured for Web Push."""
        return bool(self.vapid_public_key and self.vapid_private_key and self.vapid_subject)

    @property
    def google_configured(self) -> bool:
        """Check if the calendar OAuth client is configured."""
        return bool(self.google_client_id and self.google_client_secret)

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000.0

    @property
    def metrics_interval_seconds(self) -> float:
        return self.metrics_interval_ms / 1000.0


@lru_cache()
def get_settings() -> WorkerSettings:
    """
    Get cached worker settings instance.

    Returns:
        WorkerSettings: Configured worker settings from environment
    """
    return WorkerSettings()
