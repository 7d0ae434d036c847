from datetime import timedelta
from typing import Literal

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Environment mode: dev or prod
    ENV: Literal["dev", "prod"] = "dev"

    # Database
    DATABASE_URL: str

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    SLACK_WEBHOOK_URL: str | None = None

    # Upstream source API
    SOURCE_API_VERSION: str = "2024-01"
    SOURCE_AUTH_HEADER: str = "X-Shopify-Access-Token"
    FETCH_TIMEOUT_SECONDS: float = 30.0
    PAGE_SIZE: int = 250

    # Store writes
    BATCH_SIZE: int = 25
    MAX_BATCH_SIZE: int = 25  # largest atomic write the store accepts
    INTER_BATCH_DELAY_SECONDS: float = 0.1

    # Retry / backoff
    MAX_RETRIES: int = 3
    INITIAL_RETRY_DELAY_SECONDS: float = 1.0
    MAX_RETRY_DELAY_SECONDS: float = 60.0
    RETRY_JITTER: float = 0.0
    RATE_LIMIT_DEFAULT_WAIT_SECONDS: float = 300.0
    RATE_LIMIT_MAX_WAITS: int = 10

    # Inter-page waits per sync class
    FULL_WAIT_SECONDS: float = 120.0
    MANUAL_WAIT_SECONDS: float = 120.0
    INCREMENTAL_WAIT_SECONDS: float = 30.0

    # Query windows
    FULL_SYNC_LOOKBACK_DAYS: int = 90
    INCREMENTAL_LOOKBACK_HOURS: int = 24

    # Checkpoints
    CHECKPOINT_TTL_SECONDS: int = 7 * 24 * 60 * 60
    FETCH_FAILURE_POLICY: Literal["skip", "abort"] = "skip"

    # Scheduler
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_INTERVAL_SECONDS: int = 24 * 60 * 60
    MAX_CONCURRENT_TENANTS: int = 4
    TENANT_STAGGER_SECONDS: float = 1.0

    # Docs Configuration
    DOCS_ENABLED: bool | None = None  # Override docs setting (None = auto based on ENV)

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",  # ignore unrelated keys in local .env
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENV == "prod"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENV == "dev"

    @property
    def debug_enabled(self) -> bool:
        """Debug mode is only enabled in development."""
        return self.is_development

    @property
    def docs_enabled(self) -> bool:
        """Swagger/ReDoc docs enabled based on environment or override."""
        if self.DOCS_ENABLED is not None:
            return self.DOCS_ENABLED
        return self.is_development

    def sync_config(self) -> "SyncConfig":
        """Engine knobs derived from the environment."""
        return SyncConfig(
            page_size=self.PAGE_SIZE,
            batch_size=min(self.BATCH_SIZE, self.MAX_BATCH_SIZE),
            inter_batch_delay=self.INTER_BATCH_DELAY_SECONDS,
            max_retries=self.MAX_RETRIES,
            initial_delay=self.INITIAL_RETRY_DELAY_SECONDS,
            max_delay=self.MAX_RETRY_DELAY_SECONDS,
            jitter=self.RETRY_JITTER,
            rate_limit_default_wait=self.RATE_LIMIT_DEFAULT_WAIT_SECONDS,
            rate_limit_max_waits=self.RATE_LIMIT_MAX_WAITS,
            fetch_timeout=self.FETCH_TIMEOUT_SECONDS,
            wait_seconds={
                "full": self.FULL_WAIT_SECONDS,
                "incremental": self.INCREMENTAL_WAIT_SECONDS,
                "manual": self.MANUAL_WAIT_SECONDS,
            },
            full_lookback=timedelta(days=self.FULL_SYNC_LOOKBACK_DAYS),
            incremental_lookback=timedelta(hours=self.INCREMENTAL_LOOKBACK_HOURS),
            checkpoint_ttl=timedelta(seconds=self.CHECKPOINT_TTL_SECONDS),
            fetch_failure_policy=self.FETCH_FAILURE_POLICY,
            max_concurrent_tenants=self.MAX_CONCURRENT_TENANTS,
            tenant_stagger=self.TENANT_STAGGER_SECONDS,
        )


class SyncConfig(BaseModel):
    """Immutable engine configuration handed to every sync component."""

    page_size: int = 250
    batch_size: int = 25
    inter_batch_delay: float = 0.1
    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 60.0
    jitter: float = 0.0
    rate_limit_default_wait: float = 300.0
    rate_limit_max_waits: int = 10
    fetch_timeout: float = 30.0
    wait_seconds: dict[str, float] = {"full": 120.0, "incremental": 30.0, "manual": 120.0}
    full_lookback: timedelta = timedelta(days=90)
    incremental_lookback: timedelta = timedelta(hours=24)
    checkpoint_ttl: timedelta = timedelta(days=7)
    fetch_failure_policy: Literal["skip", "abort"] = "skip"
    max_concurrent_tenants: int = 4
    tenant_stagger: float = 1.0

    model_config = {"frozen": True}

    def wait_for(self, sync_class: str) -> float:
        key = getattr(sync_class, "value", sync_class)
        return self.wait_seconds.get(key, self.wait_seconds["full"])


settings = Settings()
