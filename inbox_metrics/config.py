from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"
DEFAULT_CACHE_DIR = Path(__file__).resolve().parent.parent / "cache"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Directory database (tenants, inboxes, users)
    DATABASE_URL: str = ""

    # =================================================================
    # DATABASE POOL SETTINGS - Simple and configurable
    # =================================================================
    DB_POOL_MIN_SIZE: int = 1
    DB_POOL_MAX_SIZE: int = 5
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    # All range boundaries and the daily trigger are computed in this zone
    BUSINESS_TIMEZONE: str = "America/New_York"
    PRECALC_RANGES: str = "lastWeek,lastMonth,lastQuarter"

    # Cache backend: "file" or "redis"
    CACHE_BACKEND: str = "file"
    CACHE_DIR: str = str(DEFAULT_CACHE_DIR)
    REDIS_URL: str | None = None
    CACHE_KEY_PREFIX: str = "metrics_cache:"
    REDIS_MAX_CONNECTIONS: int = 10
    REDIS_SOCKET_TIMEOUT: float = 10.0

    # Analytics provider (Front analytics reports)
    ANALYTICS_DEFAULT_ENDPOINT: str = "https://api2.frontapp.com/analytics/reports"
    ANALYTICS_REQUEST_TIMEOUT: float = 30.0
    ANALYTICS_METRICS: str = "num_messages_received,num_messages_sent,avg_response_time"

    # =================================================================
    # PROVIDER RETRY POLICY
    # =================================================================
    ANALYTICS_MAX_RETRIES: int = 25
    ANALYTICS_PENDING_BACKOFF_BASE_SECONDS: float = 2.5
    ANALYTICS_PENDING_BACKOFF_STEP_SECONDS: float = 0.5
    ANALYTICS_PENDING_BACKOFF_CAP_SECONDS: float = 8.0
    ANALYTICS_RATE_LIMIT_DEFAULT_WAIT_MS: int = 5000
    ANALYTICS_RATE_LIMIT_MARGIN_SECONDS: float = 1.0
    ANALYTICS_RATE_LIMIT_COUNTS_AGAINST_BUDGET: bool = True

    # Pacing between provider calls / combinations / selective items
    PRECALC_INTER_CALL_DELAY_SECONDS: float = 2.5
    PRECALC_INTER_RANGE_DELAY_SECONDS: float = 3.0
    PRECALC_INTER_ITEM_DELAY_SECONDS: float = 3.0

    # Daily scheduler
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_RUN_ON_START: bool = True
    SCHEDULER_TRIGGER_HOUR: int = 6
    SCHEDULER_TRIGGER_WINDOW_MINUTES: int = 5
    SCHEDULER_CHECK_INTERVAL_SECONDS: float = 3600.0

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def range_names(self) -> list[str]:
        return [name.strip() for name in self.PRECALC_RANGES.split(",") if name.strip()]

    def analytics_metric_names(self) -> list[str]:
        return [name.strip() for name in self.ANALYTICS_METRICS.split(",") if name.strip()]

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            # The engine is sequential; one or two connections are plenty locally
            config.update({"min_size": 1, "max_size": 2, "timeout": 15.0})

        return config

    def get_retry_config(self) -> dict:
        """Provider retry/backoff knobs, in the shape RetryPolicy expects."""
        return {
            "max_retries": self.ANALYTICS_MAX_RETRIES,
            "pending_backoff_base": self.ANALYTICS_PENDING_BACKOFF_BASE_SECONDS,
            "pending_backoff_step": self.ANALYTICS_PENDING_BACKOFF_STEP_SECONDS,
            "pending_backoff_cap": self.ANALYTICS_PENDING_BACKOFF_CAP_SECONDS,
            "rate_limit_default_wait_ms": self.ANALYTICS_RATE_LIMIT_DEFAULT_WAIT_MS,
            "rate_limit_margin": self.ANALYTICS_RATE_LIMIT_MARGIN_SECONDS,
            "rate_limit_counts_against_budget": self.ANALYTICS_RATE_LIMIT_COUNTS_AGAINST_BUDGET,
        }

    def get_redis_config(self) -> dict:
        return {
            "max_connections": self.REDIS_MAX_CONNECTIONS,
            "socket_connect_timeout": self.REDIS_SOCKET_TIMEOUT,
            "socket_timeout": self.REDIS_SOCKET_TIMEOUT,
            "retry_on_timeout": True,
            "health_check_interval": 30,
        }

    def get_schedule_config(self) -> dict:
        return {
            "enabled": self.SCHEDULER_ENABLED,
            "run_on_start": self.SCHEDULER_RUN_ON_START,
            "trigger_hour": self.SCHEDULER_TRIGGER_HOUR,
            "trigger_window_minutes": self.SCHEDULER_TRIGGER_WINDOW_MINUTES,
            "check_interval_seconds": self.SCHEDULER_CHECK_INTERVAL_SECONDS,
        }


settings = Settings()

# =================================================================
# QUICK CONFIGURATION REFERENCE
# =================================================================
"""
Local runs with near-zero pacing (e.g. against a provider sandbox):

    PRECALC_INTER_CALL_DELAY_SECONDS=0
    PRECALC_INTER_RANGE_DELAY_SECONDS=0
    ANALYTICS_PENDING_BACKOFF_BASE_SECONDS=0.1

Shared cache between several app instances:

    CACHE_BACKEND=redis
    REDIS_URL=rediss://default:<token>@<host>:6379
"""
