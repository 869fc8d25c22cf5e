# newsagg/config.py
"""
Centralized configuration with validation.

Uses pydantic-settings to load and validate environment variables once at
startup, then freezes them into an immutable AppConfig that is handed to each
component at construction time. Components never read Settings directly.
"""

from dataclasses import dataclass
from datetime import time
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from newsagg.services.deduper import DedupPolicy
from newsagg.services.orchestrator import AggregationPolicy
from newsagg.services.quota_ledger import QuotaPolicy
from newsagg.services.source_registry import SourceRegistry, default_providers
from newsagg.services.ttl_policy import DEFAULT_CATEGORY_TTLS, CategoryTTL, EventWindows, TTLPolicy


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = Field(
        default="sqlite:///./newsagg.db",
        description="SQLAlchemy database URL for articles and quota counters",
    )

    # Authentication
    ADMIN_API_KEY: str | None = Field(
        default=None,
        description="API key for admin endpoints. Admin routes fail closed when unset.",
    )

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Root log level")
    LOG_JSON: bool = Field(default=True, description="Emit single-line JSON logs")

    # Provider credentials
    RAPIDAPI_KEY: str | None = Field(default=None, description="RapidAPI key")
    RAPIDAPI_HOST: str = Field(
        default="real-time-news-data.p.rapidapi.com",
        description="X-RapidAPI-Host header value",
    )
    NEWSDATA_API_KEY: str | None = Field(default=None, description="NewsData.io API key")
    GNEWS_API_KEY: str | None = Field(default=None, description="GNews API key")
    MEDIASTACK_API_KEY: str | None = Field(default=None, description="Mediastack access key")

    # Provider caps
    RAPIDAPI_DAILY_CAP: int = Field(default=16667, ge=0)
    RAPIDAPI_HOURLY_CAP: int | None = Field(default=1000, ge=0)
    NEWSDATA_DAILY_CAP: int = Field(default=200, ge=0)
    NEWSDATA_HOURLY_CAP: int | None = Field(default=None, ge=0)
    GNEWS_DAILY_CAP: int = Field(default=100, ge=0)
    GNEWS_HOURLY_CAP: int | None = Field(default=None, ge=0)
    MEDIASTACK_DAILY_CAP: int = Field(default=16, ge=0)
    MEDIASTACK_HOURLY_CAP: int | None = Field(default=None, ge=0)

    # Provider behaviour
    PROVIDER_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0, description="HTTP timeout per provider call")
    PROVIDER_MAX_ATTEMPTS: int = Field(default=3, ge=1, le=10, description="Attempts per provider call")
    PROVIDER_BACKOFF_SECONDS: float = Field(default=1.0, ge=0, description="Initial retry backoff")
    PROVIDER_MAX_BACKOFF_SECONDS: float = Field(default=30.0, ge=0, description="Retry backoff ceiling")
    PROVIDER_DEGRADED_COOLDOWN_SECONDS: int = Field(
        default=900,
        ge=0,
        description="How long a provider stays degraded after a permanent failure",
    )
    DOMESTIC_SHARES: dict[str, float] = Field(
        default_factory=dict,
        description='Per-provider domestic request share overrides, e.g. {"gnews": 0.5}',
    )

    # Quota
    QUOTA_WARNING_THRESHOLD: float = Field(default=0.85, gt=0, le=1)
    QUOTA_CRITICAL_THRESHOLD: float = Field(default=0.95, gt=0, le=1)
    QUOTA_RESET_HOUR: int = Field(default=0, ge=0, le=23, description="Local hour at which daily counters roll over")

    # Content market clock
    CONTENT_TIMEZONE: str = Field(default="Asia/Kolkata", description="Timezone for quota resets and event windows")
    MARKET_OPEN: time = Field(default=time(9, 15))
    MARKET_CLOSE: time = Field(default=time(15, 30))
    BUSINESS_HOURS_START: time = Field(default=time(9, 0))
    BUSINESS_HOURS_END: time = Field(default=time(18, 0))
    SPORTS_PEAK_START: time = Field(default=time(19, 0))
    SPORTS_PEAK_END: time = Field(default=time(22, 0))

    # Dedup
    DEDUP_SIMILARITY_THRESHOLD: float = Field(default=0.8, gt=0, le=1)
    DEDUP_WINDOW_MINUTES: int = Field(default=60, ge=1)
    DEDUP_AMBIGUITY_MARGIN: float = Field(default=0.1, ge=0, lt=1)

    # Cache
    REDIS_URL: str | None = Field(
        default=None,
        description="Redis URL for the feed cache. In-process cache is used when unset.",
    )
    CACHE_KEY_PREFIX: str = Field(default="newsagg")
    CACHE_MAX_ENTRIES: int = Field(default=1000, ge=1)
    CACHE_WAIT_TIMEOUT_SECONDS: float = Field(default=45.0, gt=0)
    CACHE_DEFAULT_TTL: int = Field(default=3600, ge=1, description="TTL for unrecognised categories")
    CACHE_TTL_OVERRIDES: dict[str, list[int]] = Field(
        default_factory=dict,
        description='Per-category [peak, off_peak, event] TTL overrides in seconds',
    )

    # Aggregation
    AGGREGATION_FAN_OUT: int = Field(default=2, ge=1, le=16, description="Providers called concurrently per wave")
    AGGREGATION_TARGET_COUNT: int = Field(default=30, ge=1)
    SHUTDOWN_GRACE_SECONDS: float = Field(default=20.0, ge=0)

    # Scheduler
    SCHEDULER_ENABLED: bool = Field(default=True)
    REFRESH_INTERVAL_MINUTES: int = Field(default=30, ge=1)
    REFRESH_CATEGORIES: list[str] = Field(
        default_factory=lambda: ["breaking", "business", "sports", "politics", "technology"],
    )

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        if v.upper() not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return v.upper()

    @field_validator("DATABASE_URL")
    @classmethod
    def fix_database_url(cls, v: str) -> str:
        """Hosted Postgres hands out postgresql:// but SQLAlchemy needs postgresql+psycopg2://"""
        if v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+psycopg2://", 1)
        return v

    @field_validator("CACHE_TTL_OVERRIDES")
    @classmethod
    def validate_ttl_overrides(cls, v: dict[str, list[int]]) -> dict[str, list[int]]:
        for category, values in v.items():
            if len(values) != 3 or any(int(x) <= 0 for x in values):
                raise ValueError(f"TTL override for '{category}' must be three positive integers")
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


@dataclass(frozen=True)
class AppConfig:
    """Immutable configuration snapshot passed into components."""

    registry: SourceRegistry
    quota: QuotaPolicy
    dedup: DedupPolicy
    ttl: TTLPolicy
    aggregation: AggregationPolicy
    cache_key_prefix: str
    cache_max_entries: int
    cache_wait_timeout: float
    redis_url: str | None
    content_timezone: str
    scheduler_enabled: bool
    refresh_interval_minutes: int
    refresh_categories: tuple[str, ...]
    shutdown_grace_seconds: float


def build_app_config(settings: Settings) -> AppConfig:
    """Freeze validated settings into the configuration components consume."""
    if settings.QUOTA_WARNING_THRESHOLD > settings.QUOTA_CRITICAL_THRESHOLD:
        raise ValueError("QUOTA_WARNING_THRESHOLD must not exceed QUOTA_CRITICAL_THRESHOLD")

    category_ttls = dict(DEFAULT_CATEGORY_TTLS)
    for category, (peak, off_peak, event) in settings.CACHE_TTL_OVERRIDES.items():
        category_ttls[category.lower()] = CategoryTTL(peak=peak, off_peak=off_peak, event=event)

    windows = EventWindows(
        timezone=settings.CONTENT_TIMEZONE,
        market_open=settings.MARKET_OPEN,
        market_close=settings.MARKET_CLOSE,
        business_start=settings.BUSINESS_HOURS_START,
        business_end=settings.BUSINESS_HOURS_END,
        sports_start=settings.SPORTS_PEAK_START,
        sports_end=settings.SPORTS_PEAK_END,
    )

    return AppConfig(
        registry=SourceRegistry(default_providers(settings)),
        quota=QuotaPolicy(
            warning_threshold=settings.QUOTA_WARNING_THRESHOLD,
            critical_threshold=settings.QUOTA_CRITICAL_THRESHOLD,
            reset_hour=settings.QUOTA_RESET_HOUR,
            timezone=settings.CONTENT_TIMEZONE,
        ),
        dedup=DedupPolicy(
            threshold=settings.DEDUP_SIMILARITY_THRESHOLD,
            window_minutes=settings.DEDUP_WINDOW_MINUTES,
            ambiguity_margin=settings.DEDUP_AMBIGUITY_MARGIN,
        ),
        ttl=TTLPolicy(
            windows=windows,
            category_ttls=category_ttls,
            default_ttl=settings.CACHE_DEFAULT_TTL,
        ),
        aggregation=AggregationPolicy(
            fan_out=settings.AGGREGATION_FAN_OUT,
            default_target_count=settings.AGGREGATION_TARGET_COUNT,
        ),
        cache_key_prefix=settings.CACHE_KEY_PREFIX,
        cache_max_entries=settings.CACHE_MAX_ENTRIES,
        cache_wait_timeout=settings.CACHE_WAIT_TIMEOUT_SECONDS,
        redis_url=settings.REDIS_URL,
        content_timezone=settings.CONTENT_TIMEZONE,
        scheduler_enabled=settings.SCHEDULER_ENABLED,
        refresh_interval_minutes=settings.REFRESH_INTERVAL_MINUTES,
        refresh_categories=tuple(c.lower() for c in settings.REFRESH_CATEGORIES),
        shutdown_grace_seconds=settings.SHUTDOWN_GRACE_SECONDS,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached application settings. Call at startup to validate config."""
    return Settings()
