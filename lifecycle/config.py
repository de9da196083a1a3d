"""
Configuration management using pydantic-settings.
All settings loaded from environment variables (12-factor app).
"""

from functools import lru_cache
from typing import List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    db_path: str = Field(default="./data/lifecycle.duckdb", description="DuckDB file path")

    # API
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    api_reload: bool = Field(default=True, description="Enable hot reload")
    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="CORS allowed origins (comma-separated)",
    )

    # Logging
    log_level: str = Field(default="info", description="Log level")
    log_format: str = Field(default="json", description="Log format (json|console)")

    # Business calendar
    business_timezone: str = Field(default="Europe/Vienna", description="IANA timezone of the business")
    business_days: str = Field(
        default="1,2,3,4,5",
        description="ISO weekdays counted as business days (1=Monday, comma-separated)",
    )
    business_start_hour: int = Field(default=9, ge=0, le=23, description="Business day start hour")
    business_end_hour: int = Field(default=17, ge=1, le=24, description="Business day end hour")

    # Ticketing upstream
    ticketing_api_url: str = Field(
        default="https://api.usepylon.com", description="Ticketing provider API base URL"
    )
    ticketing_api_token: str = Field(default="", description="Ticketing provider API token")
    ticketing_timeout_seconds: float = Field(default=10.0, gt=0, description="Per-request timeout")
    ticketing_max_retries: int = Field(default=3, ge=1, description="Attempts per upstream request")
    ticketing_request_delay_seconds: float = Field(
        default=0.5, ge=0.0, description="Fixed delay before each upstream request"
    )
    ticketing_page_size: int = Field(default=1000, ge=1, le=1000, description="Search page size")

    # Ingestion
    event_dedup_window_seconds: int = Field(
        default=5, ge=1, description="Window in which identical webhook deliveries collapse"
    )

    # Aggregation
    max_segment_duration_days: int = Field(
        default=365, ge=1, description="Segments longer than this are discarded as implausible"
    )
    aggregation_interval_seconds: int = Field(
        default=900, ge=60, description="Periodic aggregation interval"
    )
    aggregation_lookback_days: int = Field(
        default=1, ge=0, description="Days before today re-aggregated on each periodic run"
    )

    # Reconciliation
    reconcile_window_days: int = Field(default=5, ge=1, description="Days per upstream query window")
    reconcile_lookback_days: int = Field(
        default=30, ge=1, description="Trailing days re-validated by the long cadence"
    )
    reconcile_short_interval_seconds: int = Field(
        default=300, ge=30, description="Short cadence interval (today only)"
    )
    reconcile_long_interval_seconds: int = Field(
        default=3600, ge=60, description="Long cadence interval (trailing window)"
    )
    reconcile_lock_ttl_seconds: int = Field(
        default=900, ge=60, description="Expiry of the reconciliation job lock"
    )

    # Cache
    cache_max_entries: int = Field(default=1024, ge=1, description="Freshness cache capacity")
    closure_cache_ttl_seconds: int = Field(default=300, ge=0, description="Closure counts ttl")
    closure_cache_stale_seconds: int = Field(
        default=300, ge=0, description="Closure counts stale-after"
    )
    lifecycle_cache_recent_ttl_seconds: int = Field(
        default=60, ge=0, description="Lifecycle data ttl when the range touches the last week"
    )
    lifecycle_cache_historical_ttl_seconds: int = Field(
        default=3600, ge=0, description="Lifecycle data ttl for historical ranges"
    )

    # Scheduler
    scheduler_enabled: bool = Field(default=True, description="Run periodic jobs in-process")

    # Development
    dev_mode: bool = Field(default=True, description="Development mode")
    debug: bool = Field(default=False, description="Debug mode")
    testing: bool = Field(default=False, description="Testing mode")

    @field_validator("cors_origins")
    @classmethod
    def parse_cors_origins(cls, v: str) -> List[str]:
        """Parse comma-separated CORS origins."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("business_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Reject unknown IANA zone names at startup."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @field_validator("business_days")
    @classmethod
    def validate_business_days(cls, v: str) -> str:
        """Business days must be ISO weekday numbers 1..7."""
        days = [d.strip() for d in str(v).split(",") if d.strip()]
        for d in days:
            if not d.isdigit() or not 1 <= int(d) <= 7:
                raise ValueError(f"Invalid ISO weekday: {d}")
        return ",".join(days)

    @model_validator(mode="after")
    def validate_business_hours(self) -> "Settings":
        if self.business_start_hour >= self.business_end_hour:
            raise ValueError("business_start_hour must be before business_end_hour")
        return self

    @property
    def business_weekdays(self) -> frozenset[int]:
        """Business days as a set of ISO weekday numbers."""
        return frozenset(int(d) for d in self.business_days.split(",") if d)


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to ensure singleton behavior.
    """
    return Settings()
