"""Centralized application configuration using Pydantic settings."""
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven configuration shared across services."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    database_url: str = Field(
        default="sqlite:///./classfinder.db",
        description="SQLAlchemy database URL. Defaults to local SQLite for development.",
    )
    run_db_migrations: bool = Field(
        default=False,
        description="Whether this service should create/update database tables on startup.",
    )
    jwt_secret: str = Field(default="super-secret", description="JWT signing secret")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    access_token_expire_minutes: int = Field(default=60, description="Token lifetime in minutes")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"], description="Allowed CORS origins")
    default_rate_limit: str = Field(default="60/minute", description="Global rate limiting rule")
    rate_limiting_enabled: bool = Field(default=True, description="Toggle to disable SlowAPI limits (useful in tests)")
    booking_rate_limit: str = Field(default="10/hour", description="Per-user limit on booking creation attempts")
    rate_limit_storage_uri: str = Field(default="memory://", description="Storage backend URI for rate limit counters")

    campus_timezone: str = Field(default="Asia/Manila", description="Timezone used to derive the campus 'today'")
    allowed_email_domain: str = Field(default="dlsu.edu.ph", description="Email domain required for user profiles")

    max_advance_days: int = Field(default=7, description="How many days ahead a room may be booked")
    min_booking_minutes: int = Field(default=30, description="Shortest allowed booking")
    max_booking_minutes: int = Field(default=180, description="Longest allowed booking")
    daily_booking_quota: int = Field(default=2, description="Active bookings a user may hold per day")
    checkin_window_minutes: int = Field(default=15, description="Minutes before start when check-in opens")
    min_attendees: int = Field(default=2, description="Smallest group that may book a classroom")

    occupancy_cache_ttl: int = Field(default=30, description="TTL (s) for cached heat map snapshots")
    store_retry_after: int = Field(default=5, description="Retry-After (s) advertised on transient store failures")

    event_publishing_enabled: bool = Field(default=False, description="Publish booking events to RabbitMQ")
    rabbitmq_host: str = Field(default="rabbitmq", description="RabbitMQ host for the booking change feed")
    bookings_queue: str = Field(default="bookings", description="Durable queue receiving booking events")

    log_dir: str = Field(default="logs", description="Directory for per-service request logs")

    bookings_service_port: int = 8001
    manager_service_port: int = 8002
    admin_service_port: int = 8003
    heatmap_service_port: int = 8004


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of the Settings object."""

    return Settings()


def reset_settings_cache() -> None:
    """Clear the cached Settings instance (useful for tests)."""

    get_settings.cache_clear()
