"""Settings for the stock dashboard backend.

Values come from environment variables, grouped by prefix:

- ``POLYGON_*``     provider credentials and HTTP behaviour
- ``RATE_LIMIT_*``  outbound quota enforced by the request scheduler
- ``APP_*``         validation limits, cache lifetimes and retry budgets
- ``LOG_*``         logging output

``APP_ENV`` (development, testing, staging, production) selects an optional
``.env.<env>`` file at the project root that is loaded first.
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

APP_ENV = os.getenv("APP_ENV", "development")

PROJECT_ROOT = Path(__file__).resolve().parents[2]

ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_path = PROJECT_ROOT / ENV_FILE_MAP.get(APP_ENV, ".env.development")

# The grouped settings below each read os.environ on their own, so the
# env file is pushed into os.environ rather than passed as env_file.
if _env_path.is_file():
    from dotenv import load_dotenv

    load_dotenv(_env_path, override=True)


def _build_polygon_settings() -> "PolygonSettings":
    """Build provider settings from environment."""

    return PolygonSettings()


def _build_rate_limit_settings() -> "RateLimitSettings":
    return RateLimitSettings()


def _build_app_settings() -> "AppSettings":
    return AppSettings()


def _build_log_settings() -> "LogSettings":
    return LogSettings()


class PolygonSettings(BaseSettings):
    """Polygon.io market-data provider configuration.

    The API key is optional here so the app can boot and report a clear
    error; the data client refuses to start without one.
    """

    api_key: str | None = Field(
        None,
        description="Polygon.io API key",
    )
    base_url: str = Field(
        "https://api.polygon.io",
        description="Provider base URL",
    )
    timeout_seconds: float = Field(
        10.0,
        description="Total deadline per provider request in seconds, body included",
        gt=0,
    )
    tickers_page_size: int = Field(
        1000,
        description="Page size requested from the tickers reference endpoint",
        ge=1,
        le=1000,
    )
    tickers_max_pages: int = Field(
        1,
        description="Maximum number of ticker pages to follow via next_url",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="POLYGON_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Outbound request quota enforced by the request scheduler.

    Defaults match the Polygon.io free tier (5 requests per minute).
    """

    max_requests: int = Field(
        5,
        description="Maximum number of provider calls per sliding window",
        ge=1,
    )
    window_seconds: float = Field(
        60.0,
        description="Sliding window size in seconds",
        gt=0,
    )
    floor_wait_seconds: float = Field(
        1.0,
        description="Minimum sleep when the quota is exhausted",
        ge=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    max_symbols: int = Field(
        3,
        description="Maximum number of symbols compared at once",
        ge=1,
    )
    max_date_range_years: int = Field(
        5,
        description="Maximum length of a requested date range in years",
        ge=1,
    )
    search_min_length: int = Field(
        2,
        description="Minimum query length before ticker search runs",
        ge=1,
    )
    search_max_results: int = Field(
        10,
        description="Maximum number of ticker search results",
        ge=1,
    )
    tickers_cache_ttl_seconds: int = Field(
        24 * 60 * 60,
        description="How long the ticker list stays cached",
        ge=1,
    )
    prices_cache_ttl_seconds: int = Field(
        5 * 60,
        description="How long a price series stays cached",
        ge=1,
    )
    cache_max_entries: int = Field(
        256,
        description="Maximum number of cached provider responses",
        ge=1,
    )
    tickers_max_retries: int = Field(
        2,
        description="Retries for ticker list fetches (never for rate limit/auth errors)",
        ge=0,
        le=2,
    )
    prices_max_retries: int = Field(
        1,
        description="Retries for price fetches (never for rate limit/auth errors)",
        ge=0,
        le=2,
    )
    retry_initial_delay_seconds: float = Field(
        1.0,
        description="Delay before the first retry",
        ge=0,
    )
    retry_max_delay_seconds: float = Field(
        30.0,
        description="Upper bound for the exponential retry delay",
        ge=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="json or plain")
    output: str = Field("stdout", description="stdout or file")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate the log file after this many bytes (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(5, description="Rotated files to keep", ge=0)
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to propagate the correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """All settings groups, built once at import as ``settings``."""

    app_env: str = APP_ENV
    polygon: PolygonSettings = Field(default_factory=_build_polygon_settings)
    rate_limit: RateLimitSettings = Field(default_factory=_build_rate_limit_settings)
    app: AppSettings = Field(default_factory=_build_app_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


settings = Settings()
