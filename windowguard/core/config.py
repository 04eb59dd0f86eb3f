"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file

Only the demo application reads these settings. Library users construct
``RateLimiter`` with keyword options directly; ``limiter_options`` bridges the
two.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from windowguard.adapters.stores.in_memory import BucketedMemoryStore, MemoryStore

# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None

# Nested BaseSettings don't inherit env_file, so populate os.environ first.
if _env_file:
    from dotenv import load_dotenv

    load_dotenv(_env_file, override=True)


def _build_limiter_settings() -> "LimiterSettings":
    return LimiterSettings()


def _build_log_settings() -> "LogSettings":
    return LogSettings()


class LimiterSettings(BaseSettings):
    """Rate limiter configuration for the demo application."""

    enabled: bool = Field(
        True,
        description="Mount the rate limiting middleware",
    )
    window_ms: int = Field(
        60_000,
        description="Window length in milliseconds",
        ge=1,
    )
    limit: int = Field(
        5,
        description="Maximum number of requests per client per window",
        ge=0,
    )
    message: str = Field(
        "Too many requests, please try again later.",
        description="Body of the rejection response",
    )
    status_code: int = Field(
        429,
        description="Status code of the rejection response",
        ge=100,
        le=599,
    )
    legacy_headers: bool = Field(
        True,
        description="Send X-RateLimit-* headers",
    )
    standard_headers: Literal["false", "draft-6", "draft-7", "draft-8"] = Field(
        "false",
        description="IETF RateLimit header draft to send, or 'false' for none",
    )
    request_property_name: str = Field(
        "rate_limit",
        description="Attribute of request.state holding the rate limit info",
    )
    skip_successful_requests: bool = Field(
        False,
        description="Give the hit back when the response status is below 400",
    )
    skip_failed_requests: bool = Field(
        False,
        description="Give the hit back when the response failed or the status is 400 or above",
    )
    pass_on_store_error: bool = Field(
        False,
        description="Allow requests through when the store raises",
    )
    ipv6_subnet: int = Field(
        56,
        description="Prefix length IPv6 clients are grouped by",
        ge=1,
        le=128,
    )
    trust_proxy: int = Field(
        0,
        description="Number of reverse proxy hops to trust in X-Forwarded-For",
        ge=0,
    )
    validate_config: bool = Field(
        True,
        description="Log diagnostics for likely misconfigurations",
    )
    store: Literal["memory", "bucketed"] = Field(
        "memory",
        description="Counting store: fixed window or bucketed sliding window",
    )
    store_buckets: int = Field(
        10,
        description="Sub-windows per window for the bucketed store",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field(
        "INFO",
        description="Root log level",
    )
    format: Literal["json", "plain"] = Field(
        "json",
        description="Log line format",
    )
    output: Literal["stdout", "file"] = Field(
        "stdout",
        description="Log destination",
    )
    file_path: str | None = Field(
        None,
        description="Log file path when output is 'file'",
    )
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate the log file at this size; 0 disables rotation",
        ge=0,
    )
    backup_count: int = Field(
        5,
        description="Rotated log files to keep",
        ge=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if a setting is invalid.
    """

    app_env: str = APP_ENV
    limiter: LimiterSettings = Field(default_factory=_build_limiter_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


def limiter_options(limiter_settings: LimiterSettings) -> dict[str, Any]:
    """Translate limiter settings into ``RateLimiter`` keyword options.

    Args:
        limiter_settings: Resolved limiter settings.

    Returns:
        dict: Options accepted by ``RateLimiter``. A fresh store is created on
            every call, so each limiter gets its own.
    """

    if limiter_settings.store == "bucketed":
        store: MemoryStore = BucketedMemoryStore(buckets=limiter_settings.store_buckets)
    else:
        store = MemoryStore()

    standard_headers = limiter_settings.standard_headers
    return {
        "window_ms": limiter_settings.window_ms,
        "limit": limiter_settings.limit,
        "message": limiter_settings.message,
        "status_code": limiter_settings.status_code,
        "legacy_headers": limiter_settings.legacy_headers,
        "standard_headers": False if standard_headers == "false" else standard_headers,
        "request_property_name": limiter_settings.request_property_name,
        "skip_successful_requests": limiter_settings.skip_successful_requests,
        "skip_failed_requests": limiter_settings.skip_failed_requests,
        "pass_on_store_error": limiter_settings.pass_on_store_error,
        "ipv6_subnet": limiter_settings.ipv6_subnet,
        "trust_proxy": limiter_settings.trust_proxy or False,
        "validate": limiter_settings.validate_config,
        "store": store,
    }


# Global settings instance - composed from domain-specific settings
settings = Settings()
