"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
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


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_redis_settings() -> "RedisSettings":
    """Build Redis settings from environment.

    Pydantic Settings (v2) can populate values from environment variables.
    However, static type checkers often treat required fields as required
    constructor arguments, which is not how BaseSettings is intended to be used.
    """

    return RedisSettings()  # type: ignore[call-arg]


def _build_app_settings() -> "AppSettings":
    """Build app settings from environment.

    See _build_redis_settings() for rationale about the type ignore.
    """

    return AppSettings()  # type: ignore[call-arg]


def _build_log_settings() -> "LogSettings":
    return LogSettings()  # type: ignore[call-arg]


class GroupPolicyConfig(BaseModel):
    """Declarative policy for one traffic group, as read from the environment."""

    max: int = Field(..., ge=0, description="Maximum weighted events per window")
    window_seconds: float = Field(..., gt=0, description="Rolling window length in seconds")


ADMIN_GROUP = "admin"
DEFAULT_ADMIN_POLICY = GroupPolicyConfig(max=120, window_seconds=60)


def _default_groups() -> dict[str, GroupPolicyConfig]:
    return {
        "default": GroupPolicyConfig(max=60, window_seconds=60),
        ADMIN_GROUP: DEFAULT_ADMIN_POLICY,
    }


class RedisSettings(BaseSettings):
    """Connection settings for the shared Redis store.

    Timeouts bound every round trip so no limiter or blocker call can hang
    a request indefinitely.
    """

    url: str = Field(
        "redis://localhost:6379/0",
        description="Redis connection URL",
    )
    password: str | None = Field(
        None,
        description="Redis password (overrides the one embedded in the URL)",
    )
    db: int | None = Field(
        None,
        description="Redis logical database (overrides the one in the URL)",
        ge=0,
    )
    socket_timeout_seconds: float = Field(
        3.0,
        description="Read/write timeout for a single round trip",
        gt=0,
    )
    socket_connect_timeout_seconds: float = Field(
        3.0,
        description="TCP connect timeout",
        gt=0,
    )
    max_connections: int = Field(
        512,
        description="Upper bound of the connection pool",
        ge=1,
    )
    health_check_interval_seconds: int = Field(
        60,
        description="Idle connections are re-checked after this many seconds",
        ge=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        case_sensitive=False,
    )


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    api_key_required: bool = Field(
        True,
        description="Whether API key authentication is required on admin routes",
    )
    api_keys: str | None = Field(
        None,
        description="Comma-separated list of valid API keys for authentication",
    )

    rate_limit_enabled: bool = Field(
        True,
        description="Enable admission checks (rate limits and blocks)",
    )
    rate_limit_backend: str = Field(
        "redis",
        description="Backend for limiter/blocker state: 'redis' or 'memory'",
    )
    rate_limit_groups: dict[str, GroupPolicyConfig] = Field(
        default_factory=_default_groups,
        description='Group policies as JSON, e.g. {"login": {"max": 5, "window_seconds": 60}}',
    )
    rate_limit_fail_open: bool = Field(
        True,
        description="Let requests through when the store cannot be reached",
    )
    rate_limit_include_headers: bool = Field(
        True,
        description="Include X-RateLimit-Remaining and Retry-After headers",
    )
    block_max_age_seconds: int = Field(
        7 * 24 * 3600,
        description="Retention of a block record after its last update",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="Log format: 'json' or 'plain'")
    output: str = Field("stdout", description="Log destination: 'stdout' or 'file'")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(10 * 1024 * 1024, description="Rotate after this size (0 disables)", ge=0)
    backup_count: int = Field(5, description="Number of rotated files to keep", ge=0)
    request_id_header: str = Field("X-Request-ID", description="Header carrying the request id")

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are malformed.

    Environments:
    - development: Local development (DEBUG=true)
    - testing: Automated tests (uses .env.testing)
    - staging: Pre-production (uses .env.staging)
    - production: Production deployment (uses .env.production)
    """

    app_env: str = APP_ENV
    redis: RedisSettings = Field(default_factory=_build_redis_settings)
    app: AppSettings = Field(default_factory=_build_app_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
