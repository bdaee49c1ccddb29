"""Library configuration using Pydantic Settings.

Configuration is environment-aware:
- WINDOWLIMIT_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
WINDOWLIMIT_ENV = os.getenv("WINDOWLIMIT_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(WINDOWLIMIT_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_limiter_settings() -> "LimiterSettings":
    """Build limiter settings from environment."""

    return LimiterSettings()


def _build_redis_settings() -> "RedisSettings":
    """Build Redis settings from environment."""

    return RedisSettings()


def _build_log_settings() -> "LogSettings":
    """Build logging settings from environment."""

    return LogSettings()


class LimiterSettings(BaseSettings):
    """Backend selection and key namespacing."""

    backend: str = Field(
        "memory",
        description="Counting backend: 'memory' (per process) or 'redis' (shared)",
    )
    key_prefix: str = Field(
        "ratelimit",
        description="Namespace prepended to every counter key in the shared store",
        min_length=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="WINDOWLIMIT_",
        case_sensitive=False,
    )


class RedisSettings(BaseSettings):
    """Connection settings for the shared Redis counter store."""

    url: str = Field(
        "redis://localhost:6379/0",
        description="Redis connection URL (may embed credentials)",
    )
    socket_timeout_seconds: float = Field(
        1.0,
        description="Timeout for a single Redis round trip",
        gt=0,
    )
    socket_connect_timeout_seconds: float = Field(
        1.0,
        description="Timeout for establishing a Redis connection",
        gt=0,
    )
    max_connections: int | None = Field(
        None,
        description="Upper bound on pooled connections per client (None for unbounded)",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="WINDOWLIMIT_REDIS_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field(
        "INFO",
        description="Root log level (DEBUG, INFO, WARNING, ERROR)",
    )
    format: str = Field(
        "json",
        description="Log format: 'json' or 'plain'",
    )
    output: str = Field(
        "stdout",
        description="Log destination: 'stdout' or 'file'",
    )
    file_path: str | None = Field(
        None,
        description="Log file path when output is 'file'",
    )
    max_bytes: int = Field(
        10_485_760,
        description="Rotate the log file after this many bytes (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(
        5,
        description="Number of rotated log files to keep",
        ge=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="WINDOWLIMIT_LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main settings container.

    Automatically loads from the appropriate .env.{WINDOWLIMIT_ENV} file.
    Raises validation errors on first import if a setting is malformed.
    """

    env: str = WINDOWLIMIT_ENV
    limiter: LimiterSettings = Field(default_factory=_build_limiter_settings)
    redis: RedisSettings = Field(default_factory=_build_redis_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        env_prefix="WINDOWLIMIT_",
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
settings = Settings()
