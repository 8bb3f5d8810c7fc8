"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file

Every settings group is frozen: the configuration is built once at startup
and handed to the app factory, which passes the relevant group to each
component at construction.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


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

# Select the .env file for the current environment
_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=False)


CsvList = Annotated[list[str], NoDecode]


def parse_csv(value: str | list[str] | tuple[str, ...] | None) -> list[str]:
    """Parse a comma-separated string into a list of trimmed values.

    Args:
        value: Comma-separated string, an already split sequence, or None.

    Returns:
        List of trimmed, non-empty values with duplicates removed (order kept).

    Examples:
        >>> parse_csv("a, b ,c")
        ['a', 'b', 'c']
        >>> parse_csv(None)
        []
    """
    if not value:
        return []

    items = value.split(",") if isinstance(value, str) else list(value)
    seen: dict[str, None] = {}
    for item in items:
        item = str(item).strip()
        if item:
            seen.setdefault(item, None)
    return list(seen)


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    environment: str = Field(
        APP_ENV,
        description="Runtime environment (development, testing, staging, production)",
    )
    title: str = Field("Task Manager API", description="API title shown in the docs")
    version: str = Field("v1", description="API version shown in the docs")
    host: str = Field("0.0.0.0", description="Address the server binds to")
    port: int = Field(8000, description="Port the server listens on", ge=1, le=65535)
    max_request_body_bytes: int = Field(
        100_000_000,
        description="Maximum accepted request body size in bytes",
        ge=1,
    )
    https_redirect_enabled: bool = Field(
        False,
        description="Redirect plain HTTP requests to HTTPS",
    )
    blocked_ips: CsvList = Field(
        default_factory=list,
        description="Comma-separated client addresses that are refused with 403",
    )
    custom_headers: dict[str, str] = Field(
        default_factory=dict,
        description="Extra headers added to every response (JSON object)",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
        frozen=True,
    )

    @field_validator("blocked_ips", mode="before")
    @classmethod
    def _split_blocked_ips(cls, value):
        return parse_csv(value)


class AuthSettings(BaseSettings):
    """JWT bearer authentication parameters.

    Defaults target a local Keycloak realm.
    """

    authority: str = Field(
        "http://localhost:8080/realms/master",
        description="Token issuer URL; also the base for OIDC discovery",
    )
    audience: str = Field(
        "my-dotnet-api",
        description="Primary audience (the client id registered at the issuer)",
    )
    valid_audiences: CsvList = Field(
        default_factory=lambda: ["master-realm", "account", "my-dotnet-api"],
        description="Comma-separated audiences accepted in the aud claim",
    )
    require_https_metadata: bool = Field(
        False,
        description="Refuse to fetch issuer metadata over plain HTTP",
    )
    validate_issuer: bool = Field(True, description="Check the iss claim")
    validate_audience: bool = Field(True, description="Check the aud claim")
    validate_lifetime: bool = Field(True, description="Check exp/nbf claims")
    jwks_url: str | None = Field(
        None,
        description="Signing keys endpoint; discovered from the authority when unset",
    )
    algorithms: CsvList = Field(
        default_factory=lambda: ["RS256"],
        description="Comma-separated accepted signing algorithms",
    )
    leeway_seconds: float = Field(
        0.0,
        description="Clock skew tolerance for lifetime checks",
        ge=0,
    )
    metadata_timeout_seconds: float = Field(
        10.0,
        description="Timeout for discovery and signing key requests",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="AUTH_",
        case_sensitive=False,
        frozen=True,
    )

    @field_validator("valid_audiences", "algorithms", mode="before")
    @classmethod
    def _split_lists(cls, value):
        return parse_csv(value)

    @property
    def audiences(self) -> list[str]:
        """All accepted audiences, primary audience first."""
        return parse_csv([self.audience, *self.valid_audiences])


class CorsSettings(BaseSettings):
    """Cross-origin policy used outside development."""

    allowed_origins: CsvList = Field(
        default_factory=lambda: ["https://yourfrontend.com"],
        description="Comma-separated origins allowed to call the API",
    )
    allow_credentials: bool = Field(
        True,
        description="Allow cookies/authorization headers on cross-origin calls",
    )

    model_config = SettingsConfigDict(
        env_prefix="CORS_",
        case_sensitive=False,
        frozen=True,
    )

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def _split_origins(cls, value):
        return parse_csv(value)


class RateLimitSettings(BaseSettings):
    """Fixed-window rate limit applied per client address."""

    enabled: bool = Field(True, description="Enable rate limiting")
    permit_limit: int = Field(
        10,
        description="Requests admitted per window and partition",
        ge=1,
    )
    window_seconds: float = Field(
        60,
        description="Window length in seconds",
        gt=0,
    )
    queue_limit: int = Field(
        2,
        description="Requests allowed to wait for the next window when exhausted",
        ge=0,
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers when throttling",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
        frozen=True,
    )


class CacheSettings(BaseSettings):
    """In-memory response cache."""

    enabled: bool = Field(True, description="Enable response caching")
    max_entries: int = Field(1024, description="Maximum cached responses", ge=1)
    max_body_bytes: int = Field(
        1024 * 1024,
        description="Responses larger than this are never cached",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="CACHE_",
        case_sensitive=False,
        frozen=True,
    )


class CompressionSettings(BaseSettings):
    """Response compression."""

    enabled: bool = Field(True, description="Enable gzip compression")
    minimum_size: int = Field(
        500,
        description="Responses smaller than this many bytes are sent uncompressed",
        ge=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="COMPRESSION_",
        case_sensitive=False,
        frozen=True,
    )


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="Log format: json or plain")
    output: str = Field(
        "both",
        description="Log destination: console, file or both",
    )
    file_path: str = Field(
        "logs/api-log.txt",
        description="Log file path (rolled over daily)",
    )
    rotation_when: str = Field(
        "midnight",
        description="TimedRotatingFileHandler interval type",
    )
    backup_count: int = Field(7, description="Rolled files to keep", ge=0)
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to read and propagate the request id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
        frozen=True,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are invalid.

    Environments:
    - development: Local development (docs enabled, permissive CORS)
    - testing: Automated tests (uses .env.testing)
    - staging: Pre-production (uses .env.staging)
    - production: Production deployment (uses .env.production)
    """

    app: AppSettings = Field(default_factory=AppSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    cors: CorsSettings = Field(default_factory=CorsSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    compression: CompressionSettings = Field(default_factory=CompressionSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
        frozen=True,
    )

    @property
    def is_development(self) -> bool:
        return self.app.environment.lower() == "development"


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings, loaded on first use.

    Loading is deferred so the entry point can report invalid environment
    values as a fatal startup error instead of failing at import time.

    Returns:
        Settings instance shared by every caller.
    """
    return Settings()
