"""Configuration management for sequelae.

This module defines all configuration settings using Pydantic for validation
and type safety. Configuration is loaded from environment variables (and an
optional ``.env`` file) with the same defaults the pool has always used.
"""

from enum import StrEnum
from typing import Literal
from urllib.parse import urlsplit, urlunsplit

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class TlsPolicy(StrEnum):
    """How the pool negotiates TLS with the server."""

    OFF = "off"
    REQUIRE_NO_VERIFY = "require-no-verify"
    VERIFY_CA = "verify-ca"
    VERIFY = "verify"


class PoolConfig(BaseSettings):
    """PostgreSQL connection pool configuration.

    Timeouts are expressed in milliseconds, matching the ``POSTGRES_*``
    environment variables they are read from.
    """

    model_config = SettingsConfigDict(
        env_prefix="POSTGRES_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    url: str = Field(
        default="",
        validation_alias=AliasChoices("DATABASE_URL", "url"),
        description="PostgreSQL connection string",
    )
    max_connections: int = Field(default=10, ge=1, le=1000, description="Maximum pool size")
    idle_timeout: int = Field(
        default=10_000, ge=0, description="Idle connection lifetime in milliseconds"
    )
    connection_timeout: int = Field(
        default=30_000, ge=1, description="Connect / acquire timeout in milliseconds"
    )
    statement_timeout: int = Field(
        default=120_000, ge=0, description="Server-side statement timeout in milliseconds"
    )
    ssl_mode: Literal["disable", "require", "verify-ca", "verify-full"] = Field(
        default="require", description="TLS mode"
    )
    ssl_reject_unauthorized: bool = Field(
        default=True, description="Reject server certificates that fail verification"
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Accept an empty URL (unconfigured) or a postgres:// style URL."""
        v = v.strip()
        if v and urlsplit(v).scheme not in ("postgres", "postgresql"):
            raise ValueError("DATABASE_URL must use the postgres:// or postgresql:// scheme")
        return v

    @property
    def tls_policy(self) -> TlsPolicy:
        """Resolve the TLS mode and rejection flag to a single policy."""
        if self.ssl_mode == "disable":
            return TlsPolicy.OFF
        if self.ssl_mode == "verify-ca":
            return TlsPolicy.VERIFY_CA
        if self.ssl_mode == "verify-full" or self.ssl_reject_unauthorized:
            return TlsPolicy.VERIFY
        return TlsPolicy.REQUIRE_NO_VERIFY

    @property
    def safe_dsn(self) -> str:
        """Connection string with the password masked for logging."""
        parts = urlsplit(self.url)
        if parts.password is None:
            return self.url
        netloc = parts.netloc.rsplit("@", 1)[1]
        user = parts.username or ""
        return urlunsplit(parts._replace(netloc=f"{user}:***@{netloc}"))


class ResilienceConfig(BaseSettings):
    """Connection checkout retry configuration."""

    model_config = SettingsConfigDict(env_prefix="RESILIENCE_")

    max_retries: int = Field(default=3, ge=0, le=10, description="Checkout retries after the first attempt")
    retry_delay: float = Field(
        default=1.0, ge=0.0, le=60.0, description="Initial checkout retry delay in seconds"
    )


class BackupConfig(BaseSettings):
    """pg_dump invocation configuration."""

    model_config = SettingsConfigDict(env_prefix="BACKUP_")

    pg_dump_path: str = Field(default="pg_dump", description="pg_dump executable name or path")
    parallel_jobs: int = Field(
        default=4, ge=1, le=64, description="Parallel jobs for directory-format dumps"
    )
    compression_level: int = Field(
        default=6, ge=0, le=9, description="Compression level for custom-format dumps"
    )


class ObservabilityConfig(BaseSettings):
    """Logging and metrics configuration."""

    model_config = SettingsConfigDict(env_prefix="")

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    log_format: Literal["json", "text"] = Field(default="text", description="Log format")
    metrics_enabled: bool = Field(default=False, description="Expose Prometheus metrics")
    metrics_port: int = Field(
        default=9090, ge=1024, le=65535, description="Metrics HTTP server port"
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        """Accept lower-case level names (LOG_LEVEL=debug)."""
        if isinstance(v, str):
            v = v.upper()
            return "WARNING" if v == "WARN" else v
        return v


class Settings(BaseSettings):
    """Main application settings aggregating all config sections."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    pool: PoolConfig = Field(default_factory=PoolConfig)
    resilience: ResilienceConfig = Field(default_factory=ResilienceConfig)
    backup: BackupConfig = Field(default_factory=BackupConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create global settings instance.

    Returns:
        Settings: The global settings instance.
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset global settings instance. Useful for testing."""
    global _settings
    _settings = None
