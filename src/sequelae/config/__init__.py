"""Configuration management module."""

from sequelae.config.settings import (
    BackupConfig,
    ObservabilityConfig,
    PoolConfig,
    ResilienceConfig,
    Settings,
    TlsPolicy,
    get_settings,
    reset_settings,
)

__all__ = [
    "BackupConfig",
    "ObservabilityConfig",
    "PoolConfig",
    "ResilienceConfig",
    "Settings",
    "TlsPolicy",
    "get_settings",
    "reset_settings",
]
