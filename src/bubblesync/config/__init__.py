"""Application configuration helpers."""

from __future__ import annotations

from bubblesync.common.logging import configure_logging

from .bubble import BubbleConfig, get_bubble_config
from .env import require_env_vars
from .errors import ConfigurationError, MissingConfigurationError
from .files import FileMigrationConfig, get_file_migration_config
from .http_resilience import CacheConfig, RateLimit, ResilienceConfig, RetryPolicy
from .storage import DatabaseConfig, StorageConfig, get_database_config, get_storage_config
from .sync import SyncConfig, get_sync_config

__all__ = [
    "BubbleConfig",
    "CacheConfig",
    "ConfigurationError",
    "DatabaseConfig",
    "FileMigrationConfig",
    "MissingConfigurationError",
    "RateLimit",
    "ResilienceConfig",
    "RetryPolicy",
    "StorageConfig",
    "SyncConfig",
    "configure_logging",
    "get_bubble_config",
    "get_database_config",
    "get_file_migration_config",
    "get_storage_config",
    "get_sync_config",
    "require_env_vars",
]
