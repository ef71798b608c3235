"""Synchronization defaults for sync runs and progress tracking."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from .env import env_int

DEFAULT_SYNC_WORKERS = 4
DEFAULT_ERROR_DETAIL_LIMIT = 20
DEFAULT_PROGRESS_TTL = timedelta(hours=24)
DEFAULT_MAX_SESSIONS = 100
DEFAULT_EVENT_CAPACITY = 500


@dataclass(frozen=True, slots=True)
class SyncConfig:
    workers: int = DEFAULT_SYNC_WORKERS
    error_detail_limit: int = DEFAULT_ERROR_DETAIL_LIMIT
    progress_ttl: timedelta = DEFAULT_PROGRESS_TTL
    max_sessions: int = DEFAULT_MAX_SESSIONS
    event_capacity: int = DEFAULT_EVENT_CAPACITY


def get_sync_config() -> SyncConfig:
    return SyncConfig(workers=env_int("BUBBLESYNC_SYNC_WORKERS", DEFAULT_SYNC_WORKERS))
