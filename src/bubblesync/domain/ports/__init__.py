"""Domain port definitions for adapters."""

from __future__ import annotations

from .fetching import RawRecord, RecordSource
from .files import DownloadJob, DownloadOutcome, FileDownloader
from .persistence import EntityRepository, SyncActivityRepository
from .unit_of_work import RepositoryCollection, SyncRepositories, SyncUnitOfWork, UnitOfWork

__all__ = [
    "DownloadJob",
    "DownloadOutcome",
    "EntityRepository",
    "FileDownloader",
    "RawRecord",
    "RecordSource",
    "RepositoryCollection",
    "SyncActivityRepository",
    "SyncRepositories",
    "SyncUnitOfWork",
    "UnitOfWork",
]
