"""Attachment migration configuration values."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

from .env import env_float, env_int, optional_env_var
from .storage import get_storage_config

if TYPE_CHECKING:
    from pathlib import Path

DEFAULT_FILE_BASE_URL: Final[str] = "https://admin.atap.solar"
DEFAULT_DOWNLOAD_TIMEOUT_SECONDS: Final[float] = 30.0
DEFAULT_DOWNLOAD_CONCURRENCY: Final[int] = 4


@dataclass(frozen=True, slots=True)
class FileMigrationConfig:
    storage_root: Path
    file_base_url: str = DEFAULT_FILE_BASE_URL
    download_timeout_seconds: float = DEFAULT_DOWNLOAD_TIMEOUT_SECONDS
    concurrency: int = DEFAULT_DOWNLOAD_CONCURRENCY


def get_file_migration_config() -> FileMigrationConfig:
    base_url = optional_env_var("FILE_BASE_URL") or DEFAULT_FILE_BASE_URL
    return FileMigrationConfig(
        storage_root=get_storage_config().files_path(),
        file_base_url=base_url.rstrip("/"),
        download_timeout_seconds=env_float(
            "BUBBLESYNC_DOWNLOAD_TIMEOUT", DEFAULT_DOWNLOAD_TIMEOUT_SECONDS
        ),
        concurrency=env_int("BUBBLESYNC_DOWNLOAD_CONCURRENCY", DEFAULT_DOWNLOAD_CONCURRENCY),
    )
