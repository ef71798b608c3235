from __future__ import annotations

from pathlib import Path  # noqa: TC003

import pytest  # noqa: TC002

from bubblesync.common import storage
from bubblesync.config.files import get_file_migration_config
from bubblesync.config.storage import DEFAULT_DB_FILENAME, FILES_DIRNAME, HTTP_CACHE_FILENAME


def test_get_data_dir_prefers_explicit_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    custom = tmp_path / "custom-data"
    monkeypatch.setenv("BUBBLESYNC_DATA_DIR", str(custom))
    result = storage.get_data_dir()

    assert result == custom.resolve()
    assert result.is_dir()


def test_get_database_uri_uses_env_override(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_URI", "sqlite:///override.db")

    uri = storage.get_database_uri()

    assert uri == "sqlite:///override.db"


def test_get_database_uri_creates_data_dir(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.delenv("DATABASE_URI", raising=False)
    monkeypatch.setenv("BUBBLESYNC_DATA_DIR", str(tmp_path / "data-dir"))

    uri = storage.get_database_uri()

    expected_path = (tmp_path / "data-dir" / DEFAULT_DB_FILENAME).resolve()
    assert uri == f"sqlite+pysqlite:///{expected_path}"
    assert expected_path.parent.exists()


def test_http_cache_lives_in_data_dir(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("BUBBLESYNC_DATA_DIR", str(tmp_path))

    assert storage.get_http_cache_path() == tmp_path.resolve() / HTTP_CACHE_FILENAME


def test_files_dir_defaults_below_data_dir(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("BUBBLESYNC_DATA_DIR", str(tmp_path))
    monkeypatch.delenv("BUBBLESYNC_STORAGE_ROOT", raising=False)

    assert storage.get_files_dir() == tmp_path.resolve() / FILES_DIRNAME


def test_storage_root_override(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("BUBBLESYNC_STORAGE_ROOT", str(tmp_path / "blobs"))

    assert storage.get_files_dir() == (tmp_path / "blobs").resolve()
    assert get_file_migration_config().storage_root == (tmp_path / "blobs").resolve()
