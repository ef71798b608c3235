from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine  # noqa: TC002
from sqlalchemy.orm import Session, sessionmaker

from bubblesync.adapters.sqlalchemy import start_mappers
from bubblesync.adapters.sqlalchemy.migrations import upgrade_head
from bubblesync.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemySyncUnitOfWork,
    shutdown,
    startup,
)

os.environ.setdefault("DATABASE_URI", "sqlite+pysqlite:///:memory:")

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def isolated_data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    data_dir = tmp_path / "data"
    monkeypatch.setenv("BUBBLESYNC_DATA_DIR", str(data_dir))
    monkeypatch.setenv("BUBBLESYNC_STORAGE_ROOT", str(tmp_path / "files"))
    return data_dir


@pytest.fixture
def sqlite_engine(tmp_path: Path) -> Iterator[Engine]:
    # File-backed so that sync worker threads share one database.
    engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'bubblesync.db'}", future=True)
    start_mappers()
    upgrade_head(engine=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def sqlite_session(sqlite_engine: Engine) -> Iterator[Session]:
    session_factory = sessionmaker(bind=sqlite_engine, future=True)
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def sqlite_unit_of_work(
    sqlite_engine: Engine,
) -> Iterator[Callable[[], SqlAlchemySyncUnitOfWork]]:
    startup(engine=sqlite_engine, force=True)

    def factory() -> SqlAlchemySyncUnitOfWork:
        return SqlAlchemySyncUnitOfWork()

    try:
        yield factory
    finally:
        shutdown()
