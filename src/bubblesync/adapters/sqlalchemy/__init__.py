"""SQLAlchemy adapter package for bubblesync."""

from __future__ import annotations

from .mappings import (
    TABLE_BY_KIND,
    create_all_tables,
    mapper_registry,
    start_mappers,
)
from .repositories import (
    SqlAlchemyEntityRepository,
    SqlAlchemySyncActivityRepository,
    SqlAlchemySyncCursorRepository,
)
from .unit_of_work import SqlAlchemySyncUnitOfWork, shutdown, startup

__all__ = [
    "TABLE_BY_KIND",
    "SqlAlchemyEntityRepository",
    "SqlAlchemySyncActivityRepository",
    "SqlAlchemySyncCursorRepository",
    "SqlAlchemySyncUnitOfWork",
    "create_all_tables",
    "mapper_registry",
    "shutdown",
    "start_mappers",
    "startup",
]
