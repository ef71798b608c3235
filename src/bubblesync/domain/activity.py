"""Helpers for writing to the persisted sync activity log."""

from __future__ import annotations

import logging
from logging import getLogger
from typing import TYPE_CHECKING

from .entities import ActivityLevel, SyncActivityEntry

if TYPE_CHECKING:
    from collections.abc import Callable

    from .ports.unit_of_work import SyncUnitOfWork

log = getLogger(__name__)

_LOG_LEVELS = {
    ActivityLevel.INFO: logging.INFO,
    ActivityLevel.WARNING: logging.WARNING,
    ActivityLevel.ERROR: logging.ERROR,
}


def record_activity(uow: SyncUnitOfWork, level: ActivityLevel, message: str) -> None:
    """Queue an activity entry on an open unit of work (written on its commit)."""

    log.log(_LOG_LEVELS[level], message)
    uow.repositories.activity.add(SyncActivityEntry(level=level, message=message))


def append_activity(
    unit_of_work_factory: Callable[[], SyncUnitOfWork],
    level: ActivityLevel,
    message: str,
) -> None:
    """Write an activity entry in its own transaction."""

    with unit_of_work_factory() as uow:
        record_activity(uow, level, message)
        uow.commit()
