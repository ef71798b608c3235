"""Logging setup shared by the CLI and background sync threads."""

from __future__ import annotations

import logging
from typing import Final

LOG_FORMAT: Final[str] = "%(asctime)s %(levelname)s [%(threadName)s %(name)s] %(message)s"

# Transport libraries log every request at INFO; a full sync issues thousands.
_CHATTY_LOGGERS: Final[tuple[str, ...]] = ("httpx", "httpcore", "hishel", "alembic.runtime")


def configure_logging(*, level: int = logging.INFO, force: bool = False) -> None:
    """Initialise the root logger once.

    Worker threads run record pipelines concurrently, so the thread name is part of
    the format. Pass ``force=True`` to reconfigure during tests.
    """

    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt="%H:%M:%S", force=force)
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def parse_log_level(value: str) -> int:
    """Translate a level name such as ``debug`` into its numeric value."""

    level = logging.getLevelNamesMapping().get(value.strip().upper())
    if level is None:
        raise ValueError(f"Unknown log level: {value}")
    return level
