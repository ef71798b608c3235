from __future__ import annotations

from .logging import configure_logging, parse_log_level
from .storage import get_data_dir, get_database_uri, get_files_dir, get_http_cache_path

__all__ = [
    "configure_logging",
    "get_data_dir",
    "get_database_uri",
    "get_files_dir",
    "get_http_cache_path",
    "parse_log_level",
]
