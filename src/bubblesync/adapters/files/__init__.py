"""Attachment download and lookup adapters."""

from __future__ import annotations

from .downloader import HttpFileDownloader
from .store import LocalFileStore

__all__ = ["HttpFileDownloader", "LocalFileStore"]
