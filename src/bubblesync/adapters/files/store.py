"""Lookup of migrated attachments in the local blob directory."""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING
from urllib.parse import unquote, urlsplit

from bubblesync.common.storage import get_files_dir
from bubblesync.domain.files import LOCAL_PREFIXES, sanitize_filename

if TYPE_CHECKING:
    from collections.abc import Iterator

log = getLogger(__name__)


@dataclass(slots=True)
class LocalFileStore:
    root: Path = field(default_factory=get_files_dir)

    def locate(self, url_path: str) -> Path | None:
        """Resolve a serving path (``/api/files/<subfolder>/<file>``) to a stored file.

        Names were percent-encoded when written, while links may arrive decoded or
        encoded differently. Candidates are tried in order: as given, decoded,
        re-encoded per segment, then a scan of the directory comparing decoded
        names. Paths escaping the storage root never match.
        """

        relative = _relative_path(url_path)
        if relative is None:
            return None
        for candidate in self._candidates(relative):
            if candidate is not None and candidate.is_file():
                return candidate
        return self._scan(relative)

    def _candidates(self, relative: str) -> Iterator[Path | None]:
        decoded = unquote(relative)
        yield self._inside_root(relative)
        yield self._inside_root(decoded)
        yield self._inside_root(
            "/".join(sanitize_filename(segment) for segment in decoded.split("/"))
        )

    def _scan(self, relative: str) -> Path | None:
        decoded = PurePosixPath(unquote(relative))
        directory = self._inside_root(str(decoded.parent))
        if directory is None or not directory.is_dir():
            return None
        for entry in directory.iterdir():
            if entry.is_file() and unquote(entry.name) == decoded.name:
                return entry
        return None

    def _inside_root(self, relative: str) -> Path | None:
        root = self.root.resolve()
        candidate = (root / relative).resolve()
        if not candidate.is_relative_to(root):
            log.warning("Rejected file path outside storage root: %s", relative)
            return None
        return candidate


def _relative_path(url_path: str) -> str | None:
    path = urlsplit(url_path).path or url_path
    for prefix in LOCAL_PREFIXES:
        if path.startswith(prefix):
            path = path[len(prefix) :]
            break
    path = path.lstrip("/")
    return path or None
