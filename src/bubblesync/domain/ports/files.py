"""Port for downloading attachments into durable local storage."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence

    from bubblesync.domain.entities import EntityKind


@dataclass(frozen=True, slots=True, kw_only=True)
class DownloadJob:
    """One attachment to fetch; ``index`` is the array position for array fields."""

    kind: EntityKind
    external_id: str
    local_id: int
    column: str
    index: int | None
    original_value: str
    source_url: str
    subfolder: str
    filename: str


@dataclass(frozen=True, slots=True, kw_only=True)
class DownloadOutcome:
    job: DownloadJob
    size: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@runtime_checkable
class FileDownloader(Protocol):
    """Downloads each job to ``<storage root>/<subfolder>/<filename>``.

    Every job yields exactly one outcome, in order; a failed job never raises.
    """

    def __call__(self, jobs: Sequence[DownloadJob]) -> Sequence[DownloadOutcome]: ...


__all__ = ["DownloadJob", "DownloadOutcome", "FileDownloader"]
