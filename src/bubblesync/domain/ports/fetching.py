"""Ports for reading records from the remote record source."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from datetime import datetime

    from bubblesync.domain.entities import EntityKind

type RawRecord = Mapping[str, object]


@runtime_checkable
class RecordSource(Protocol):
    """Remote source of raw, human-readable-keyed records.

    Implementations raise ``RemoteFetchError`` when the source is unreachable or
    rejects the request; that is the only failure treated as fatal for a sync run.
    """

    def fetch_batch(
        self,
        kind: EntityKind,
        *,
        since: datetime | None = None,
    ) -> Sequence[RawRecord]: ...

    def fetch_by_id(self, kind: EntityKind, external_id: str) -> RawRecord | None: ...


__all__ = ["RawRecord", "RecordSource"]
