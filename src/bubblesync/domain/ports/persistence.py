"""Repository ports used by the reconciliation core."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from datetime import datetime

    from bubblesync.domain.entities import EntityKind, StoredRecord, SyncActivityEntry


@runtime_checkable
class EntityRepository(Protocol):
    """Rows of one entity kind, addressed by external identifier."""

    kind: EntityKind

    def get(self, external_id: str) -> StoredRecord | None: ...

    def exists(self, external_id: str) -> bool: ...

    def insert(
        self,
        external_id: str,
        values: Mapping[str, object],
        *,
        synced_at: datetime,
    ) -> StoredRecord: ...

    def update(
        self,
        external_id: str,
        values: Mapping[str, object],
        *,
        expected_synced_at: datetime | None,
        synced_at: datetime,
    ) -> bool: ...

    def set_if_empty(self, external_id: str, column: str, value: object) -> bool: ...

    def replace_value(
        self,
        external_id: str,
        column: str,
        *,
        expected: object,
        value: object,
    ) -> bool: ...

    def list_records(
        self,
        *,
        include_deleted: bool = False,
        created_after: datetime | None = None,
    ) -> Sequence[StoredRecord]: ...

    def find_by_column(self, column: str, value: object) -> Sequence[StoredRecord]: ...

    def get_many(self, external_ids: Sequence[str]) -> Sequence[StoredRecord]: ...

    def mark_deleted(self, external_ids: Sequence[str]) -> int: ...

    def delete(self, external_ids: Sequence[str]) -> int: ...


@runtime_checkable
class SyncActivityRepository(Protocol):
    """Append-only activity log."""

    def add(self, entry: SyncActivityEntry) -> None: ...

    def latest(self, limit: int = 50) -> Sequence[SyncActivityEntry]: ...


@runtime_checkable
class SyncCursorRepository(Protocol):
    """Where each kind's own incremental fetch last left off."""

    def get(self, kind: EntityKind) -> datetime | None: ...

    def store(
        self, kind: EntityKind, modified_through: datetime, *, updated_at: datetime
    ) -> None: ...


__all__ = ["EntityRepository", "SyncActivityRepository", "SyncCursorRepository"]
