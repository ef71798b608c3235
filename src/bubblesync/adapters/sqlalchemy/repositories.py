"""Repository implementations backed by SQLAlchemy sessions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, cast

from sqlalchemy import delete, false, insert, or_, select, update
from sqlalchemy.exc import IntegrityError

from bubblesync.adapters.sqlalchemy.mappings import (
    BOOKKEEPING_COLUMNS,
    TABLE_BY_KIND,
    StringListType,
    sync_activity_log_table,
    sync_cursor_table,
)
from bubblesync.domain.entities import StoredRecord, SyncActivityEntry
from bubblesync.domain.errors import RecordConflictError

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from datetime import datetime

    from sqlalchemy import ColumnElement, Row
    from sqlalchemy.orm import Session

    from bubblesync.domain.entities import EntityKind

log = logging.getLogger(__name__)


class SqlAlchemyEntityRepository:
    """Rows of one entity kind, read and written through SQLAlchemy Core."""

    def __init__(self, session: Session, kind: EntityKind) -> None:
        self.session = session
        self.kind = kind
        self._table = TABLE_BY_KIND[kind]
        self._value_columns = tuple(
            column.name for column in self._table.columns if column.name not in BOOKKEEPING_COLUMNS
        )

    def get(self, external_id: str) -> StoredRecord | None:
        stmt = select(self._table).where(self._table.c.external_id == external_id)
        row = self.session.execute(stmt).one_or_none()
        return self._to_record(row) if row is not None else None

    def exists(self, external_id: str) -> bool:
        stmt = select(self._table.c.id).where(self._table.c.external_id == external_id).limit(1)
        return self.session.execute(stmt).scalar_one_or_none() is not None

    def insert(
        self,
        external_id: str,
        values: Mapping[str, object],
        *,
        synced_at: datetime,
    ) -> StoredRecord:
        stmt = insert(self._table).values(
            external_id=external_id,
            created_at=synced_at,
            last_synced_at=synced_at,
            **self._writable(values),
        )
        try:
            self.session.execute(stmt)
        except IntegrityError as exc:
            raise RecordConflictError(
                f"{self.kind} {external_id} violates a storage constraint",
                external_id=external_id,
            ) from exc
        record = self.get(external_id)
        if record is None:
            raise RecordConflictError(
                f"{self.kind} {external_id} vanished after insert",
                external_id=external_id,
            )
        return record

    def update(
        self,
        external_id: str,
        values: Mapping[str, object],
        *,
        expected_synced_at: datetime | None,
        synced_at: datetime,
    ) -> bool:
        """Write ``values`` only if the row was not synced since ``expected_synced_at``."""

        column = self._table.c.last_synced_at
        guard = column.is_(None) if expected_synced_at is None else column == expected_synced_at
        stmt = (
            update(self._table)
            .where(self._table.c.external_id == external_id, guard)
            .values(last_synced_at=synced_at, **self._writable(values))
        )
        return self._execute_write(stmt, external_id)

    def set_if_empty(self, external_id: str, column: str, value: object) -> bool:
        target = self._column(column)
        if isinstance(target.type, StringListType):
            if isinstance(value, str):
                value = [value]
            empty = target.is_(None)
        else:
            empty = or_(target.is_(None), target == "")
        stmt = (
            update(self._table)
            .where(self._table.c.external_id == external_id, empty)
            .values({column: value})
        )
        return self._execute_write(stmt, external_id)

    def replace_value(
        self,
        external_id: str,
        column: str,
        *,
        expected: object,
        value: object,
    ) -> bool:
        """Compare-and-set a single column."""

        target = self._column(column)
        matches = target.is_(None) if expected is None else target == expected
        stmt = (
            update(self._table)
            .where(self._table.c.external_id == external_id, matches)
            .values({column: value})
        )
        return self._execute_write(stmt, external_id)

    def list_records(
        self,
        *,
        include_deleted: bool = False,
        created_after: datetime | None = None,
    ) -> list[StoredRecord]:
        stmt = select(self._table).order_by(self._table.c.id)
        if not include_deleted:
            stmt = stmt.where(self._table.c.is_deleted == false())
        if created_after is not None:
            stmt = stmt.where(self._table.c.created_date >= created_after)
        return [self._to_record(row) for row in self.session.execute(stmt)]

    def find_by_column(self, column: str, value: object) -> list[StoredRecord]:
        """Return rows whose ``column`` equals ``value`` (or contains it, for arrays)."""

        target = self._column(column)
        if not isinstance(target.type, StringListType):
            stmt = select(self._table).where(target == value).order_by(self._table.c.id)
            return [self._to_record(row) for row in self.session.execute(stmt)]
        stmt = select(self._table).where(target.is_not(None)).order_by(self._table.c.id)
        records = [self._to_record(row) for row in self.session.execute(stmt)]
        return [
            record
            for record in records
            if value in cast(list[object], record.get(column) or [])
        ]

    def get_many(self, external_ids: Sequence[str]) -> list[StoredRecord]:
        if not external_ids:
            return []
        stmt = (
            select(self._table)
            .where(self._table.c.external_id.in_(list(external_ids)))
            .order_by(self._table.c.id)
        )
        return [self._to_record(row) for row in self.session.execute(stmt)]

    def mark_deleted(self, external_ids: Sequence[str]) -> int:
        """Soft-delete rows; returns how many were not already deleted."""

        if not external_ids:
            return 0
        stmt = (
            update(self._table)
            .where(
                self._table.c.external_id.in_(list(external_ids)),
                self._table.c.is_deleted == false(),
            )
            .values(is_deleted=True)
        )
        result = self.session.execute(stmt)
        return int(getattr(result, "rowcount", 0))

    def delete(self, external_ids: Sequence[str]) -> int:
        if not external_ids:
            return 0
        stmt = delete(self._table).where(self._table.c.external_id.in_(list(external_ids)))
        result = self.session.execute(stmt)
        return int(getattr(result, "rowcount", 0))

    def _column(self, name: str) -> ColumnElement[Any]:
        if name not in self._value_columns:
            raise KeyError(f"{self.kind} has no column {name!r}")
        return self._table.c[name]

    def _writable(self, values: Mapping[str, object]) -> dict[str, object]:
        writable: dict[str, object] = {}
        for column, value in values.items():
            if column in BOOKKEEPING_COLUMNS:
                continue
            if column not in self._value_columns:
                log.warning("Ignoring unknown %s column %s", self.kind, column)
                continue
            writable[column] = value
        return writable

    def _execute_write(self, stmt: Any, external_id: str) -> bool:
        try:
            result = self.session.execute(stmt)
        except IntegrityError as exc:
            raise RecordConflictError(
                f"{self.kind} {external_id} violates a storage constraint",
                external_id=external_id,
            ) from exc
        return int(getattr(result, "rowcount", 0)) == 1

    def _to_record(self, row: Row[Any]) -> StoredRecord:
        mapping = row._mapping  # noqa: SLF001
        return StoredRecord(
            kind=self.kind,
            local_id=mapping["id"],
            external_id=mapping["external_id"],
            values={column: mapping[column] for column in self._value_columns},
            created_at=mapping["created_at"],
            last_synced_at=mapping["last_synced_at"],
            is_deleted=bool(mapping["is_deleted"]),
        )


class SqlAlchemySyncActivityRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entry: SyncActivityEntry) -> None:
        self.session.add(entry)

    def latest(self, limit: int = 50) -> list[SyncActivityEntry]:
        stmt = (
            select(SyncActivityEntry)
            .order_by(
                sync_activity_log_table.c.occurred_at.desc(),
                sync_activity_log_table.c.id.desc(),
            )
            .limit(limit)
        )
        return list(self.session.execute(stmt).scalars())


class SqlAlchemySyncCursorRepository:
    """Per-kind ``modified_through`` cursors, keyed by the kind's value."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, kind: EntityKind) -> datetime | None:
        stmt = select(sync_cursor_table.c.modified_through).where(
            sync_cursor_table.c.kind == kind.value
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def store(self, kind: EntityKind, modified_through: datetime, *, updated_at: datetime) -> None:
        values = {"modified_through": modified_through, "updated_at": updated_at}
        result = self.session.execute(
            update(sync_cursor_table).where(sync_cursor_table.c.kind == kind.value).values(**values)
        )
        if int(getattr(result, "rowcount", 0)) == 0:
            self.session.execute(insert(sync_cursor_table).values(kind=kind.value, **values))
        log.debug("Cursor for %s moved to %s", kind, modified_through)
