"""Atomic insert-or-update of mapped records, keyed by external identifier."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING, Final

from .errors import RecordConflictError, UpsertError
from .merge import MergeDiff, MergePolicy, resolve_merge

if TYPE_CHECKING:
    from collections.abc import Collection

    from .mapping import MappedRecord
    from .ports.unit_of_work import SyncUnitOfWork

log = getLogger(__name__)

type UnitOfWorkFactory = Callable[[], SyncUnitOfWork]

MAX_ATTEMPTS: Final[int] = 3


class UpsertOutcome(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass(slots=True, kw_only=True)
class UpsertResult:
    external_id: str
    outcome: UpsertOutcome
    diff: MergeDiff


def upsert_record(
    unit_of_work_factory: UnitOfWorkFactory,
    record: MappedRecord,
    *,
    policy: MergePolicy = MergePolicy.MERGE_ONLY_EMPTY,
    force_fields: Collection[str] = (),
    now: datetime | None = None,
) -> UpsertResult:
    """Merge ``record`` into its local row inside a single transaction.

    Reads and writes for one identifier never interleave with another run's: a new
    row relies on the unique ``external_id`` index, an existing row is updated only
    while its ``last_synced_at`` still matches what was read. Losing either race
    re-reads the row and tries again.
    """

    for attempt in range(1, MAX_ATTEMPTS + 1):
        synced_at = now or datetime.now(UTC)
        try:
            with unit_of_work_factory() as uow:
                repository = uow.repositories.for_kind(record.kind)
                current = repository.get(record.external_id)
                diff = resolve_merge(
                    current.values if current is not None else None,
                    record.values,
                    policy=policy,
                    force_fields=force_fields,
                )
                if current is None:
                    repository.insert(record.external_id, diff.changes, synced_at=synced_at)
                    uow.commit()
                    return UpsertResult(
                        external_id=record.external_id,
                        outcome=UpsertOutcome.CREATED,
                        diff=diff,
                    )
                if diff.is_empty:
                    return UpsertResult(
                        external_id=record.external_id,
                        outcome=UpsertOutcome.UNCHANGED,
                        diff=diff,
                    )
                if repository.update(
                    record.external_id,
                    diff.changes,
                    expected_synced_at=current.last_synced_at,
                    synced_at=synced_at,
                ):
                    uow.commit()
                    return UpsertResult(
                        external_id=record.external_id,
                        outcome=UpsertOutcome.UPDATED,
                        diff=diff,
                    )
                uow.rollback()
        except RecordConflictError as exc:
            if not _exists(unit_of_work_factory, record):
                log.warning("Constraint violation for %s %s: %s", record.kind, exc.external_id, exc)
                raise UpsertError(str(exc), external_id=record.external_id) from exc
        log.debug(
            "Concurrent write on %s %s, retrying (attempt %s/%s)",
            record.kind,
            record.external_id,
            attempt,
            MAX_ATTEMPTS,
        )

    raise UpsertError(
        f"Gave up after {MAX_ATTEMPTS} concurrent modifications",
        external_id=record.external_id,
    )


def _exists(unit_of_work_factory: UnitOfWorkFactory, record: MappedRecord) -> bool:
    with unit_of_work_factory() as uow:
        return uow.repositories.for_kind(record.kind).exists(record.external_id)
