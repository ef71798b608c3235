"""Migration of remotely hosted attachments into local storage."""

from __future__ import annotations

import time
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING, cast

from .activity import append_activity
from .entities import ActivityLevel
from .files import (
    FILE_FIELDS,
    FileFieldSpec,
    build_target_filename,
    is_external_url,
    normalize_source_url,
    serving_url,
)
from .mapping import is_empty
from .ports.files import DownloadJob

if TYPE_CHECKING:
    from collections.abc import Callable, Collection, Sequence

    from .entities import EntityKind, StoredRecord
    from .ports.files import DownloadOutcome, FileDownloader
    from .ports.unit_of_work import SyncUnitOfWork

log = getLogger(__name__)

DEFAULT_FAILURE_DETAIL_LIMIT = 20


@dataclass(frozen=True, slots=True, kw_only=True)
class FileFailure:
    kind: EntityKind
    external_id: str
    column: str
    url: str
    error: str


@dataclass(slots=True, kw_only=True)
class FileMigrationReport:
    dry_run: bool
    scanned: int = 0
    pending: int = 0
    migrated: int = 0
    failed: int = 0
    skipped: int = 0
    stale: int = 0
    total_bytes: int = 0
    duration_seconds: float = 0.0
    failures: list[FileFailure] = field(default_factory=list[FileFailure])
    by_field: Counter[str] = field(default_factory=Counter[str])


def plan_downloads(
    records: Sequence[StoredRecord],
    spec: FileFieldSpec,
    *,
    file_base_url: str,
    timestamp_ms: int,
    report: FileMigrationReport,
    claimed: dict[tuple[str, str], set[str]] | None = None,
) -> list[DownloadJob]:
    """Build download jobs for the external URLs held in ``spec.column``.

    ``claimed`` maps ``(external_id, subfolder)`` to the filenames already planned;
    fields sharing a subfolder must pass the same mapping so their names never collide.
    """

    if claimed is None:
        claimed = {}

    jobs: list[DownloadJob] = []
    for record in records:
        value = record.get(spec.column)
        elements: list[tuple[int | None, object]]
        if spec.is_array and isinstance(value, list):
            elements = list(enumerate(cast(list[object], value)))
        else:
            elements = [(None, value)]

        used = claimed.setdefault((record.external_id, spec.subfolder), set())
        for index, element in elements:
            if is_empty(element):
                continue
            report.scanned += 1
            if not isinstance(element, str) or not is_external_url(element, file_base_url):
                report.skipped += 1
                continue
            sequence = 0
            filename = build_target_filename(record.local_id, element, timestamp_ms)
            while filename in used:
                sequence += 1
                filename = build_target_filename(
                    record.local_id, element, timestamp_ms, sequence=sequence
                )
            used.add(filename)
            report.pending += 1
            report.by_field[f"{spec.kind}.{spec.column}"] += 1
            jobs.append(
                DownloadJob(
                    kind=spec.kind,
                    external_id=record.external_id,
                    local_id=record.local_id,
                    column=spec.column,
                    index=index,
                    original_value=element,
                    source_url=normalize_source_url(element),
                    subfolder=spec.subfolder,
                    filename=filename,
                )
            )
    return jobs


def migrate_files(
    unit_of_work_factory: Callable[[], SyncUnitOfWork],
    downloader: FileDownloader,
    *,
    file_base_url: str,
    dry_run: bool = False,
    kinds: Collection[EntityKind] | None = None,
    created_after: datetime | None = None,
    fields: Sequence[FileFieldSpec] = FILE_FIELDS,
    now: datetime | None = None,
    failure_limit: int = DEFAULT_FAILURE_DETAIL_LIMIT,
) -> FileMigrationReport:
    """Download external attachments and point their fields at the local copies.

    A failed download leaves its field untouched and is only counted; the remaining
    files are still processed. Array fields are rewritten element by element so
    positions are preserved.
    """

    started = time.monotonic()
    run_at = now or datetime.now(UTC)
    timestamp_ms = int(run_at.timestamp() * 1000)
    report = FileMigrationReport(dry_run=dry_run)

    jobs: list[DownloadJob] = []
    claimed: dict[tuple[str, str], set[str]] = {}
    with unit_of_work_factory() as uow:
        for spec in fields:
            if kinds is not None and spec.kind not in kinds:
                continue
            records = uow.repositories.for_kind(spec.kind).list_records(
                created_after=created_after
            )
            jobs.extend(
                plan_downloads(
                    records,
                    spec,
                    file_base_url=file_base_url,
                    timestamp_ms=timestamp_ms,
                    report=report,
                    claimed=claimed,
                )
            )

    log.info(
        "File scan: scanned=%s, pending=%s, already local=%s (dry_run=%s)",
        report.scanned,
        report.pending,
        report.skipped,
        dry_run,
    )
    if dry_run or not jobs:
        report.duration_seconds = time.monotonic() - started
        return report

    outcomes = downloader(jobs)
    successes: defaultdict[tuple[EntityKind, str, str], list[DownloadOutcome]] = defaultdict(list)
    for outcome in outcomes:
        if outcome.ok:
            successes[(outcome.job.kind, outcome.job.external_id, outcome.job.column)].append(
                outcome
            )
            continue
        report.failed += 1
        log.warning(
            "Download failed for %s %s.%s (%s): %s",
            outcome.job.kind,
            outcome.job.external_id,
            outcome.job.column,
            outcome.job.source_url,
            outcome.error,
        )
        if len(report.failures) < failure_limit:
            report.failures.append(
                FileFailure(
                    kind=outcome.job.kind,
                    external_id=outcome.job.external_id,
                    column=outcome.job.column,
                    url=outcome.job.source_url,
                    error=outcome.error or "unknown error",
                )
            )

    for (kind, external_id, column), record_outcomes in successes.items():
        written = _write_back(
            unit_of_work_factory,
            kind,
            external_id,
            column,
            record_outcomes,
            file_base_url=file_base_url,
        )
        report.migrated += written
        report.stale += len(record_outcomes) - written
        report.total_bytes += sum(
            outcome.size for outcome in record_outcomes[:written] if outcome.ok
        )

    report.duration_seconds = time.monotonic() - started
    append_activity(
        unit_of_work_factory,
        ActivityLevel.ERROR if report.failed else ActivityLevel.INFO,
        f"File migration finished: migrated={report.migrated}, failed={report.failed}, "
        f"stale={report.stale}, bytes={report.total_bytes}, "
        f"duration={report.duration_seconds:.1f}s",
    )
    return report


def migration_stats(
    unit_of_work_factory: Callable[[], SyncUnitOfWork],
    *,
    file_base_url: str,
    kinds: Collection[EntityKind] | None = None,
    created_after: datetime | None = None,
) -> Counter[str]:
    """Count attachments still pointing at external URLs, per ``kind.column``."""

    report = migrate_files(
        unit_of_work_factory,
        _no_downloads,
        file_base_url=file_base_url,
        dry_run=True,
        kinds=kinds,
        created_after=created_after,
    )
    return report.by_field


def _no_downloads(jobs: Sequence[DownloadJob]) -> Sequence[DownloadOutcome]:
    raise AssertionError(f"dry run attempted to download {len(jobs)} files")


def _write_back(
    unit_of_work_factory: Callable[[], SyncUnitOfWork],
    kind: EntityKind,
    external_id: str,
    column: str,
    outcomes: list[DownloadOutcome],
    *,
    file_base_url: str,
) -> int:
    """Rewrite one record's field; returns how many of ``outcomes`` were applied.

    Applied outcomes are moved to the front of ``outcomes`` so the caller can total
    their sizes.
    """

    with unit_of_work_factory() as uow:
        repository = uow.repositories.for_kind(kind)
        record = repository.get(external_id)
        if record is None:
            return 0
        current = record.get(column)
        applied: list[DownloadOutcome] = []
        rejected: list[DownloadOutcome] = []

        if isinstance(current, list):
            elements = list(cast(list[object], current))
            for outcome in outcomes:
                index = outcome.job.index
                if index is None or index >= len(elements):
                    rejected.append(outcome)
                    continue
                if elements[index] != outcome.job.original_value:
                    rejected.append(outcome)
                    continue
                elements[index] = serving_url(
                    file_base_url, outcome.job.subfolder, outcome.job.filename
                )
                applied.append(outcome)
            new_value: object = elements
        else:
            outcome = outcomes[0]
            rejected.extend(outcomes[1:])
            if current == outcome.job.original_value:
                new_value = serving_url(file_base_url, outcome.job.subfolder, outcome.job.filename)
                applied.append(outcome)
            else:
                new_value = current
                rejected.append(outcome)

        if applied and not repository.replace_value(
            external_id, column, expected=current, value=new_value
        ):
            rejected = applied + rejected
            applied = []
        if applied:
            uow.commit()

    for outcome in rejected:
        log.warning(
            "%s %s.%s changed during migration; left %s unreferenced",
            kind,
            external_id,
            column,
            outcome.job.filename,
        )
    outcomes[:] = applied + rejected
    return len(applied)
