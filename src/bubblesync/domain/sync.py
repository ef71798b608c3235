"""Sync orchestration: fetch, map, merge and upsert remote records per entity kind."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from logging import getLogger
from typing import TYPE_CHECKING, Final

from .activity import append_activity
from .entities import SYNC_ORDER, ActivityLevel
from .errors import MappingError, UpsertError
from .linking import relink
from .mapping import (
    EXTERNAL_ID_KEY,
    MODIFIED_DATE_KEY,
    FieldKind,
    coerce_value,
    map_record,
    related_ids,
    relation_fields,
)
from .merge import MergePolicy
from .progress import SyncStatus
from .upsert import upsert_record

if TYPE_CHECKING:
    from collections.abc import Callable

    from .entities import EntityKind
    from .linking import LinkPolicy
    from .mapping import MappedRecord
    from .ports.fetching import RawRecord, RecordSource
    from .ports.unit_of_work import SyncUnitOfWork
    from .progress import SyncProgress, SyncSession

log = getLogger(__name__)

DEFAULT_WORKERS: Final[int] = 4
DEFAULT_ERROR_LIMIT: Final[int] = 20

# Remote timestamps carry millisecond precision.
_CURSOR_STEP: Final[timedelta] = timedelta(milliseconds=1)


@dataclass(frozen=True, slots=True, kw_only=True)
class SyncRequest:
    """Parameters of one sync run.

    ``since`` overrides the per-kind incremental cursor (the watermark stored by that
    kind's last own fetch; a kind without one is fetched in full); ``force`` disables
    incremental filtering entirely. With ``relink`` set, one link pass under that policy
    runs after every kind has been upserted.
    """

    kinds: tuple[EntityKind, ...] = SYNC_ORDER
    since: datetime | None = None
    force: bool = False
    skip_kinds: frozenset[EntityKind] = field(default_factory=frozenset)
    policy: MergePolicy = MergePolicy.MERGE_ONLY_EMPTY
    force_fields: frozenset[str] = field(default_factory=frozenset)
    follow_relations: bool = True
    workers: int = DEFAULT_WORKERS
    error_limit: int = DEFAULT_ERROR_LIMIT
    relink: LinkPolicy | None = None

    def selected_kinds(self) -> list[EntityKind]:
        """Return the kinds to sync, in dependency order."""

        return [kind for kind in SYNC_ORDER if kind in self.kinds and kind not in self.skip_kinds]


def run_sync(
    request: SyncRequest,
    *,
    source: RecordSource,
    unit_of_work_factory: Callable[[], SyncUnitOfWork],
    session: SyncSession,
) -> SyncProgress:
    """Run ``request`` to completion, reporting into ``session``.

    Per-record failures are collected on the session and never stop the run. A
    ``RemoteFetchError`` stops scheduling, lets in-flight records finish, marks the
    session as failed and is re-raised.
    """

    kinds = request.selected_kinds()
    log.info(
        "Starting sync %s: kinds=%s, since=%s, force=%s, policy=%s, relink=%s",
        session.session_id,
        ",".join(kinds),
        request.since,
        request.force,
        request.policy,
        request.relink,
    )
    runner = _SyncRunner(
        request=request,
        source=source,
        unit_of_work_factory=unit_of_work_factory,
        session=session,
    )
    try:
        for kind in kinds:
            if runner.stopped:
                break
            runner.sync_kind(kind)
        if request.relink is not None and not runner.stopped:
            runner.relink_pass(request.relink)
    except Exception as exc:
        session.finish(SyncStatus.ERROR, error_message=str(exc))
        append_activity(
            unit_of_work_factory,
            ActivityLevel.ERROR,
            f"Sync {session.session_id} failed: {exc}",
        )
        raise

    status = SyncStatus.CANCELLED if session.cancel_requested else SyncStatus.COMPLETED
    session.finish(status)
    progress = session.snapshot()
    append_activity(
        unit_of_work_factory,
        ActivityLevel.WARNING if progress.error_count else ActivityLevel.INFO,
        f"Sync {session.session_id} {status}: processed={progress.current}/{progress.total}, "
        f"created={progress.created_count}, updated={progress.updated_count}, "
        f"unchanged={progress.unchanged_count}, failed={progress.failed_count}, "
        f"related={progress.related_count}, errors={progress.error_count}",
    )
    log.info("Finished sync %s (%s)", session.session_id, status)
    return progress


@dataclass(slots=True, kw_only=True)
class _SyncRunner:
    request: SyncRequest
    source: RecordSource
    unit_of_work_factory: Callable[[], SyncUnitOfWork]
    session: SyncSession
    _halt: threading.Event = field(default_factory=threading.Event, init=False)

    @property
    def stopped(self) -> bool:
        return self._halt.is_set() or self.session.cancel_requested

    def sync_kind(self, kind: EntityKind) -> None:
        since = self._effective_since(kind)
        records = self.source.fetch_batch(kind, since=since)
        log.info("Fetched %s %s records (since=%s)", len(records), kind, since)
        self.session.add_total(len(records))
        self.session.note(f"fetched {len(records)} records", kind=kind)

        watermark = _Watermark()
        fatal: BaseException | None = None
        with ThreadPoolExecutor(
            max_workers=self.request.workers,
            thread_name_prefix=f"sync-{kind}",
        ) as executor:
            futures = [executor.submit(self._process, kind, raw, watermark) for raw in records]
            for future in as_completed(futures):
                exc = future.exception()
                if exc is None or fatal is not None:
                    continue
                # Queued records see the halt flag and return without starting.
                fatal = exc
                self._halt.set()
        if fatal is not None:
            raise fatal
        if not self.stopped:
            self._advance_cursor(kind, watermark)

    def relink_pass(self, policy: LinkPolicy) -> None:
        result = relink(self.unit_of_work_factory, policy=policy)
        self.session.note(
            f"relink ({policy}): linked={result.linked}, conflicts={len(result.conflicts)}, "
            f"stale={result.stale}"
        )

    def _effective_since(self, kind: EntityKind) -> datetime | None:
        if self.request.force:
            return None
        if self.request.since is not None:
            return self.request.since
        with self.unit_of_work_factory() as uow:
            return uow.repositories.cursors.get(kind)

    def _advance_cursor(self, kind: EntityKind, watermark: _Watermark) -> None:
        # An explicit ``since`` may start past the stored cursor and leave a gap behind it.
        if self.request.since is not None:
            return
        modified_through = watermark.value()
        if modified_through is None:
            return
        with self.unit_of_work_factory() as uow:
            uow.repositories.cursors.store(kind, modified_through, updated_at=datetime.now(UTC))
            uow.commit()

    def _process(self, kind: EntityKind, raw: RawRecord, watermark: _Watermark) -> None:
        if self.stopped:
            return
        external_id = str(raw.get(EXTERNAL_ID_KEY) or "<missing>")
        try:
            record = map_record(kind, raw)
            if record.uncoerced:
                log.warning(
                    "%s %s: could not coerce %s",
                    kind,
                    record.external_id,
                    ", ".join(record.uncoerced),
                )
            result = upsert_record(
                self.unit_of_work_factory,
                record,
                policy=self.request.policy,
                force_fields=self.request.force_fields,
            )
        except (MappingError, UpsertError) as exc:
            log.warning("Skipping %s %s: %s", kind, external_id, exc)
            self.session.record_error(kind, external_id, str(exc))
            self.session.record_outcome(kind, external_id, None)
            watermark.failed(raw)
            return

        watermark.processed(record.modified_at)
        if self.request.follow_relations:
            self._pull_related(record)
        self.session.record_outcome(kind, record.external_id, result.outcome)

    def _pull_related(self, record: MappedRecord) -> None:
        """Fetch related records that are not stored locally yet."""

        for column, related_kind in relation_fields(record.kind).items():
            if related_kind in self.request.skip_kinds:
                continue
            for related_id in related_ids(record.values.get(column)):
                if self.stopped:
                    return
                if self._exists(related_kind, related_id):
                    continue
                raw = self.source.fetch_by_id(related_kind, related_id)
                if raw is None:
                    message = (
                        f"{column} references missing {related_kind} {related_id}"
                    )
                    log.warning("%s %s: %s", record.kind, record.external_id, message)
                    self.session.record_error(record.kind, record.external_id, message)
                    continue
                try:
                    related = map_record(related_kind, raw)
                    upsert_record(
                        self.unit_of_work_factory,
                        related,
                        policy=self.request.policy,
                        force_fields=self.request.force_fields,
                    )
                except (MappingError, UpsertError) as exc:
                    log.warning("Skipping related %s %s: %s", related_kind, related_id, exc)
                    self.session.record_error(related_kind, related_id, str(exc))
                    continue
                self.session.record_related()

    def _exists(self, kind: EntityKind, external_id: str) -> bool:
        with self.unit_of_work_factory() as uow:
            return uow.repositories.for_kind(kind).exists(external_id)


@dataclass(slots=True)
class _Watermark:
    """How far one kind's own batch got: its newest stored record, held below any failure."""

    newest: datetime | None = None
    oldest_failed: datetime | None = None
    unknown_failure: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def processed(self, modified_at: datetime | None) -> None:
        if modified_at is None:
            return
        with self._lock:
            if self.newest is None or modified_at > self.newest:
                self.newest = modified_at

    def failed(self, raw: RawRecord) -> None:
        try:
            modified_at = coerce_value(raw.get(MODIFIED_DATE_KEY), FieldKind.TIMESTAMP)
        except ValueError:
            modified_at = None
        with self._lock:
            if not isinstance(modified_at, datetime):
                self.unknown_failure = True
            elif self.oldest_failed is None or modified_at < self.oldest_failed:
                self.oldest_failed = modified_at

    def value(self) -> datetime | None:
        """Return the cursor to store, or ``None`` to leave the stored one alone."""

        with self._lock:
            if self.unknown_failure:
                return None
            if self.oldest_failed is None:
                return self.newest
            below_failure = self.oldest_failed - _CURSOR_STEP
            if self.newest is None or self.newest > below_failure:
                return below_failure
            return self.newest
