"""Application orchestration entry points."""

from __future__ import annotations

import threading
from collections.abc import Callable
from logging import getLogger
from typing import TYPE_CHECKING

from bubblesync.adapters.bubble import BubbleRecordSource
from bubblesync.adapters.files import HttpFileDownloader, LocalFileStore
from bubblesync.adapters.sqlalchemy.unit_of_work import SqlAlchemySyncUnitOfWork, ensure_started
from bubblesync.config.files import get_file_migration_config
from bubblesync.config.sync import get_sync_config
from bubblesync.domain.checkpoints import checkpoints_for
from bubblesync.domain.entities import SYNC_ORDER, EntityKind
from bubblesync.domain.errors import RecordNotFoundError
from bubblesync.domain.file_migration import migrate_files, migration_stats
from bubblesync.domain.linking import LinkPolicy, relink
from bubblesync.domain.maintenance import prune_demo_invoices as prune_demo_invoice_rows
from bubblesync.domain.merge import MergePolicy
from bubblesync.domain.ports.unit_of_work import SyncUnitOfWork
from bubblesync.domain.progress import ProgressStore
from bubblesync.domain.sync import SyncRequest, run_sync

if TYPE_CHECKING:
    from collections import Counter
    from collections.abc import Collection, Iterable
    from datetime import datetime
    from pathlib import Path

    from bubblesync.domain.checkpoints import CheckpointReport
    from bubblesync.domain.entities import SyncActivityEntry
    from bubblesync.domain.file_migration import FileMigrationReport
    from bubblesync.domain.linking import RelinkResult
    from bubblesync.domain.maintenance import PruneReport
    from bubblesync.domain.ports.fetching import RecordSource
    from bubblesync.domain.ports.files import FileDownloader
    from bubblesync.domain.progress import ProgressEvent, SyncProgress, SyncSession

UnitOfWorkFactory = Callable[[], SyncUnitOfWork]

log = getLogger(__name__)


def _build_progress_store() -> ProgressStore:
    config = get_sync_config()
    return ProgressStore(
        max_sessions=config.max_sessions,
        ttl=config.progress_ttl,
        event_capacity=config.event_capacity,
    )


PROGRESS = _build_progress_store()


def _unit_of_work_factory(factory: UnitOfWorkFactory | None) -> UnitOfWorkFactory:
    ensure_started()
    return factory or SqlAlchemySyncUnitOfWork


# Sync -------------------------------------------------------------------------


def trigger_sync(
    entity_kind: EntityKind | None = None,
    *,
    since: datetime | None = None,
    force: bool = False,
    skip_kinds: Iterable[EntityKind] = (),
    policy: MergePolicy = MergePolicy.MERGE_ONLY_EMPTY,
    force_fields: Iterable[str] = (),
    follow_relations: bool = True,
    relink: LinkPolicy | None = None,
    background: bool = True,
    source: RecordSource | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
) -> str:
    """Start a sync for one kind (or every kind) and return its session id.

    With ``background=False`` the sync runs on the calling thread and a fatal error
    propagates; in the background the error is logged and kept on the session.
    """

    effective_uow = _unit_of_work_factory(unit_of_work_factory)
    effective_source = source or BubbleRecordSource()
    config = get_sync_config()
    request = SyncRequest(
        kinds=(entity_kind,) if entity_kind is not None else SYNC_ORDER,
        since=since,
        force=force,
        skip_kinds=frozenset(skip_kinds),
        policy=policy,
        force_fields=frozenset(force_fields),
        follow_relations=follow_relations,
        workers=config.workers,
        error_limit=config.error_detail_limit,
        relink=relink,
    )
    session = PROGRESS.create(error_limit=request.error_limit)

    if not background:
        run_sync(
            request,
            source=effective_source,
            unit_of_work_factory=effective_uow,
            session=session,
        )
        return session.session_id

    thread = threading.Thread(
        target=_run_in_background,
        args=(request, effective_source, effective_uow, session),
        name=f"sync-{session.session_id[:8]}",
        daemon=True,
    )
    thread.start()
    return session.session_id


def _run_in_background(
    request: SyncRequest,
    source: RecordSource,
    unit_of_work_factory: UnitOfWorkFactory,
    session: SyncSession,
) -> None:
    try:
        run_sync(request, source=source, unit_of_work_factory=unit_of_work_factory, session=session)
    except Exception:
        log.exception("Background sync %s failed", session.session_id)


def get_sync_progress(session_id: str) -> SyncProgress | None:
    return PROGRESS.get(session_id)


def sync_events(session_id: str, cursor: int = 0) -> list[ProgressEvent]:
    """Return progress events newer than ``cursor`` for polling observers."""

    return PROGRESS.events_since(session_id, cursor)


def cancel_sync(session_id: str) -> bool:
    cancelled = PROGRESS.cancel(session_id)
    if cancelled:
        log.info("Cancellation requested for sync %s", session_id)
    return cancelled


# Repair and maintenance -------------------------------------------------------


def trigger_relink(
    entity_kind: EntityKind | None = None,
    policy: LinkPolicy = LinkPolicy.STRICT,
    *,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
) -> RelinkResult:
    """Run the relational repair pass for relations whose source is ``entity_kind``."""

    return relink(_unit_of_work_factory(unit_of_work_factory), kind=entity_kind, policy=policy)


def prune_demo_invoices(
    dry_run: bool = True,
    *,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
) -> PruneReport:
    return prune_demo_invoice_rows(_unit_of_work_factory(unit_of_work_factory), dry_run=dry_run)


def recent_activity(
    limit: int = 50,
    *,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
) -> list[SyncActivityEntry]:
    with _unit_of_work_factory(unit_of_work_factory)() as uow:
        return uow.repositories.activity.latest(limit)


# Files --------------------------------------------------------------------------


def trigger_file_migration(
    dry_run: bool = False,
    *,
    kinds: Collection[EntityKind] | None = None,
    created_after: datetime | None = None,
    downloader: FileDownloader | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
) -> FileMigrationReport:
    """Download externally hosted attachments and rewrite their references."""

    config = get_file_migration_config()
    report = migrate_files(
        _unit_of_work_factory(unit_of_work_factory),
        downloader or HttpFileDownloader(config),
        file_base_url=config.file_base_url,
        dry_run=dry_run,
        kinds=kinds,
        created_after=created_after,
    )
    log.info(
        "Finished file migration: scanned=%s, migrated=%s, failed=%s, bytes=%s",
        report.scanned,
        report.migrated,
        report.failed,
        report.total_bytes,
    )
    return report


def file_migration_stats(
    *,
    kinds: Collection[EntityKind] | None = None,
    created_after: datetime | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
) -> Counter[str]:
    return migration_stats(
        _unit_of_work_factory(unit_of_work_factory),
        file_base_url=get_file_migration_config().file_base_url,
        kinds=kinds,
        created_after=created_after,
    )


def locate_stored_file(url_path: str, *, store: LocalFileStore | None = None) -> Path | None:
    return (store or LocalFileStore(get_file_migration_config().storage_root)).locate(url_path)


# Checkpoints ------------------------------------------------------------------


def get_checkpoints(
    entity_id: str,
    *,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
) -> CheckpointReport:
    """Compute the completeness checkpoints of one SEDA registration.

    Raises ``RecordNotFoundError`` when the registration is not stored locally.
    """

    try:
        return checkpoints_for(_unit_of_work_factory(unit_of_work_factory), entity_id)
    except RecordNotFoundError:
        log.warning("Checkpoints requested for unknown registration %s", entity_id)
        raise
