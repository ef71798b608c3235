from __future__ import annotations

import argparse
import logging
import sys
from datetime import UTC, datetime
from signal import SIGINT, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from bubblesync.app import (
    file_migration_stats,
    get_checkpoints,
    get_sync_progress,
    prune_demo_invoices,
    recent_activity,
    trigger_file_migration,
    trigger_relink,
    trigger_sync,
)
from bubblesync.common.logging import parse_log_level
from bubblesync.config import configure_logging
from bubblesync.domain.entities import EntityKind, parse_entity_kind
from bubblesync.domain.linking import LinkPolicy
from bubblesync.domain.merge import MergePolicy

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

log = logging.getLogger(__name__)


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Mirror Bubble records into the local database")
    parser.add_argument(
        "--log-level",
        type=str,
        default="info",
        help="Logging level name (default: %(default)s)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync = subparsers.add_parser("sync", help="Sync remote records")
    sync.add_argument(
        "--kind",
        type=str,
        help="Entity kind to sync (defaults to every kind, in dependency order)",
    )
    sync.add_argument(
        "--since",
        type=str,
        help="ISO-8601 timestamp (UTC); only records modified after it are fetched",
    )
    sync.add_argument(
        "--force",
        action="store_true",
        help="Ignore the incremental cursor and fetch every record",
    )
    sync.add_argument(
        "--skip",
        type=str,
        action="append",
        default=[],
        metavar="KIND",
        help="Entity kind to leave out (repeatable)",
    )
    sync.add_argument(
        "--policy",
        type=str,
        choices=[policy.value for policy in MergePolicy],
        default=MergePolicy.MERGE_ONLY_EMPTY.value,
        help="Merge policy for existing rows (default: %(default)s)",
    )
    sync.add_argument(
        "--force-field",
        type=str,
        action="append",
        default=[],
        metavar="COLUMN",
        help="Column whose incoming value always wins (repeatable)",
    )
    sync.add_argument(
        "--no-follow",
        action="store_true",
        help="Do not pull missing related records",
    )
    sync.add_argument(
        "--relink",
        type=str,
        choices=[policy.value for policy in LinkPolicy],
        default=None,
        help="Run one link pass with this policy after every kind is upserted",
    )

    relink = subparsers.add_parser("relink", help="Repair dangling cross-entity references")
    relink.add_argument(
        "--kind",
        type=str,
        help="Source entity kind to repair (defaults to every repairable relation)",
    )
    relink.add_argument(
        "--policy",
        type=str,
        choices=[policy.value for policy in LinkPolicy],
        default=LinkPolicy.STRICT.value,
        help="Matching policy (default: %(default)s)",
    )

    files = subparsers.add_parser("migrate-files", help="Download externally hosted attachments")
    files.add_argument(
        "--dry-run",
        action="store_true",
        help="Only report what would be downloaded",
    )
    files.add_argument(
        "--kind",
        type=str,
        action="append",
        default=[],
        help="Entity kind to scan (repeatable, defaults to every kind with file fields)",
    )
    files.add_argument(
        "--created-after",
        type=str,
        help="ISO-8601 timestamp (UTC); only records created after it are scanned",
    )
    files.add_argument(
        "--stats",
        action="store_true",
        help="Print pending attachments per field instead of migrating",
    )

    checkpoints = subparsers.add_parser(
        "checkpoints",
        help="Show the completeness checkpoints of a SEDA registration",
    )
    checkpoints.add_argument("registration_id", type=str, help="External id of the registration")

    prune = subparsers.add_parser(
        "prune-demo",
        help="Delete invoices without customer and payments",
    )
    prune.add_argument(
        "--apply",
        action="store_true",
        help="Delete the candidates (the default only lists them)",
    )

    activity = subparsers.add_parser("activity", help="Show the latest sync activity")
    activity.add_argument(
        "--limit",
        type=int,
        default=20,
        help="Number of entries to show (default: %(default)s)",
    )

    return parser.parse_args(list(argv))


def _parse_iso_datetime(value: str) -> datetime:
    try:
        normalized = value.strip()
        if normalized.endswith("Z"):
            normalized = normalized[:-1] + "+00:00"
        dt = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise ValueError(f"Invalid ISO timestamp: {value}") from exc
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def _optional_kind(value: str | None) -> EntityKind | None:
    return parse_entity_kind(value) if value else None


def _validate(args: argparse.Namespace) -> None:
    """Parse typed options in place so bad input exits before any work starts."""

    args.log_level = parse_log_level(args.log_level)
    if args.command == "sync":
        args.kind = _optional_kind(args.kind)
        args.skip = [parse_entity_kind(kind) for kind in args.skip]
        args.since = _parse_iso_datetime(args.since) if args.since else None
        if args.force and args.since is not None:
            raise ValueError("--force and --since are mutually exclusive")
    elif args.command == "relink":
        args.kind = _optional_kind(args.kind)
    elif args.command == "migrate-files":
        args.kind = [parse_entity_kind(kind) for kind in args.kind]
        args.created_after = (
            _parse_iso_datetime(args.created_after) if args.created_after else None
        )
    elif args.command == "activity" and args.limit <= 0:
        raise ValueError("--limit must be positive")


def _run(args: argparse.Namespace) -> None:  # noqa: C901
    if args.command == "sync":
        session_id = trigger_sync(
            args.kind,
            since=args.since,
            force=args.force,
            skip_kinds=args.skip,
            policy=MergePolicy(args.policy),
            force_fields=args.force_field,
            follow_relations=not args.no_follow,
            relink=LinkPolicy(args.relink) if args.relink else None,
            background=False,
        )
        progress = get_sync_progress(session_id)
        if progress is not None:
            log.info(
                "Sync %s %s: created=%s, updated=%s, unchanged=%s, failed=%s, related=%s",
                session_id,
                progress.status,
                progress.created_count,
                progress.updated_count,
                progress.unchanged_count,
                progress.failed_count,
                progress.related_count,
            )
            for error in progress.errors:
                log.warning("%s %s: %s", error.kind, error.external_id, error.message)
    elif args.command == "relink":
        result = trigger_relink(args.kind, LinkPolicy(args.policy))
        for conflict in result.conflicts:
            log.warning("%s (%s): %s", conflict.kind, conflict.key, conflict.reason)
    elif args.command == "migrate-files":
        kinds = args.kind or None
        if args.stats:
            for field_name, count in sorted(
                file_migration_stats(kinds=kinds, created_after=args.created_after).items()
            ):
                log.info("%s: %s pending", field_name, count)
            return
        report = trigger_file_migration(
            args.dry_run,
            kinds=kinds,
            created_after=args.created_after,
        )
        for failure in report.failures:
            log.warning(
                "%s %s.%s: %s (%s)",
                failure.kind,
                failure.external_id,
                failure.column,
                failure.error,
                failure.url,
            )
    elif args.command == "checkpoints":
        report = get_checkpoints(args.registration_id)
        for name, passed in report.checkpoints.items():
            log.info("[%s] %s", "x" if passed else " ", name)
        log.info("%s/%s complete (%s%%)", report.completed_count, report.total, report.percentage)
    elif args.command == "prune-demo":
        pruned = prune_demo_invoices(dry_run=not args.apply)
        log.info(
            "Demo invoices: candidates=%s, deleted=%s, linked registrations=%s%s",
            len(pruned.candidates),
            pruned.deleted,
            len(pruned.registrations),
            "" if args.apply else " (dry run, pass --apply to delete)",
        )
    elif args.command == "activity":
        for entry in recent_activity(args.limit):
            log.info("%s %s %s", entry.occurred_at.isoformat(), entry.level, entry.message)
    else:
        raise ValueError(f"Unsupported command: {args.command}")


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    parsed_args: argparse.Namespace
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    try:
        parsed_args = _parse_args(args_list)
        _validate(parsed_args)
    except ValueError:
        configure_logging()
        log.exception("CLI validation error")
        sys.exit(2)
    configure_logging(level=parsed_args.log_level)

    try:
        _run(parsed_args)
    except Exception:
        log.exception("Fatal error during %s", parsed_args.command)
        sys.exit(1)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    log.info("Closed by user (Ctrl+C)")
    sys.exit(0)


def run() -> None:
    """Console script entry point."""
    load_dotenv()
    signal(SIGINT, sigint_handler)
    main()


if __name__ == "__main__":
    run()
