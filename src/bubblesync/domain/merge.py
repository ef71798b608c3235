"""Per-field merge decisions between local rows and incoming mapped records."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Final

from .mapping import is_empty

if TYPE_CHECKING:
    from collections.abc import Collection, Mapping

# Identifier and audit columns are owned by the upsert engine.
EXCLUDED_COLUMNS: Final[frozenset[str]] = frozenset(
    {"id", "external_id", "created_at", "last_synced_at", "is_deleted"}
)


class MergePolicy(StrEnum):
    """How incoming values may replace local ones during a sync run."""

    MERGE_ONLY_EMPTY = "merge_only_empty"
    FULL_OVERWRITE = "full_overwrite"


class MergeAction(StrEnum):
    FORCE = "force"
    OVERWRITE = "overwrite"
    FILL = "fill"
    SKIP = "skip"


@dataclass(slots=True, kw_only=True)
class MergeDiff:
    """Minimal set of column writes plus an audit trail of the decisions."""

    changes: dict[str, object] = field(default_factory=dict[str, object])
    filled: list[str] = field(default_factory=list[str])
    skipped: list[str] = field(default_factory=list[str])

    @property
    def is_empty(self) -> bool:
        return not self.changes


def decide(
    column: str,
    local_value: object,
    incoming_value: object,
    *,
    policy: MergePolicy,
    force_fields: Collection[str] = (),
) -> MergeAction:
    """Decide what to do with a single column; every input resolves to an action."""

    if column in force_fields:
        return MergeAction.FORCE
    if is_empty(incoming_value):
        return MergeAction.SKIP
    if policy is MergePolicy.FULL_OVERWRITE:
        return MergeAction.OVERWRITE
    if is_empty(local_value):
        return MergeAction.FILL
    return MergeAction.SKIP


def resolve_merge(
    local: Mapping[str, object] | None,
    incoming: Mapping[str, object],
    *,
    policy: MergePolicy = MergePolicy.MERGE_ONLY_EMPTY,
    force_fields: Collection[str] = (),
) -> MergeDiff:
    """Compute the writes needed to bring ``local`` in line with ``incoming``.

    ``local`` is ``None`` when the row does not exist yet, in which case every
    non-empty incoming value is a fill. Columns whose incoming value already equals
    the local value are reported as skipped so the diff stays minimal and a rerun
    against unchanged data writes nothing.
    """

    current: Mapping[str, object] = local or {}
    diff = MergeDiff()
    for column, incoming_value in incoming.items():
        if column in EXCLUDED_COLUMNS:
            continue
        local_value = current.get(column)
        action = decide(
            column,
            local_value,
            incoming_value,
            policy=policy,
            force_fields=force_fields,
        )
        if action is MergeAction.SKIP or (column in current and local_value == incoming_value):
            diff.skipped.append(column)
            continue
        diff.changes[column] = incoming_value
        diff.filled.append(column)
    return diff
