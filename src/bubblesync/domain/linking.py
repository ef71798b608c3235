"""Relational repair pass for dangling cross-entity references.

The remote source does not enforce its relations, so after bulk syncs some rows
lack a reference they should have (an invoice without its registration, a payment
without its invoice). Each relation pair is described by a ``LinkSpec``; a pass
plans candidate links from a secondary shared key (usually the customer) and
temporal proximity, then writes only the matched external identifier.

Two policies exist and are never chained implicitly:

``strict``
    Link only when the key identifies exactly one candidate on each side.
``closest_timestamp``
    Among candidates sharing the key, prefer the smallest ``|created_at(a) -
    created_at(b)|``. A target (or source) contested at the same distance is
    reported as a conflict and left alone.

Rows already linked are never candidates, so re-running a pass writes nothing.
"""

from __future__ import annotations

import itertools
import threading
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING, Final

from .activity import record_activity
from .entities import ActivityLevel, EntityKind
from .mapping import is_empty, related_ids

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

    from .entities import StoredRecord
    from .ports.unit_of_work import SyncUnitOfWork

log = getLogger(__name__)

# One pass at a time: correctness depends on a consistent view of unclaimed targets.
_PASS_LOCK: Final = threading.Lock()


class LinkPolicy(StrEnum):
    STRICT = "strict"
    CLOSEST_TIMESTAMP = "closest_timestamp"


class LinkIssueKind(StrEnum):
    AMBIGUOUS = "ambiguous"
    CONFLICT = "conflict"


@dataclass(frozen=True, slots=True, kw_only=True)
class LinkSpec:
    """Configuration for one repairable relation ``source.source_field -> target``."""

    name: str
    source_kind: EntityKind
    source_field: str
    target_kind: EntityKind
    source_key: str
    target_key: str
    source_time: str
    target_time: str
    unique_target: bool = True


LINK_SPECS: Final[tuple[LinkSpec, ...]] = (
    LinkSpec(
        name="invoice_registration",
        source_kind=EntityKind.INVOICE,
        source_field="linked_seda_registration",
        target_kind=EntityKind.SEDA_REGISTRATION,
        source_key="linked_customer",
        target_key="linked_customer",
        source_time="created_date",
        target_time="created_date",
    ),
    LinkSpec(
        name="payment_invoice",
        source_kind=EntityKind.PAYMENT,
        source_field="linked_invoice",
        target_kind=EntityKind.INVOICE,
        source_key="linked_customer",
        target_key="linked_customer",
        source_time="payment_date",
        target_time="created_date",
        unique_target=False,
    ),
)


@dataclass(frozen=True, slots=True, kw_only=True)
class ProposedLink:
    spec: str
    policy: LinkPolicy
    source_id: str
    target_id: str
    key: str
    delta: timedelta | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class LinkIssue:
    """A group of candidates the pass refused to resolve automatically."""

    spec: str
    kind: LinkIssueKind
    key: str
    source_ids: tuple[str, ...]
    target_ids: tuple[str, ...]
    reason: str


@dataclass(slots=True, kw_only=True)
class LinkPlan:
    spec: LinkSpec
    policy: LinkPolicy
    links: list[ProposedLink] = field(default_factory=list[ProposedLink])
    issues: list[LinkIssue] = field(default_factory=list[LinkIssue])


@dataclass(slots=True, kw_only=True)
class RelinkResult:
    policy: LinkPolicy
    links: list[ProposedLink] = field(default_factory=list[ProposedLink])
    conflicts: list[LinkIssue] = field(default_factory=list[LinkIssue])
    stale: int = 0

    @property
    def linked(self) -> int:
        return len(self.links)


@dataclass(frozen=True, slots=True)
class _Candidate:
    external_id: str
    key: str
    timestamp: datetime | None


def plan_links(
    spec: LinkSpec,
    sources: Iterable[StoredRecord],
    targets: Iterable[StoredRecord],
    policy: LinkPolicy,
) -> LinkPlan:
    """Plan links for ``spec`` without touching storage."""

    source_rows = list(sources)
    claimed: set[str] = set()
    if spec.unique_target:
        for row in source_rows:
            claimed.update(related_ids(row.get(spec.source_field)))

    sources_by_key = _group(
        _candidate(row, spec.source_key, spec.source_time)
        for row in source_rows
        if not row.is_deleted and is_empty(row.get(spec.source_field))
    )
    targets_by_key = _group(
        _candidate(row, spec.target_key, spec.target_time)
        for row in targets
        if not row.is_deleted and row.external_id not in claimed
    )

    plan = LinkPlan(spec=spec, policy=policy)
    for key in sorted(sources_by_key.keys() & targets_by_key.keys()):
        group_sources = sources_by_key[key]
        group_targets = targets_by_key[key]
        if policy is LinkPolicy.STRICT:
            _plan_strict(plan, key, group_sources, group_targets)
        elif spec.unique_target:
            _plan_closest_unique(plan, key, group_sources, group_targets)
        else:
            _plan_closest_shared(plan, key, group_sources, group_targets)
    return plan


def relink(
    unit_of_work_factory: Callable[[], SyncUnitOfWork],
    *,
    kind: EntityKind | None = None,
    policy: LinkPolicy = LinkPolicy.STRICT,
    specs: Sequence[LinkSpec] = LINK_SPECS,
) -> RelinkResult:
    """Run one repair pass for every spec whose source kind is ``kind``.

    The plan is applied with conditional writes (only while the relation field is
    still empty); links that lost that race are counted as ``stale``.
    """

    selected = [spec for spec in specs if kind is None or spec.source_kind is kind]
    if not selected:
        raise ValueError(f"No repairable relations configured for {kind}")

    result = RelinkResult(policy=policy)
    with _PASS_LOCK, unit_of_work_factory() as uow:
        for spec in selected:
            sources = uow.repositories.for_kind(spec.source_kind).list_records(
                include_deleted=True
            )
            targets = uow.repositories.for_kind(spec.target_kind).list_records()
            plan = plan_links(spec, sources, targets, policy)
            repository = uow.repositories.for_kind(spec.source_kind)
            for link in plan.links:
                if not repository.set_if_empty(link.source_id, spec.source_field, link.target_id):
                    result.stale += 1
                    continue
                result.links.append(link)
                record_activity(
                    uow,
                    ActivityLevel.INFO,
                    f"[relink:{spec.name}:{policy}] {spec.source_kind} {link.source_id} "
                    f"{spec.source_field} -> {link.target_id} (key {link.key})",
                )
            for issue in plan.issues:
                record_activity(
                    uow,
                    ActivityLevel.WARNING,
                    f"[relink:{spec.name}:{policy}] {issue.kind} for key {issue.key}: "
                    f"{issue.reason}",
                )
            result.conflicts.extend(plan.issues)
        uow.commit()

    log.info(
        "Relink (%s) finished: linked=%s, conflicts=%s, stale=%s",
        policy,
        result.linked,
        len(result.conflicts),
        result.stale,
    )
    return result


# Planning helpers -------------------------------------------------------------


def _candidate(row: StoredRecord, key_column: str, time_column: str) -> _Candidate | None:
    keys = related_ids(row.get(key_column))
    if len(keys) != 1:
        return None
    timestamp = row.get(time_column)
    return _Candidate(
        external_id=row.external_id,
        key=keys[0],
        timestamp=timestamp if isinstance(timestamp, datetime) else None,
    )


def _group(candidates: Iterable[_Candidate | None]) -> dict[str, list[_Candidate]]:
    grouped: defaultdict[str, list[_Candidate]] = defaultdict(list)
    for candidate in candidates:
        if candidate is not None:
            grouped[candidate.key].append(candidate)
    return {key: sorted(items, key=lambda item: item.external_id) for key, items in grouped.items()}


def _ids(candidates: Iterable[_Candidate]) -> tuple[str, ...]:
    return tuple(sorted({candidate.external_id for candidate in candidates}))


def _plan_strict(
    plan: LinkPlan,
    key: str,
    sources: list[_Candidate],
    targets: list[_Candidate],
) -> None:
    if len(targets) == 1 and (len(sources) == 1 or not plan.spec.unique_target):
        for source in sources:
            plan.links.append(
                ProposedLink(
                    spec=plan.spec.name,
                    policy=plan.policy,
                    source_id=source.external_id,
                    target_id=targets[0].external_id,
                    key=key,
                )
            )
        return
    plan.issues.append(
        LinkIssue(
            spec=plan.spec.name,
            kind=LinkIssueKind.AMBIGUOUS,
            key=key,
            source_ids=_ids(sources),
            target_ids=_ids(targets),
            reason=f"{len(sources)} unresolved sources vs {len(targets)} candidate targets",
        )
    )


def _delta(source: _Candidate, target: _Candidate) -> timedelta | None:
    if source.timestamp is None or target.timestamp is None:
        return None
    return abs(source.timestamp - target.timestamp)


def _plan_closest_unique(
    plan: LinkPlan,
    key: str,
    sources: list[_Candidate],
    targets: list[_Candidate],
) -> None:
    pairs: list[tuple[timedelta, _Candidate, _Candidate]] = []
    for source, target in itertools.product(sources, targets):
        delta = _delta(source, target)
        if delta is not None:
            pairs.append((delta, source, target))
    pairs.sort(key=lambda pair: (pair[0], pair[1].external_id, pair[2].external_id))

    taken: set[str] = set()
    for delta, level in itertools.groupby(pairs, key=lambda pair: pair[0]):
        free = [
            (source, target)
            for _, source, target in level
            if source.external_id not in taken and target.external_id not in taken
        ]
        source_counts = Counter(source.external_id for source, _ in free)
        target_counts = Counter(target.external_id for _, target in free)
        contested = [
            (source, target)
            for source, target in free
            if source_counts[source.external_id] > 1 or target_counts[target.external_id] > 1
        ]
        for source, target in free:
            if (source, target) in contested:
                continue
            taken.update((source.external_id, target.external_id))
            plan.links.append(
                ProposedLink(
                    spec=plan.spec.name,
                    policy=plan.policy,
                    source_id=source.external_id,
                    target_id=target.external_id,
                    key=key,
                    delta=delta,
                )
            )
        if contested:
            contested_sources = [source for source, _ in contested]
            contested_targets = [target for _, target in contested]
            taken.update(_ids(contested_sources))
            taken.update(_ids(contested_targets))
            plan.issues.append(
                LinkIssue(
                    spec=plan.spec.name,
                    kind=LinkIssueKind.CONFLICT,
                    key=key,
                    source_ids=_ids(contested_sources),
                    target_ids=_ids(contested_targets),
                    reason=f"candidates tied at {delta}; claimed by more than one source",
                )
            )


def _plan_closest_shared(
    plan: LinkPlan,
    key: str,
    sources: list[_Candidate],
    targets: list[_Candidate],
) -> None:
    for source in sources:
        scored = [
            (delta, target)
            for target in targets
            if (delta := _delta(source, target)) is not None
        ]
        if not scored:
            continue
        best = min(delta for delta, _ in scored)
        nearest = [target for delta, target in scored if delta == best]
        if len(nearest) > 1:
            plan.issues.append(
                LinkIssue(
                    spec=plan.spec.name,
                    kind=LinkIssueKind.CONFLICT,
                    key=key,
                    source_ids=(source.external_id,),
                    target_ids=_ids(nearest),
                    reason=f"{len(nearest)} targets equally close ({best})",
                )
            )
            continue
        plan.links.append(
            ProposedLink(
                spec=plan.spec.name,
                policy=plan.policy,
                source_id=source.external_id,
                target_id=nearest[0].external_id,
                key=key,
                delta=best,
            )
        )
