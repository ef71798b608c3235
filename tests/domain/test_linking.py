from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest

from bubblesync.adapters.sqlalchemy.unit_of_work import SqlAlchemySyncUnitOfWork
from bubblesync.domain.entities import EntityKind, StoredRecord
from bubblesync.domain.linking import (
    LINK_SPECS,
    LinkIssueKind,
    LinkPolicy,
    plan_links,
    relink,
)
from tests.helpers.records import raw_record, store_raw

UowFactory = Callable[[], SqlAlchemySyncUnitOfWork]

BASE = datetime(2024, 3, 1, tzinfo=UTC)
INVOICE_REGISTRATION = LINK_SPECS[0]
PAYMENT_INVOICE = LINK_SPECS[1]


def _row(kind: EntityKind, external_id: str, local_id: int, **values: object) -> StoredRecord:
    return StoredRecord(kind=kind, local_id=local_id, external_id=external_id, values=values)


def _invoice(external_id: str, day: int, *, customer: str = "C1", **values: object) -> StoredRecord:
    return _row(
        EntityKind.INVOICE,
        external_id,
        day,
        linked_customer=customer,
        created_date=BASE + timedelta(days=day),
        **values,
    )


def _registration(external_id: str, day: int, *, customer: str = "C1") -> StoredRecord:
    return _row(
        EntityKind.SEDA_REGISTRATION,
        external_id,
        day,
        linked_customer=customer,
        created_date=BASE + timedelta(days=day),
    )


def test_strict_links_one_to_one_key() -> None:
    plan = plan_links(
        INVOICE_REGISTRATION,
        [_invoice("I1", 1)],
        [_registration("R1", 2)],
        LinkPolicy.STRICT,
    )

    assert [(link.source_id, link.target_id) for link in plan.links] == [("I1", "R1")]
    assert plan.issues == []


def test_strict_reports_ambiguous_two_by_two() -> None:
    invoices = [_invoice("I1", 1), _invoice("I2", 10)]
    registrations = [_registration("R1", 2), _registration("R2", 12)]

    plan = plan_links(INVOICE_REGISTRATION, invoices, registrations, LinkPolicy.STRICT)

    assert plan.links == []
    assert len(plan.issues) == 1
    issue = plan.issues[0]
    assert issue.kind is LinkIssueKind.AMBIGUOUS
    assert issue.source_ids == ("I1", "I2")
    assert issue.target_ids == ("R1", "R2")


def test_closest_timestamp_pairs_by_minimal_delta() -> None:
    invoices = [_invoice("I1", 1), _invoice("I2", 10)]
    registrations = [_registration("R1", 2), _registration("R2", 12)]

    plan = plan_links(
        INVOICE_REGISTRATION, invoices, registrations, LinkPolicy.CLOSEST_TIMESTAMP
    )

    assert sorted((link.source_id, link.target_id) for link in plan.links) == [
        ("I1", "R1"),
        ("I2", "R2"),
    ]
    assert plan.issues == []


def test_closest_timestamp_reports_ties_as_conflicts() -> None:
    invoices = [_invoice("I1", 5), _invoice("I2", 5)]
    registrations = [_registration("R1", 6)]

    plan = plan_links(
        INVOICE_REGISTRATION, invoices, registrations, LinkPolicy.CLOSEST_TIMESTAMP
    )

    assert plan.links == []
    assert [issue.kind for issue in plan.issues] == [LinkIssueKind.CONFLICT]


def test_claimed_targets_are_not_candidates() -> None:
    invoices = [
        _invoice("I1", 1, linked_seda_registration="R1"),
        _invoice("I2", 3),
    ]
    registrations = [_registration("R1", 2), _registration("R2", 4)]

    plan = plan_links(INVOICE_REGISTRATION, invoices, registrations, LinkPolicy.STRICT)

    assert [(link.source_id, link.target_id) for link in plan.links] == [("I2", "R2")]


def test_shared_targets_allow_several_sources() -> None:
    payments = [
        _row(
            EntityKind.PAYMENT,
            external_id,
            index,
            linked_customer="C1",
            payment_date=BASE + timedelta(days=index),
        )
        for index, external_id in enumerate(("P1", "P2"), start=1)
    ]

    plan = plan_links(PAYMENT_INVOICE, payments, [_invoice("I1", 0)], LinkPolicy.STRICT)

    assert sorted(link.source_id for link in plan.links) == ["P1", "P2"]
    assert {link.target_id for link in plan.links} == {"I1"}


def test_relink_writes_links_and_is_idempotent(sqlite_unit_of_work: UowFactory) -> None:
    for external_id, day in (("I1", 1), ("I2", 10)):
        store_raw(
            sqlite_unit_of_work,
            EntityKind.INVOICE,
            raw_record(external_id, created=BASE + timedelta(days=day), Linked_Customer="C1"),
        )
    for external_id, day in (("R1", 2), ("R2", 12)):
        store_raw(
            sqlite_unit_of_work,
            EntityKind.SEDA_REGISTRATION,
            raw_record(external_id, created=BASE + timedelta(days=day), Linked_Customer="C1"),
        )

    strict = relink(sqlite_unit_of_work, kind=EntityKind.INVOICE)
    assert strict.linked == 0
    assert len(strict.conflicts) == 1

    closest = relink(
        sqlite_unit_of_work,
        kind=EntityKind.INVOICE,
        policy=LinkPolicy.CLOSEST_TIMESTAMP,
    )
    assert closest.linked == 2
    assert closest.conflicts == []

    again = relink(
        sqlite_unit_of_work,
        kind=EntityKind.INVOICE,
        policy=LinkPolicy.CLOSEST_TIMESTAMP,
    )
    assert again.linked == 0

    with sqlite_unit_of_work() as uow:
        invoices = {
            record.external_id: record.get("linked_seda_registration")
            for record in uow.repositories.invoices.list_records()
        }
        activity = uow.repositories.activity.latest(10)
    assert invoices == {"I1": "R1", "I2": "R2"}
    assert any("[relink:invoice_registration:closest_timestamp]" in e.message for e in activity)


def test_relink_rejects_kind_without_relations(sqlite_unit_of_work: UowFactory) -> None:
    with pytest.raises(ValueError, match="No repairable relations"):
        relink(sqlite_unit_of_work, kind=EntityKind.AGENT)
