"""Maintenance operations that physically remove rows."""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from .activity import record_activity
from .entities import ActivityLevel, EntityKind
from .mapping import is_empty, related_ids

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from .entities import StoredRecord
    from .ports.unit_of_work import SyncUnitOfWork

log = getLogger(__name__)


@dataclass(slots=True, kw_only=True)
class PruneReport:
    dry_run: bool
    candidates: list[str] = field(default_factory=list[str])
    deleted: int = 0
    registrations: list[str] = field(default_factory=list[str])
    registrations_deleted: int = 0


def is_demo_invoice(record: StoredRecord) -> bool:
    """Demo invoices were created without a customer and never received a payment."""

    return is_empty(record.get("linked_customer")) and is_empty(record.get("linked_payment"))


def linked_registrations(
    invoices: Sequence[StoredRecord],
    registrations: Sequence[StoredRecord],
) -> list[str]:
    """Return registrations tied to ``invoices`` from either side of the link."""

    invoice_ids = {invoice.external_id for invoice in invoices}
    linked = {
        registration_id
        for invoice in invoices
        for registration_id in related_ids(invoice.get("linked_seda_registration"))
    }
    linked.update(
        registration.external_id
        for registration in registrations
        if invoice_ids.intersection(related_ids(registration.get("linked_invoice")))
    )
    return [
        registration.external_id
        for registration in registrations
        if registration.external_id in linked
    ]


def prune_demo_invoices(
    unit_of_work_factory: Callable[[], SyncUnitOfWork],
    *,
    dry_run: bool = True,
) -> PruneReport:
    """Hard-delete demo invoices; with ``dry_run`` only list them.

    SEDA registrations linked to a pruned invoice are soft-deleted in the same
    transaction, so they drop out of linking and file migration.
    """

    report = PruneReport(dry_run=dry_run)
    with unit_of_work_factory() as uow:
        invoices = uow.repositories.for_kind(EntityKind.INVOICE)
        registrations = uow.repositories.for_kind(EntityKind.SEDA_REGISTRATION)
        demo = [
            record
            for record in invoices.list_records(include_deleted=True)
            if is_demo_invoice(record)
        ]
        report.candidates = [record.external_id for record in demo]
        report.registrations = linked_registrations(demo, registrations.list_records())
        if dry_run or not report.candidates:
            log.info(
                "Demo invoice prune: %s candidates, %s linked registrations (dry_run=%s)",
                len(report.candidates),
                len(report.registrations),
                dry_run,
            )
            return report
        report.deleted = invoices.delete(report.candidates)
        report.registrations_deleted = registrations.mark_deleted(report.registrations)
        record_activity(
            uow,
            ActivityLevel.WARNING,
            f"Pruned {report.deleted} demo invoices without customer or payments; "
            f"soft-deleted {report.registrations_deleted} linked SEDA registrations",
        )
        uow.commit()
    return report
