"""Completeness checkpoints for regulatory (SEDA) registrations.

Checkpoints are derived on every read and never stored: cumulative payments move
independently of the registration row, so a cached score would go stale.

The predicates, in order:

``name``
    the linked customer has a non-empty name
``address``
    ``installation_address`` is non-empty
``mykad``
    ``mykad_pdf`` or ``ic_copy_front`` is non-empty
``tnb_bill``
    ``tnb_bill_1``, ``tnb_bill_2`` and ``tnb_bill_3`` are all non-empty
``tnb_meter``
    ``tnb_meter`` is non-empty
``emergency_contact``
    ``e_contact_name``, ``e_contact_no`` and ``e_contact_relationship`` are all
    non-empty
``payment_5percent``
    the linked invoice has a positive ``total_amount`` and the summed payment
    amounts are at least 5% of it
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Final

from .entities import EntityKind
from .errors import RecordNotFoundError
from .mapping import is_empty, related_ids

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping, Sequence

    from .entities import StoredRecord
    from .ports.unit_of_work import SyncUnitOfWork

PAYMENT_THRESHOLD_PERCENT: Final[Decimal] = Decimal(5)

CHECKPOINT_LABELS: Final[dict[str, str]] = {
    "name": "Name",
    "address": "Address",
    "mykad": "MyKad",
    "tnb_bill": "TNB Bills (3 months)",
    "tnb_meter": "TNB Meter",
    "emergency_contact": "Emergency Contact",
    "payment_5percent": "Payment >= 5%",
}


@dataclass(slots=True, kw_only=True)
class CheckpointReport:
    checkpoints: dict[str, bool] = field(default_factory=dict[str, bool])

    @property
    def total(self) -> int:
        return len(self.checkpoints)

    @property
    def completed_count(self) -> int:
        return sum(1 for passed in self.checkpoints.values() if passed)

    @property
    def percentage(self) -> int:
        if not self.checkpoints:
            return 0
        return round(self.completed_count / self.total * 100)


@dataclass(slots=True, kw_only=True)
class CheckpointInputs:
    registration: Mapping[str, object]
    customer: Mapping[str, object] | None = None
    invoice: Mapping[str, object] | None = None
    payments: Sequence[Mapping[str, object]] = ()


def _filled(record: Mapping[str, object] | None, *columns: str) -> bool:
    if record is None:
        return False
    return all(not is_empty(record.get(column)) for column in columns)


def _to_decimal(value: object) -> Decimal:
    if value is None or isinstance(value, bool):
        return Decimal(0)
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal(0)


def payment_threshold_met(
    invoice: Mapping[str, object] | None,
    payments: Iterable[Mapping[str, object]],
) -> bool:
    """Return whether payments reach 5% of the invoice total (exact decimal maths)."""

    if invoice is None:
        return False
    total = _to_decimal(invoice.get("total_amount"))
    if total <= 0:
        return False
    paid = sum((_to_decimal(payment.get("amount")) for payment in payments), Decimal(0))
    return paid * 100 >= total * PAYMENT_THRESHOLD_PERCENT


def compute_checkpoints(
    registration: Mapping[str, object],
    *,
    customer: Mapping[str, object] | None = None,
    invoice: Mapping[str, object] | None = None,
    payments: Sequence[Mapping[str, object]] = (),
) -> CheckpointReport:
    return CheckpointReport(
        checkpoints={
            "name": _filled(customer, "name"),
            "address": _filled(registration, "installation_address"),
            "mykad": _filled(registration, "mykad_pdf")
            or _filled(registration, "ic_copy_front"),
            "tnb_bill": _filled(registration, "tnb_bill_1", "tnb_bill_2", "tnb_bill_3"),
            "tnb_meter": _filled(registration, "tnb_meter"),
            "emergency_contact": _filled(
                registration, "e_contact_name", "e_contact_no", "e_contact_relationship"
            ),
            "payment_5percent": payment_threshold_met(invoice, payments),
        }
    )


def load_checkpoint_inputs(uow: SyncUnitOfWork, registration_id: str) -> CheckpointInputs:
    """Join a registration with its customer, invoice and payments."""

    repositories = uow.repositories
    registration = repositories.registrations.get(registration_id)
    if registration is None or registration.is_deleted:
        raise RecordNotFoundError(f"Unknown {EntityKind.SEDA_REGISTRATION} {registration_id}")

    customer = _first(
        repositories.customers.get_many(related_ids(registration.get("linked_customer")))
    )
    invoice = _first(
        repositories.invoices.find_by_column("linked_seda_registration", registration_id)
    ) or _first(repositories.invoices.get_many(related_ids(registration.get("linked_invoice"))))

    payments: dict[str, StoredRecord] = {}
    if invoice is not None:
        linked = repositories.payments.get_many(related_ids(invoice.get("linked_payment")))
        back_referenced = repositories.payments.find_by_column(
            "linked_invoice", invoice.external_id
        )
        for payment in (*linked, *back_referenced):
            if not payment.is_deleted:
                payments.setdefault(payment.external_id, payment)

    return CheckpointInputs(
        registration=registration.as_mapping(),
        customer=customer.as_mapping() if customer is not None else None,
        invoice=invoice.as_mapping() if invoice is not None else None,
        payments=[payment.as_mapping() for payment in payments.values()],
    )


def checkpoints_for(
    unit_of_work_factory: Callable[[], SyncUnitOfWork],
    registration_id: str,
) -> CheckpointReport:
    with unit_of_work_factory() as uow:
        inputs = load_checkpoint_inputs(uow, registration_id)
    return compute_checkpoints(
        inputs.registration,
        customer=inputs.customer,
        invoice=inputs.invoice,
        payments=inputs.payments,
    )


def _first(records: Sequence[StoredRecord]) -> StoredRecord | None:
    for record in records:
        if not record.is_deleted:
            return record
    return None
