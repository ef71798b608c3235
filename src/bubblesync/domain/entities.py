"""Entity kinds and the storage-facing record shapes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping


class EntityKind(StrEnum):
    """Entity kinds mirrored from the remote record source."""

    INVOICE = "invoice"
    INVOICE_ITEM = "invoice_item"
    CUSTOMER = "customer"
    AGENT = "agent"
    PAYMENT = "payment"
    SEDA_REGISTRATION = "seda_registration"


# Referenced kinds first; relation fields are not enforced, but syncing in this
# order keeps the number of dangling references low between passes.
SYNC_ORDER: tuple[EntityKind, ...] = (
    EntityKind.AGENT,
    EntityKind.CUSTOMER,
    EntityKind.INVOICE,
    EntityKind.INVOICE_ITEM,
    EntityKind.PAYMENT,
    EntityKind.SEDA_REGISTRATION,
)

REMOTE_TYPE_BY_KIND: dict[EntityKind, str] = {
    EntityKind.INVOICE: "invoice",
    EntityKind.INVOICE_ITEM: "invoice_item",
    EntityKind.CUSTOMER: "Customer_Profile",
    EntityKind.AGENT: "agent",
    EntityKind.PAYMENT: "payment",
    EntityKind.SEDA_REGISTRATION: "seda_registration",
}


def parse_entity_kind(value: str) -> EntityKind:
    try:
        return EntityKind(value.strip().lower())
    except ValueError as exc:
        known = ", ".join(kind.value for kind in EntityKind)
        raise ValueError(f"Unknown entity kind {value!r} (expected one of: {known})") from exc


@dataclass(slots=True, kw_only=True)
class StoredRecord:
    """Snapshot of one local row; ``values`` holds the mapped columns only."""

    kind: EntityKind
    local_id: int
    external_id: str
    values: dict[str, object] = field(default_factory=dict[str, object])
    created_at: datetime | None = None
    last_synced_at: datetime | None = None
    is_deleted: bool = False

    def get(self, column: str) -> object:
        return self.values.get(column)

    def as_mapping(self) -> Mapping[str, object]:
        return {"id": self.local_id, "external_id": self.external_id, **self.values}


class ActivityLevel(StrEnum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(eq=False, kw_only=True)
class SyncActivityEntry:
    """One line of the append-only sync activity log."""

    level: ActivityLevel
    message: str
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    id: int | None = None
