"""Declarative mapping of remote records onto local columns.

The remote source exposes human-readable keys ("Total Amount", "Paid?", "??SunPeak
Hours") that drift over time. Each entity kind has one table translating the keys
we know about into typed local columns; keys missing from the table are reported in
``MappedRecord.unmapped`` rather than dropped silently, so drift shows up in the
sync report without breaking the pipeline.

Everything in this module is pure.
"""

from __future__ import annotations

import json
import math
from collections import Counter
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Final, cast

from .entities import EntityKind
from .errors import MappingError

if TYPE_CHECKING:
    from collections.abc import Iterable

EXTERNAL_ID_KEY: Final[str] = "_id"
MODIFIED_DATE_KEY: Final[str] = "Modified Date"
EXTERNAL_ID_COLUMN: Final[str] = "external_id"
MODIFIED_DATE_COLUMN: Final[str] = "modified_date"

_TRUE_STRINGS: Final[frozenset[str]] = frozenset({"true", "yes", "y"})
_EMPTY_ARRAY_SENTINELS: Final[frozenset[str]] = frozenset({"", "//"})


class FieldKind(StrEnum):
    STRING = "string"
    TEXT = "text"
    INTEGER = "integer"
    NUMERIC = "numeric"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"
    ARRAY = "array"


@dataclass(frozen=True, slots=True)
class FieldSpec:
    column: str
    kind: FieldKind = FieldKind.STRING
    relation: EntityKind | None = None

    @property
    def is_array(self) -> bool:
        return self.kind is FieldKind.ARRAY


type FieldMapping = Mapping[str, FieldSpec]


def _audit_fields() -> dict[str, FieldSpec]:
    return {
        "Created By": FieldSpec("created_by"),
        "Created Date": FieldSpec("created_date", FieldKind.TIMESTAMP),
        MODIFIED_DATE_KEY: FieldSpec(MODIFIED_DATE_COLUMN, FieldKind.TIMESTAMP),
    }


INVOICE_FIELDS: Final[FieldMapping] = {
    EXTERNAL_ID_KEY: FieldSpec(EXTERNAL_ID_COLUMN),
    "Invoice ID": FieldSpec("invoice_id", FieldKind.INTEGER),
    "Invoice Number": FieldSpec("invoice_number"),
    "Amount": FieldSpec("amount", FieldKind.NUMERIC),
    "Total Amount": FieldSpec("total_amount", FieldKind.NUMERIC),
    "1st Payment %": FieldSpec("first_payment_percent", FieldKind.INTEGER),
    "1st Payment Date": FieldSpec("first_payment_date", FieldKind.TIMESTAMP),
    "2nd Payment %": FieldSpec("second_payment_percent", FieldKind.INTEGER),
    "Amount Eligible for Comm": FieldSpec("amount_eligible_for_comm", FieldKind.NUMERIC),
    "Full Payment Date": FieldSpec("full_payment_date", FieldKind.TIMESTAMP),
    "Last Payment Date": FieldSpec("last_payment_date", FieldKind.TIMESTAMP),
    "Linked Customer": FieldSpec("linked_customer", relation=EntityKind.CUSTOMER),
    "Linked Agent": FieldSpec("linked_agent", relation=EntityKind.AGENT),
    "Linked Payment": FieldSpec("linked_payment", FieldKind.ARRAY, EntityKind.PAYMENT),
    "Linked SEDA registration": FieldSpec(
        "linked_seda_registration", relation=EntityKind.SEDA_REGISTRATION
    ),
    "Linked Invoice Item": FieldSpec(
        "linked_invoice_item", FieldKind.ARRAY, EntityKind.INVOICE_ITEM
    ),
    "Invoice Date": FieldSpec("invoice_date", FieldKind.TIMESTAMP),
    "Status": FieldSpec("status"),
    "Type": FieldSpec("type"),
    "Version": FieldSpec("version", FieldKind.INTEGER),
    "Approval Status": FieldSpec("approval_status"),
    "Paid?": FieldSpec("paid", FieldKind.BOOLEAN),
    "Need Approval": FieldSpec("need_approval", FieldKind.BOOLEAN),
    "Commission Paid?": FieldSpec("commission_paid", FieldKind.BOOLEAN),
    "Normal Commission": FieldSpec("normal_commission", FieldKind.NUMERIC),
    "Panel Qty": FieldSpec("panel_qty", FieldKind.INTEGER),
    "Dealercode": FieldSpec("dealercode"),
    "Logs": FieldSpec("logs", FieldKind.TEXT),
    **_audit_fields(),
}

# Older invoice items use upper-case keys; both spellings are still in circulation.
INVOICE_ITEM_FIELDS: Final[FieldMapping] = {
    EXTERNAL_ID_KEY: FieldSpec(EXTERNAL_ID_COLUMN),
    "Description": FieldSpec("description", FieldKind.TEXT),
    "DESCRIPTION": FieldSpec("description", FieldKind.TEXT),
    "Qty": FieldSpec("qty", FieldKind.INTEGER),
    "QTY": FieldSpec("qty", FieldKind.INTEGER),
    "Unit Price": FieldSpec("unit_price", FieldKind.NUMERIC),
    "UNIT PRICE": FieldSpec("unit_price", FieldKind.NUMERIC),
    "Amount": FieldSpec("amount", FieldKind.NUMERIC),
    "AMOUNT": FieldSpec("amount", FieldKind.NUMERIC),
    "Is a Package": FieldSpec("is_a_package", FieldKind.BOOLEAN),
    "is a Package?": FieldSpec("is_a_package", FieldKind.BOOLEAN),
    "Invoice": FieldSpec("linked_invoice", relation=EntityKind.INVOICE),
    "Sort": FieldSpec("sort", FieldKind.INTEGER),
    "Item Type": FieldSpec("item_type"),
    **_audit_fields(),
}

CUSTOMER_FIELDS: Final[FieldMapping] = {
    EXTERNAL_ID_KEY: FieldSpec(EXTERNAL_ID_COLUMN),
    "Name": FieldSpec("name"),
    "Email": FieldSpec("email"),
    "Address": FieldSpec("address", FieldKind.TEXT),
    "City": FieldSpec("city"),
    "State": FieldSpec("state"),
    "IC No": FieldSpec("ic_no"),
    "Contact": FieldSpec("phone"),
    "Whatsapp": FieldSpec("phone"),
    "Linked Agent": FieldSpec("linked_agent", relation=EntityKind.AGENT),
    **_audit_fields(),
}

AGENT_FIELDS: Final[FieldMapping] = {
    EXTERNAL_ID_KEY: FieldSpec(EXTERNAL_ID_COLUMN),
    "Name": FieldSpec("name"),
    "Slug": FieldSpec("slug"),
    "Contact": FieldSpec("contact"),
    "Email": FieldSpec("email"),
    "Agent Type": FieldSpec("agent_type"),
    "Commission": FieldSpec("commission", FieldKind.INTEGER),
    "Annual Collection": FieldSpec("annual_collection", FieldKind.NUMERIC),
    "Linked User Login": FieldSpec("linked_user_login"),
    **_audit_fields(),
}

PAYMENT_FIELDS: Final[FieldMapping] = {
    EXTERNAL_ID_KEY: FieldSpec(EXTERNAL_ID_COLUMN),
    "Amount": FieldSpec("amount", FieldKind.NUMERIC),
    "Payment Date": FieldSpec("payment_date", FieldKind.TIMESTAMP),
    "Payment Method": FieldSpec("payment_method"),
    "Remark": FieldSpec("remark", FieldKind.TEXT),
    "Attachment": FieldSpec("attachment", FieldKind.ARRAY),
    "Linked Agent": FieldSpec("linked_agent", relation=EntityKind.AGENT),
    "Linked Customer": FieldSpec("linked_customer", relation=EntityKind.CUSTOMER),
    "Linked Invoice": FieldSpec("linked_invoice", relation=EntityKind.INVOICE),
    **_audit_fields(),
}

SEDA_REGISTRATION_FIELDS: Final[FieldMapping] = {
    EXTERNAL_ID_KEY: FieldSpec(EXTERNAL_ID_COLUMN),
    "City": FieldSpec("city"),
    "CITY": FieldSpec("city"),
    "State": FieldSpec("state"),
    "STATE": FieldSpec("state"),
    "Agent": FieldSpec("agent", relation=EntityKind.AGENT),
    "Linked Customer": FieldSpec("linked_customer", relation=EntityKind.CUSTOMER),
    "Linked Invoice": FieldSpec("linked_invoice", FieldKind.ARRAY, EntityKind.INVOICE),
    "SEDA Status": FieldSpec("seda_status"),
    "Reg Status": FieldSpec("reg_status"),
    "Project Price": FieldSpec("project_price", FieldKind.NUMERIC),
    "System Size": FieldSpec("system_size", FieldKind.NUMERIC),
    "??SunPeak Hours": FieldSpec("sunpeak_hours", FieldKind.NUMERIC),
    "Drawing (SYSTEM) Submitted": FieldSpec("drawing_system_submitted", FieldKind.BOOLEAN),
    "Installation Address": FieldSpec("installation_address", FieldKind.TEXT),
    "E-Contact Name": FieldSpec("e_contact_name"),
    "E-Contact No": FieldSpec("e_contact_no"),
    "E-Contact Relationship": FieldSpec("e_contact_relationship"),
    "Customer Signature": FieldSpec("customer_signature"),
    "IC Copy Front": FieldSpec("ic_copy_front"),
    "IC Copy Back": FieldSpec("ic_copy_back"),
    "Mykad PDF": FieldSpec("mykad_pdf"),
    "TNB Bill 1": FieldSpec("tnb_bill_1"),
    "TNB Bill 2": FieldSpec("tnb_bill_2"),
    "TNB Bill 3": FieldSpec("tnb_bill_3"),
    "TNB Meter": FieldSpec("tnb_meter"),
    "NEM Cert": FieldSpec("nem_cert"),
    "Property Ownership Prove": FieldSpec("property_ownership_prove"),
    "Check TNB Bill and Meter Image": FieldSpec("check_tnb_bill_and_meter_image"),
    "Roof Images": FieldSpec("roof_images", FieldKind.ARRAY),
    "Site Images": FieldSpec("site_images", FieldKind.ARRAY),
    "Drawing PDF System": FieldSpec("drawing_pdf_system", FieldKind.ARRAY),
    "Drawing System Actual": FieldSpec("drawing_system_actual", FieldKind.ARRAY),
    "Drawing Engineering Seda PDF": FieldSpec("drawing_engineering_seda_pdf", FieldKind.ARRAY),
    **_audit_fields(),
}

MAPPINGS: Final[Mapping[EntityKind, FieldMapping]] = {
    EntityKind.INVOICE: INVOICE_FIELDS,
    EntityKind.INVOICE_ITEM: INVOICE_ITEM_FIELDS,
    EntityKind.CUSTOMER: CUSTOMER_FIELDS,
    EntityKind.AGENT: AGENT_FIELDS,
    EntityKind.PAYMENT: PAYMENT_FIELDS,
    EntityKind.SEDA_REGISTRATION: SEDA_REGISTRATION_FIELDS,
}


@dataclass(slots=True, kw_only=True)
class MappedRecord:
    """Normalised form of one remote record."""

    kind: EntityKind
    external_id: str
    values: dict[str, object] = field(default_factory=dict[str, object])
    unmapped: tuple[str, ...] = ()
    uncoerced: tuple[str, ...] = ()

    @property
    def modified_at(self) -> datetime | None:
        value = self.values.get(MODIFIED_DATE_COLUMN)
        return value if isinstance(value, datetime) else None


def is_empty(value: object) -> bool:
    """Return whether a column value counts as empty (null, ``""`` or ``[]``)."""

    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, (list, tuple)):
        return len(cast(Sequence[object], value)) == 0
    return False


def coerce_value(value: object, kind: FieldKind) -> object:
    """Coerce a raw remote value into the Python type used for ``kind``.

    Raises ``ValueError`` when the value cannot be represented; ``map_record`` turns
    that into a null column listed in ``MappedRecord.uncoerced``.
    """

    if value is None:
        return None
    match kind:
        case FieldKind.STRING | FieldKind.TEXT:
            return _to_text(value)
        case FieldKind.INTEGER:
            return _to_integer(value)
        case FieldKind.NUMERIC:
            return _to_numeric(value)
        case FieldKind.BOOLEAN:
            return _to_boolean(value)
        case FieldKind.TIMESTAMP:
            return _to_timestamp(value)
        case FieldKind.ARRAY:
            return _to_array(value)


def map_record(
    kind: EntityKind,
    raw: Mapping[str, object],
    *,
    mappings: Mapping[EntityKind, FieldMapping] = MAPPINGS,
) -> MappedRecord:
    """Translate one raw remote record into local columns."""

    mapping = mappings[kind]
    raw_id = raw.get(EXTERNAL_ID_KEY)
    if not isinstance(raw_id, str) or not raw_id.strip():
        raise MappingError(f"{kind} record without {EXTERNAL_ID_KEY!r}")

    values: dict[str, object] = {}
    uncoerced: list[str] = []
    for remote_key, spec in mapping.items():
        if remote_key not in raw:
            continue
        try:
            coerced = coerce_value(raw[remote_key], spec.kind)
        except (TypeError, ValueError, OverflowError):
            coerced = None
            if spec.column not in uncoerced:
                uncoerced.append(spec.column)
        if spec.column in values and not is_empty(values[spec.column]):
            continue
        values[spec.column] = coerced

    if kind is EntityKind.INVOICE and "Amount" in raw and "Total Amount" not in raw:
        values["total_amount"] = values.get("amount")

    unmapped = tuple(key for key in raw if key not in mapping)
    return MappedRecord(
        kind=kind,
        external_id=raw_id.strip(),
        values=values,
        unmapped=unmapped,
        uncoerced=tuple(uncoerced),
    )


def relation_fields(
    kind: EntityKind,
    *,
    mappings: Mapping[EntityKind, FieldMapping] = MAPPINGS,
) -> dict[str, EntityKind]:
    """Return ``column -> related kind`` for the relation columns of ``kind``."""

    return {
        spec.column: spec.relation
        for spec in mappings[kind].values()
        if spec.relation is not None
    }


def column_kinds(
    kind: EntityKind,
    *,
    mappings: Mapping[EntityKind, FieldMapping] = MAPPINGS,
) -> dict[str, FieldKind]:
    """Return the distinct local columns of ``kind`` with their field kind."""

    return {spec.column: spec.kind for spec in mappings[kind].values()}


def unmapped_report(records: Iterable[MappedRecord]) -> dict[EntityKind, Counter[str]]:
    """Count unmapped remote keys per entity kind (schema drift report)."""

    report: dict[EntityKind, Counter[str]] = {}
    for record in records:
        if record.unmapped:
            report.setdefault(record.kind, Counter()).update(record.unmapped)
    return report


def related_ids(value: object) -> tuple[str, ...]:
    """Return the external identifiers held by a relation column value."""

    if isinstance(value, str):
        return (value,) if value else ()
    if isinstance(value, (list, tuple)):
        items = cast(Sequence[object], value)
        return tuple(item for item in items if isinstance(item, str) and item)
    return ()


# Coercion helpers -------------------------------------------------------------


def _to_text(value: object) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (Mapping, list, tuple)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


def _to_integer(value: object) -> int | None:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return math.floor(value)
    if isinstance(value, str):
        text = value.strip().replace(",", "")
        if not text:
            return None
        try:
            return int(text)
        except ValueError:
            return math.floor(float(text))
    raise TypeError(f"Cannot coerce {type(value).__name__} to integer")


def _to_numeric(value: object) -> float | None:
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip().replace(",", "")
        if not text:
            return None
        number = float(text)
    else:
        raise TypeError(f"Cannot coerce {type(value).__name__} to numeric")
    if not math.isfinite(number):
        raise ValueError(f"Non-finite numeric value: {value!r}")
    return number


def _to_boolean(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return bool(value)


def _to_timestamp(value: object) -> datetime | None:
    if isinstance(value, datetime):
        return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)
    if isinstance(value, bool):
        raise TypeError("Booleans are not timestamps")
    if isinstance(value, (int, float)):
        return _from_epoch_millis(float(value))
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.lstrip("-").isdigit():
            return _from_epoch_millis(float(text))
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
        return parsed.replace(tzinfo=UTC) if parsed.tzinfo is None else parsed.astimezone(UTC)
    raise TypeError(f"Cannot coerce {type(value).__name__} to timestamp")


def _from_epoch_millis(value: float) -> datetime:
    if not math.isfinite(value):
        raise ValueError("Non-finite epoch value")
    return datetime.fromtimestamp(value / 1000.0, tz=UTC)


def _to_array(value: object) -> list[object] | None:
    if isinstance(value, (list, tuple)):
        return list(cast(Sequence[object], value))
    if isinstance(value, str):
        return None if value.strip() in _EMPTY_ARRAY_SENTINELS else [value]
    if isinstance(value, Mapping):
        raise TypeError("Cannot wrap a mapping as an array element")
    return [value]
