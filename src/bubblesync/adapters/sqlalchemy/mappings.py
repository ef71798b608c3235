"""SQLAlchemy table metadata for mirrored entities, sync cursors and the activity log."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from functools import cache
from typing import TYPE_CHECKING, Any, Final, cast

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Dialect,
    Enum,
    Float,
    Integer,
    String,
    Table,
    Text,
    TypeDecorator,
    false,
    orm,
)
from sqlalchemy.orm import configure_mappers

from bubblesync.domain.entities import ActivityLevel, EntityKind, SyncActivityEntry

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


class StringListType(TypeDecorator[list[object]]):
    """Array column stored as a JSON list; empty lists are stored as NULL."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: list[object] | None, dialect: Dialect) -> str | None:
        _ = dialect
        if not value:
            return None
        return json.dumps(list(value), ensure_ascii=False)

    def process_result_value(self, value: str | None, dialect: Dialect) -> list[object] | None:
        _ = dialect
        if value is None:
            return None
        loaded = json.loads(value)
        if not isinstance(loaded, list):
            return [loaded]
        return list(cast(list[Any], loaded))


mapper_registry = orm.registry()
mapper_registry.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_label)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# Columns maintained by the upsert engine rather than the field mapper.
BOOKKEEPING_COLUMNS: Final[frozenset[str]] = frozenset(
    {"id", "external_id", "created_at", "last_synced_at", "is_deleted"}
)


def _record_columns() -> list[Column[Any]]:
    return [
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("external_id", String(64), nullable=False, unique=True, index=True),
        Column("created_by", String),
        Column("created_date", UTCDateTime()),
        Column("modified_date", UTCDateTime()),
        Column("created_at", UTCDateTime(), nullable=False),
        Column("last_synced_at", UTCDateTime(), nullable=False),
        Column("is_deleted", Boolean, nullable=False, default=False, server_default=false()),
    ]


# Entity tables ---------------------------------------------------------------

agent_table = Table(
    "agent",
    mapper_registry.metadata,
    *_record_columns(),
    Column("name", String),
    Column("slug", String),
    Column("contact", String),
    Column("email", String),
    Column("agent_type", String),
    Column("commission", Integer),
    Column("annual_collection", Float),
    Column("linked_user_login", String),
)

customer_table = Table(
    "customer",
    mapper_registry.metadata,
    *_record_columns(),
    Column("name", String),
    Column("email", String),
    Column("address", Text),
    Column("city", String),
    Column("state", String),
    Column("ic_no", String),
    Column("phone", String),
    Column("linked_agent", String),
)

invoice_table = Table(
    "invoice",
    mapper_registry.metadata,
    *_record_columns(),
    Column("invoice_id", Integer),
    Column("invoice_number", String),
    Column("amount", Float),
    Column("total_amount", Float),
    Column("first_payment_percent", Integer),
    Column("first_payment_date", UTCDateTime()),
    Column("second_payment_percent", Integer),
    Column("amount_eligible_for_comm", Float),
    Column("full_payment_date", UTCDateTime()),
    Column("last_payment_date", UTCDateTime()),
    Column("linked_customer", String),
    Column("linked_agent", String),
    Column("linked_payment", StringListType()),
    Column("linked_seda_registration", String),
    Column("linked_invoice_item", StringListType()),
    Column("invoice_date", UTCDateTime()),
    Column("status", String),
    Column("type", String),
    Column("version", Integer),
    Column("approval_status", String),
    Column("paid", Boolean),
    Column("need_approval", Boolean),
    Column("commission_paid", Boolean),
    Column("normal_commission", Float),
    Column("panel_qty", Integer),
    Column("dealercode", String),
    Column("logs", Text),
)

invoice_item_table = Table(
    "invoice_item",
    mapper_registry.metadata,
    *_record_columns(),
    Column("description", Text),
    Column("qty", Integer),
    Column("unit_price", Float),
    Column("amount", Float),
    Column("is_a_package", Boolean),
    Column("linked_invoice", String),
    Column("sort", Integer),
    Column("item_type", String),
)

payment_table = Table(
    "payment",
    mapper_registry.metadata,
    *_record_columns(),
    Column("amount", Float),
    Column("payment_date", UTCDateTime()),
    Column("payment_method", String),
    Column("remark", Text),
    Column("attachment", StringListType()),
    Column("linked_agent", String),
    Column("linked_customer", String),
    Column("linked_invoice", String),
)

seda_registration_table = Table(
    "seda_registration",
    mapper_registry.metadata,
    *_record_columns(),
    Column("city", String),
    Column("state", String),
    Column("agent", String),
    Column("linked_customer", String),
    Column("linked_invoice", StringListType()),
    Column("seda_status", String),
    Column("reg_status", String),
    Column("project_price", Float),
    Column("system_size", Float),
    Column("sunpeak_hours", Float),
    Column("drawing_system_submitted", Boolean),
    Column("installation_address", Text),
    Column("e_contact_name", String),
    Column("e_contact_no", String),
    Column("e_contact_relationship", String),
    Column("customer_signature", String),
    Column("ic_copy_front", String),
    Column("ic_copy_back", String),
    Column("mykad_pdf", String),
    Column("tnb_bill_1", String),
    Column("tnb_bill_2", String),
    Column("tnb_bill_3", String),
    Column("tnb_meter", String),
    Column("nem_cert", String),
    Column("property_ownership_prove", String),
    Column("check_tnb_bill_and_meter_image", String),
    Column("roof_images", StringListType()),
    Column("site_images", StringListType()),
    Column("drawing_pdf_system", StringListType()),
    Column("drawing_system_actual", StringListType()),
    Column("drawing_engineering_seda_pdf", StringListType()),
)

TABLE_BY_KIND: Final[dict[EntityKind, Table]] = {
    EntityKind.AGENT: agent_table,
    EntityKind.CUSTOMER: customer_table,
    EntityKind.INVOICE: invoice_table,
    EntityKind.INVOICE_ITEM: invoice_item_table,
    EntityKind.PAYMENT: payment_table,
    EntityKind.SEDA_REGISTRATION: seda_registration_table,
}

# Activity log ----------------------------------------------------------------


def _enum_values(enum_cls: type[ActivityLevel]) -> list[str]:
    return [member.value for member in enum_cls]


sync_activity_log_table = Table(
    "sync_activity_log",
    mapper_registry.metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("occurred_at", UTCDateTime(), nullable=False, index=True),
    Column(
        "level",
        Enum(ActivityLevel, native_enum=False, length=16, values_callable=_enum_values),
        nullable=False,
    ),
    Column("message", Text, nullable=False),
)


# Incremental cursors ----------------------------------------------------------

# One row per kind: the newest remote ``Modified Date`` its own batch fetch has fully
# processed. Records pulled in as relations of another kind never move it.
sync_cursor_table = Table(
    "sync_cursor",
    mapper_registry.metadata,
    Column("kind", String(32), primary_key=True),
    Column("modified_through", UTCDateTime(), nullable=False),
    Column("updated_at", UTCDateTime(), nullable=False),
)


@cache
def start_mappers() -> orm.registry:
    """Map the activity log entry; entity tables are accessed through Core."""

    log.info("Starting SQLAlchemy mappers")

    mapper_registry.map_imperatively(SyncActivityEntry, sync_activity_log_table)

    configure_mappers()
    return mapper_registry


def create_all_tables(engine: Engine) -> None:
    """Create database tables for the mapped metadata."""

    log.info("Creating all tables")
    mapper_registry.metadata.create_all(engine)
