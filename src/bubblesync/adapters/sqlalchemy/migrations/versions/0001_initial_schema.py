"""initial schema

Revision ID: 0001
Revises:
Create Date: 2025-01-06 09:12:44.118302

"""

from __future__ import annotations

from typing import TYPE_CHECKING

import sqlalchemy as sa
from alembic import op

if TYPE_CHECKING:
    from collections.abc import Sequence

revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

ENTITY_TABLES = (
    "agent",
    "customer",
    "invoice",
    "invoice_item",
    "payment",
    "seda_registration",
)


def _record_columns() -> list[sa.Column[object]]:
    return [
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("external_id", sa.String(length=64), nullable=False),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("created_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("modified_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_deleted", sa.Boolean(), server_default=sa.false(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "agent",
        *_record_columns(),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("slug", sa.String(), nullable=True),
        sa.Column("contact", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("agent_type", sa.String(), nullable=True),
        sa.Column("commission", sa.Integer(), nullable=True),
        sa.Column("annual_collection", sa.Float(), nullable=True),
        sa.Column("linked_user_login", sa.String(), nullable=True),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_agent")),
    )
    op.create_table(
        "customer",
        *_record_columns(),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("city", sa.String(), nullable=True),
        sa.Column("state", sa.String(), nullable=True),
        sa.Column("ic_no", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("linked_agent", sa.String(), nullable=True),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_customer")),
    )
    op.create_table(
        "invoice",
        *_record_columns(),
        sa.Column("invoice_id", sa.Integer(), nullable=True),
        sa.Column("invoice_number", sa.String(), nullable=True),
        sa.Column("amount", sa.Float(), nullable=True),
        sa.Column("total_amount", sa.Float(), nullable=True),
        sa.Column("first_payment_percent", sa.Integer(), nullable=True),
        sa.Column("first_payment_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("second_payment_percent", sa.Integer(), nullable=True),
        sa.Column("amount_eligible_for_comm", sa.Float(), nullable=True),
        sa.Column("full_payment_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_payment_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("linked_customer", sa.String(), nullable=True),
        sa.Column("linked_agent", sa.String(), nullable=True),
        sa.Column("linked_payment", sa.Text(), nullable=True),
        sa.Column("linked_seda_registration", sa.String(), nullable=True),
        sa.Column("linked_invoice_item", sa.Text(), nullable=True),
        sa.Column("invoice_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(), nullable=True),
        sa.Column("type", sa.String(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=True),
        sa.Column("approval_status", sa.String(), nullable=True),
        sa.Column("paid", sa.Boolean(), nullable=True),
        sa.Column("need_approval", sa.Boolean(), nullable=True),
        sa.Column("commission_paid", sa.Boolean(), nullable=True),
        sa.Column("normal_commission", sa.Float(), nullable=True),
        sa.Column("panel_qty", sa.Integer(), nullable=True),
        sa.Column("dealercode", sa.String(), nullable=True),
        sa.Column("logs", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_invoice")),
    )
    op.create_table(
        "invoice_item",
        *_record_columns(),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("qty", sa.Integer(), nullable=True),
        sa.Column("unit_price", sa.Float(), nullable=True),
        sa.Column("amount", sa.Float(), nullable=True),
        sa.Column("is_a_package", sa.Boolean(), nullable=True),
        sa.Column("linked_invoice", sa.String(), nullable=True),
        sa.Column("sort", sa.Integer(), nullable=True),
        sa.Column("item_type", sa.String(), nullable=True),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_invoice_item")),
    )
    op.create_table(
        "payment",
        *_record_columns(),
        sa.Column("amount", sa.Float(), nullable=True),
        sa.Column("payment_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_method", sa.String(), nullable=True),
        sa.Column("remark", sa.Text(), nullable=True),
        sa.Column("attachment", sa.Text(), nullable=True),
        sa.Column("linked_agent", sa.String(), nullable=True),
        sa.Column("linked_customer", sa.String(), nullable=True),
        sa.Column("linked_invoice", sa.String(), nullable=True),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_payment")),
    )
    op.create_table(
        "seda_registration",
        *_record_columns(),
        sa.Column("city", sa.String(), nullable=True),
        sa.Column("state", sa.String(), nullable=True),
        sa.Column("agent", sa.String(), nullable=True),
        sa.Column("linked_customer", sa.String(), nullable=True),
        sa.Column("linked_invoice", sa.Text(), nullable=True),
        sa.Column("seda_status", sa.String(), nullable=True),
        sa.Column("reg_status", sa.String(), nullable=True),
        sa.Column("project_price", sa.Float(), nullable=True),
        sa.Column("system_size", sa.Float(), nullable=True),
        sa.Column("sunpeak_hours", sa.Float(), nullable=True),
        sa.Column("drawing_system_submitted", sa.Boolean(), nullable=True),
        sa.Column("installation_address", sa.Text(), nullable=True),
        sa.Column("e_contact_name", sa.String(), nullable=True),
        sa.Column("e_contact_no", sa.String(), nullable=True),
        sa.Column("e_contact_relationship", sa.String(), nullable=True),
        sa.Column("customer_signature", sa.String(), nullable=True),
        sa.Column("ic_copy_front", sa.String(), nullable=True),
        sa.Column("ic_copy_back", sa.String(), nullable=True),
        sa.Column("mykad_pdf", sa.String(), nullable=True),
        sa.Column("tnb_bill_1", sa.String(), nullable=True),
        sa.Column("tnb_bill_2", sa.String(), nullable=True),
        sa.Column("tnb_bill_3", sa.String(), nullable=True),
        sa.Column("tnb_meter", sa.String(), nullable=True),
        sa.Column("nem_cert", sa.String(), nullable=True),
        sa.Column("property_ownership_prove", sa.String(), nullable=True),
        sa.Column("check_tnb_bill_and_meter_image", sa.String(), nullable=True),
        sa.Column("roof_images", sa.Text(), nullable=True),
        sa.Column("site_images", sa.Text(), nullable=True),
        sa.Column("drawing_pdf_system", sa.Text(), nullable=True),
        sa.Column("drawing_system_actual", sa.Text(), nullable=True),
        sa.Column("drawing_engineering_seda_pdf", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_seda_registration")),
    )
    for table_name in ENTITY_TABLES:
        op.create_index(
            op.f(f"ix_{table_name}_external_id"),
            table_name,
            ["external_id"],
            unique=True,
        )

    op.create_table(
        "sync_activity_log",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("level", sa.String(length=16), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_sync_activity_log")),
    )
    op.create_index(
        op.f("ix_sync_activity_log_occurred_at"),
        "sync_activity_log",
        ["occurred_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index(op.f("ix_sync_activity_log_occurred_at"), table_name="sync_activity_log")
    op.drop_table("sync_activity_log")
    for table_name in reversed(ENTITY_TABLES):
        op.drop_index(op.f(f"ix_{table_name}_external_id"), table_name=table_name)
        op.drop_table(table_name)
