"""init: organization, catalog, stock ledgers, workflows, audit

Revision ID: 0001_init
Revises:
Create Date: 2026-10-18

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _id() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True)


def _ts(name: str) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))


def _fk(name: str, target: str, *, nullable: bool = False, ondelete: str = "RESTRICT") -> sa.Column:
    return sa.Column(
        name,
        postgresql.UUID(as_uuid=True),
        sa.ForeignKey(target, ondelete=ondelete),
        nullable=nullable,
    )


def _qty(name: str, *, nullable: bool = False, default: str | None = None) -> sa.Column:
    return sa.Column(
        name,
        sa.Numeric(12, 2),
        nullable=nullable,
        server_default=sa.text(default) if default is not None else None,
    )


def upgrade() -> None:
    op.create_table("faculties", _id(), sa.Column("name", sa.Text(), nullable=False), _ts("created_at"))
    op.create_table(
        "units",
        _id(),
        _fk("faculty_id", "faculties.id", nullable=True),
        sa.Column("name", sa.Text(), nullable=False),
        _ts("created_at"),
    )
    op.create_index("ix_units_faculty_id", "units", ["faculty_id"])
    op.create_table(
        "rooms",
        _id(),
        _fk("unit_id", "units.id", nullable=True),
        sa.Column("name", sa.Text(), nullable=False),
        _ts("created_at"),
    )
    op.create_index("ix_rooms_unit_id", "rooms", ["unit_id"])
    op.create_table(
        "warehouses",
        _id(),
        _fk("faculty_id", "faculties.id", nullable=True),
        sa.Column("name", sa.Text(), nullable=False),
        _ts("created_at"),
    )
    op.create_table(
        "users",
        _id(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("role", sa.Text(), nullable=False),
        sa.Column("unit_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("units.id"), nullable=True),
        sa.Column("faculty_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("faculties.id"), nullable=True),
        sa.Column("warehouse_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("warehouses.id"), nullable=True),
    )
    op.create_index("ix_users_role", "users", ["role"])

    op.create_table(
        "consumables",
        _id(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("sku", sa.Text(), nullable=True, unique=True),
        sa.Column("base_unit", sa.Text(), nullable=False),
        _qty("minimum_stock", default="10"),
        sa.Column("has_expiry", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("description", sa.Text(), nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
    )

    op.create_table(
        "warehouse_stocks",
        _id(),
        _fk("warehouse_id", "warehouses.id"),
        _fk("consumable_id", "consumables.id"),
        _qty("quantity", default="0"),
        sa.Column("batch_number", sa.Text(), nullable=True),
        sa.Column("expiry_date", sa.DateTime(timezone=True), nullable=True),
        _ts("received_at"),
        _ts("updated_at"),
        sa.CheckConstraint("quantity >= 0", name="ck_warehouse_stocks_quantity_non_negative"),
    )
    op.create_index("ix_warehouse_stocks_wh_consumable", "warehouse_stocks", ["warehouse_id", "consumable_id"])
    op.create_index("ix_warehouse_stocks_expiry_date", "warehouse_stocks", ["expiry_date"])

    op.create_table(
        "room_stocks",
        _id(),
        _fk("room_id", "rooms.id"),
        _fk("consumable_id", "consumables.id"),
        _qty("quantity", default="0"),
        _ts("created_at"),
        _ts("updated_at"),
        sa.CheckConstraint("quantity >= 0", name="ck_room_stocks_quantity_non_negative"),
    )
    op.create_index("ux_room_stocks_room_consumable", "room_stocks", ["room_id", "consumable_id"], unique=True)

    op.create_table(
        "requests",
        _id(),
        sa.Column("request_code", sa.Text(), nullable=False, unique=True),
        sa.Column("requester_id", postgresql.UUID(as_uuid=True), nullable=False),
        _fk("room_id", "rooms.id"),
        _fk("target_warehouse_id", "warehouses.id"),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'PENDING_UNIT'")),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("approved_by_unit_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("approved_by_faculty_id", postgresql.UUID(as_uuid=True), nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_requests_status", "requests", ["status"])
    op.create_index("ix_requests_target_warehouse_id", "requests", ["target_warehouse_id"])
    op.create_index("ix_requests_requester_id", "requests", ["requester_id"])
    op.create_table(
        "request_items",
        _id(),
        _fk("request_id", "requests.id", ondelete="CASCADE"),
        _fk("consumable_id", "consumables.id"),
        _qty("qty_requested"),
        _qty("qty_approved", nullable=True),
    )
    op.create_index("ix_request_items_request_id", "request_items", ["request_id"])
    op.create_table(
        "request_timelines",
        _id(),
        _fk("request_id", "requests.id", ondelete="CASCADE"),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("actor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_request_timelines_request_id", "request_timelines", ["request_id"])

    op.create_table(
        "procurements",
        _id(),
        sa.Column("procurement_code", sa.Text(), nullable=False, unique=True),
        sa.Column("requester_id", postgresql.UUID(as_uuid=True), nullable=False),
        _fk("warehouse_id", "warehouses.id"),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_procurements_status", "procurements", ["status"])
    op.create_table(
        "procurement_consumables",
        _id(),
        _fk("procurement_id", "procurements.id", ondelete="CASCADE"),
        _fk("consumable_id", "consumables.id"),
        _fk("warehouse_id", "warehouses.id"),
        _qty("quantity"),
        _qty("received_quantity", nullable=True),
        sa.Column("condition", sa.Text(), nullable=True),
        sa.Column("batch_number", sa.Text(), nullable=True),
        sa.Column("expiry_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("receipt_notes", sa.Text(), nullable=True),
        _fk("stock_line_id", "warehouse_stocks.id", nullable=True, ondelete="SET NULL"),
    )
    op.create_index("ix_procurement_consumables_procurement_id", "procurement_consumables", ["procurement_id"])
    op.create_table(
        "procurement_timelines",
        _id(),
        _fk("procurement_id", "procurements.id", ondelete="CASCADE"),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("actor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_procurement_timelines_procurement_id", "procurement_timelines", ["procurement_id"])

    op.create_table(
        "usage_reports",
        _id(),
        sa.Column("reporter_id", postgresql.UUID(as_uuid=True), nullable=False),
        _fk("room_id", "rooms.id"),
        sa.Column("activity_name", sa.Text(), nullable=False),
        _ts("activity_date"),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_usage_reports_room_id", "usage_reports", ["room_id"])
    op.create_index("ix_usage_reports_activity_date", "usage_reports", ["activity_date"])
    op.create_table(
        "usage_details",
        _id(),
        _fk("report_id", "usage_reports.id", ondelete="CASCADE"),
        _fk("consumable_id", "consumables.id"),
        _qty("qty_used"),
    )
    op.create_index("ix_usage_details_report_id", "usage_details", ["report_id"])

    op.create_table(
        "consumable_adjustments",
        _id(),
        sa.Column("actor_id", postgresql.UUID(as_uuid=True), nullable=False),
        _fk("consumable_id", "consumables.id"),
        _fk("warehouse_id", "warehouses.id"),
        _fk("stock_line_id", "warehouse_stocks.id", nullable=True, ondelete="SET NULL"),
        sa.Column("batch_number", sa.Text(), nullable=True),
        _qty("delta_quantity"),
        sa.Column("type", sa.Text(), nullable=False, server_default=sa.text("'STOCK_OPNAME'")),
        sa.Column("reason", sa.Text(), nullable=False),
        _ts("created_at"),
    )
    op.create_index(
        "ix_consumable_adjustments_wh_consumable", "consumable_adjustments", ["warehouse_id", "consumable_id"]
    )
    op.create_index("ix_consumable_adjustments_created_at", "consumable_adjustments", ["created_at"])

    op.create_table(
        "audit_logs",
        _id(),
        sa.Column("actor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("action", sa.Text(), nullable=False),
        sa.Column("table_name", sa.Text(), nullable=False),
        sa.Column("record_id", sa.Text(), nullable=False),
        sa.Column("old_values", postgresql.JSONB(), nullable=True),
        sa.Column("new_values", postgresql.JSONB(), nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_audit_logs_table_record", "audit_logs", ["table_name", "record_id"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])

    op.create_table(
        "notifications",
        _id(),
        _fk("user_id", "users.id", ondelete="CASCADE"),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("type", sa.Text(), nullable=False, server_default=sa.text("'INFO'")),
        sa.Column("link", sa.Text(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _ts("created_at"),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_is_read", "notifications", ["is_read"])


def downgrade() -> None:
    for table in (
        "notifications",
        "audit_logs",
        "consumable_adjustments",
        "usage_details",
        "usage_reports",
        "procurement_timelines",
        "procurement_consumables",
        "procurements",
        "request_timelines",
        "request_items",
        "requests",
        "room_stocks",
        "warehouse_stocks",
        "consumables",
        "users",
        "warehouses",
        "rooms",
        "units",
        "faculties",
    ):
        op.drop_table(table)
