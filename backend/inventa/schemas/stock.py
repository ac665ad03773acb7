from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from inventa.db.models.adjustment_record import AdjustmentType
from inventa.schemas.common import APIModel


class OpnameSubmit(BaseModel):
    stock_line_id: UUID
    physical_quantity: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    adjustment_type: AdjustmentType = AdjustmentType.STOCK_OPNAME
    reason: str


class ReconcileOut(BaseModel):
    stock_line_id: UUID
    changed: bool
    system_quantity: Decimal
    physical_quantity: Decimal
    delta: Decimal
    adjustment_id: UUID | None = None


class WarehouseStockLineOut(APIModel):
    id: UUID
    warehouse_id: UUID
    consumable_id: UUID
    quantity: Decimal
    batch_number: str | None = None
    expiry_date: datetime | None = None
    received_at: datetime


class WarehouseStockSummary(BaseModel):
    consumable_id: UUID
    consumable_name: str
    base_unit: str
    total_quantity: Decimal
    batch_count: int
    batches: list[WarehouseStockLineOut] = Field(default_factory=list)


class RoomStockOut(APIModel):
    id: UUID
    room_id: UUID
    consumable_id: UUID
    quantity: Decimal
    updated_at: datetime


class AdjustmentOut(APIModel):
    id: UUID
    actor_id: UUID
    consumable_id: UUID
    warehouse_id: UUID
    stock_line_id: UUID | None = None
    batch_number: str | None = None
    delta_quantity: Decimal
    type: str
    reason: str
    created_at: datetime


class LowStockRow(BaseModel):
    consumable_id: UUID
    consumable_name: str
    warehouse_id: UUID
    total_quantity: Decimal
    minimum_stock: Decimal
