from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from inventa.db.models.procurement import ReceiptCondition
from inventa.schemas.common import APIModel


class ProcurementLineIn(BaseModel):
    consumable_id: UUID
    quantity: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    # Defaults to the procurement's warehouse
    warehouse_id: UUID | None = None


class ProcurementCreate(BaseModel):
    description: str = Field(min_length=3)
    # Required for super_admin; warehouse_staff always procure for their own warehouse
    warehouse_id: UUID | None = None
    items: list[ProcurementLineIn] = Field(min_length=1)


class ProcurementReject(BaseModel):
    reason: str

    @field_validator("reason")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("rejection reason is required")
        return v


class GoodsReceiptLine(BaseModel):
    line_id: UUID
    received_quantity: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    condition: ReceiptCondition
    batch_number: str | None = None
    expiry_date: datetime | None = None
    notes: str | None = None

    @field_validator("batch_number")
    @classmethod
    def _blank_to_none(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @model_validator(mode="after")
    def _usable_needs_quantity(self) -> "GoodsReceiptLine":
        if self.condition == ReceiptCondition.GOOD and self.received_quantity <= 0:
            raise ValueError("received quantity must be greater than 0 for GOOD lines")
        return self


class GoodsReceipt(BaseModel):
    lines: list[GoodsReceiptLine] = Field(min_length=1)

    @model_validator(mode="after")
    def _unique_lines(self) -> "GoodsReceipt":
        ids = [ln.line_id for ln in self.lines]
        if len(ids) != len(set(ids)):
            raise ValueError("each procurement line may be received only once")
        return self


class ProcurementLineOut(APIModel):
    id: UUID
    consumable_id: UUID
    warehouse_id: UUID
    quantity: Decimal
    received_quantity: Decimal | None = None
    condition: str | None = None
    batch_number: str | None = None
    expiry_date: datetime | None = None
    receipt_notes: str | None = None
    stock_line_id: UUID | None = None


class ProcurementTimelineOut(APIModel):
    id: UUID
    status: str
    actor_id: UUID | None = None
    notes: str | None = None
    created_at: datetime


class ProcurementOut(APIModel):
    id: UUID
    procurement_code: str
    requester_id: UUID
    warehouse_id: UUID
    status: str
    description: str | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime

    lines: list[ProcurementLineOut] = Field(default_factory=list)
    timeline: list[ProcurementTimelineOut] = Field(default_factory=list)
