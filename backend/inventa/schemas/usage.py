from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from inventa.schemas.common import APIModel


class UsageLineIn(BaseModel):
    consumable_id: UUID
    quantity: Decimal = Field(gt=0, max_digits=12, decimal_places=2)


class UsageReportCreate(BaseModel):
    room_id: UUID
    activity_name: str = Field(min_length=3)
    activity_date: datetime | None = None
    items: list[UsageLineIn] = Field(min_length=1)

    @model_validator(mode="after")
    def _unique_consumables(self) -> "UsageReportCreate":
        ids = [i.consumable_id for i in self.items]
        if len(ids) != len(set(ids)):
            raise ValueError("each consumable may appear only once per report")
        return self


class UsageReportUpdate(BaseModel):
    activity_name: str = Field(min_length=3)
    items: list[UsageLineIn] = Field(min_length=1)

    @model_validator(mode="after")
    def _unique_consumables(self) -> "UsageReportUpdate":
        ids = [i.consumable_id for i in self.items]
        if len(ids) != len(set(ids)):
            raise ValueError("each consumable may appear only once per report")
        return self


class UsageDetailOut(APIModel):
    id: UUID
    consumable_id: UUID
    qty_used: Decimal


class UsageReportOut(APIModel):
    id: UUID
    reporter_id: UUID
    room_id: UUID
    activity_name: str
    activity_date: datetime
    created_at: datetime
    updated_at: datetime
    details: list[UsageDetailOut] = Field(default_factory=list)
