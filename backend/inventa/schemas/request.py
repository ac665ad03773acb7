from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, computed_field, field_validator, model_validator

from inventa.schemas.common import APIModel


class RequestLineIn(BaseModel):
    consumable_id: UUID
    quantity: Decimal = Field(gt=0, max_digits=12, decimal_places=2)


class RequestCreate(BaseModel):
    target_warehouse_id: UUID
    room_id: UUID
    description: str | None = None
    items: list[RequestLineIn] = Field(min_length=1)

    @model_validator(mode="after")
    def _unique_consumables(self) -> "RequestCreate":
        ids = [i.consumable_id for i in self.items]
        if len(ids) != len(set(ids)):
            raise ValueError("each consumable may appear only once per request")
        return self


class RequestReject(BaseModel):
    reason: str

    @field_validator("reason")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("rejection reason is required")
        return v


class PickupScan(BaseModel):
    token: str = Field(min_length=1)


class RequestLineOut(APIModel):
    id: UUID
    consumable_id: UUID
    qty_requested: Decimal
    qty_approved: Decimal | None = None


class RequestTimelineOut(APIModel):
    id: UUID
    status: str
    actor_id: UUID | None = None
    notes: str | None = None
    created_at: datetime


class RequestOut(APIModel):
    id: UUID
    request_code: str
    requester_id: UUID
    room_id: UUID
    target_warehouse_id: UUID
    status: str
    description: str | None = None
    rejection_reason: str | None = None
    approved_by_unit_id: UUID | None = None
    approved_by_faculty_id: UUID | None = None
    created_at: datetime
    updated_at: datetime

    lines: list[RequestLineOut] = Field(default_factory=list)
    timeline: list[RequestTimelineOut] = Field(default_factory=list)

    @computed_field
    @property
    def pickup_token(self) -> str:
        return str(self.id)
