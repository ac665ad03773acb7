from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from inventa.schemas.common import APIModel


class ConsumableCreate(BaseModel):
    name: str = Field(min_length=2)
    sku: str | None = Field(default=None, min_length=3)
    base_unit: str = Field(min_length=1)
    minimum_stock: Decimal = Field(default=Decimal("10"), ge=0)
    has_expiry: bool = False
    description: str | None = None


class ConsumableUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=2)
    sku: str | None = Field(default=None, min_length=3)
    base_unit: str | None = Field(default=None, min_length=1)
    minimum_stock: Decimal | None = Field(default=None, ge=0)
    has_expiry: bool | None = None
    description: str | None = None


class ConsumableOut(APIModel):
    id: UUID
    name: str
    sku: str | None = None
    base_unit: str
    minimum_stock: Decimal
    has_expiry: bool
    description: str | None = None
    created_at: datetime
    updated_at: datetime
