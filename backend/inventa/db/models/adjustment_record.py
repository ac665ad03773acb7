from __future__ import annotations

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Index, Numeric, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from inventa.db.base import Base


class AdjustmentType(str, enum.Enum):
    STOCK_OPNAME = "STOCK_OPNAME"
    DAMAGE = "DAMAGE"
    LOSS = "LOSS"
    CORRECTION = "CORRECTION"


class AdjustmentRecord(Base):
    """Append-only opname log. Rows are never updated or deleted."""

    __tablename__ = "consumable_adjustments"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    actor_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    consumable_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("consumables.id", ondelete="RESTRICT"), nullable=False
    )
    warehouse_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("warehouses.id", ondelete="RESTRICT"), nullable=False
    )
    stock_line_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("warehouse_stocks.id", ondelete="SET NULL"), nullable=True
    )
    batch_number: Mapped[str | None] = mapped_column(Text, nullable=True)

    delta_quantity: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    type: Mapped[str] = mapped_column(Text, nullable=False, default=AdjustmentType.STOCK_OPNAME.value)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)


Index("ix_consumable_adjustments_wh_consumable", AdjustmentRecord.warehouse_id, AdjustmentRecord.consumable_id)
Index("ix_consumable_adjustments_created_at", AdjustmentRecord.created_at)
