from __future__ import annotations

from collections import defaultdict
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from inventa.core.actor import ActorContext
from inventa.core.errors import NotFoundError
from inventa.db.models.consumable import Consumable
from inventa.db.models.organization import Room, Warehouse
from inventa.db.models.room_stock import RoomStockLine
from inventa.db.models.warehouse_stock import WarehouseStockLine
from inventa.schemas.stock import LowStockRow, RoomStockOut, WarehouseStockLineOut, WarehouseStockSummary
from inventa.services import permissions
from inventa.services.operation import requires
from inventa.services.permissions import Capability, Scope
from inventa.services.stock_service import to_quantity


@requires(Capability.STOCK_READ)
async def warehouse_stock(
    session: AsyncSession, actor: ActorContext, warehouse_id: UUID, *, include_empty: bool = False
) -> list[WarehouseStockSummary]:
    """Aggregate quantity per consumable with its batch lines, soonest expiry first."""
    if await session.get(Warehouse, warehouse_id) is None:
        raise NotFoundError("warehouse not found", detail={"warehouse_id": str(warehouse_id)})

    q = (
        select(WarehouseStockLine, Consumable)
        .join(Consumable, Consumable.id == WarehouseStockLine.consumable_id)
        .where(WarehouseStockLine.warehouse_id == warehouse_id)
        .order_by(
            Consumable.name,
            WarehouseStockLine.expiry_date.is_(None),
            WarehouseStockLine.expiry_date,
            WarehouseStockLine.received_at,
        )
    )
    if not include_empty:
        q = q.where(WarehouseStockLine.quantity > 0)

    grouped: dict[UUID, WarehouseStockSummary] = {}
    batches: dict[UUID, list[WarehouseStockLineOut]] = defaultdict(list)
    for line, consumable in (await session.execute(q)).all():
        summary = grouped.get(consumable.id)
        if summary is None:
            summary = WarehouseStockSummary(
                consumable_id=consumable.id,
                consumable_name=consumable.name,
                base_unit=consumable.base_unit,
                total_quantity=Decimal("0.00"),
                batch_count=0,
            )
            grouped[consumable.id] = summary
        summary.total_quantity += to_quantity(line.quantity)
        summary.batch_count += 1
        batches[consumable.id].append(WarehouseStockLineOut.model_validate(line))

    for cid, summary in grouped.items():
        summary.batches = batches[cid]
    return list(grouped.values())


@requires(Capability.STOCK_READ)
async def room_stock(session: AsyncSession, actor: ActorContext, room_id: UUID) -> list[RoomStockOut]:
    room = await session.get(Room, room_id)
    # Rooms of other units are reported as missing.
    if room is None or not permissions.in_scope(actor, Scope(unit_id=room.unit_id)):
        raise NotFoundError("room not found", detail={"room_id": str(room_id)})
    rows = (
        await session.execute(
            select(RoomStockLine).where(RoomStockLine.room_id == room_id).order_by(RoomStockLine.consumable_id)
        )
    ).scalars()
    return [RoomStockOut.model_validate(r) for r in rows]


@requires(Capability.STOCK_READ)
async def low_stock(
    session: AsyncSession, actor: ActorContext, *, warehouse_id: UUID | None = None
) -> list[LowStockRow]:
    """Consumables whose aggregate quantity at a warehouse is under their minimum stock."""
    totals = (
        select(
            WarehouseStockLine.warehouse_id.label("warehouse_id"),
            WarehouseStockLine.consumable_id.label("consumable_id"),
            func.sum(WarehouseStockLine.quantity).label("total"),
        )
        .group_by(WarehouseStockLine.warehouse_id, WarehouseStockLine.consumable_id)
        .subquery()
    )
    q = (
        select(Consumable, totals.c.warehouse_id, totals.c.total)
        .join(totals, totals.c.consumable_id == Consumable.id)
        .where(totals.c.total < Consumable.minimum_stock)
        .order_by(Consumable.name)
    )
    if warehouse_id is not None:
        q = q.where(totals.c.warehouse_id == warehouse_id)
    return [
        LowStockRow(
            consumable_id=c.id,
            consumable_name=c.name,
            warehouse_id=wh,
            total_quantity=to_quantity(total),
            minimum_stock=to_quantity(c.minimum_stock),
        )
        for c, wh, total in (await session.execute(q)).all()
    ]
