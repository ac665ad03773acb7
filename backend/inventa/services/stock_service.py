from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from inventa.core.actor import ActorContext
from inventa.core.config import settings
from inventa.core.errors import CrossWarehouseAccessDenied, InsufficientStock, LineNotFound, ValidationError
from inventa.db.models.adjustment_record import AdjustmentRecord, AdjustmentType
from inventa.db.models.room_stock import RoomStockLine
from inventa.db.models.warehouse_stock import WarehouseStockLine
from inventa.schemas.stock import ReconcileOut
from inventa.services import audit_service, permissions
from inventa.services.permissions import Capability, Scope

logger = logging.getLogger("inventa.stock")

_Q = Decimal("0.01")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_quantity(v: Decimal | int | float | str) -> Decimal:
    return Decimal(str(v)).quantize(_Q, rounding=ROUND_HALF_UP)


def _positive(quantity: Decimal | int | float | str) -> Decimal:
    q = to_quantity(quantity)
    if q <= 0:
        raise ValidationError("quantity must be greater than 0", detail={"quantity": str(q)})
    return q


@dataclass(frozen=True)
class BatchDraw:
    stock_line_id: UUID
    batch_number: str | None
    quantity: Decimal


async def aggregate_quantity(session: AsyncSession, warehouse_id: UUID, consumable_id: UUID) -> Decimal:
    total = (
        await session.execute(
            select(func.coalesce(func.sum(WarehouseStockLine.quantity), 0)).where(
                WarehouseStockLine.warehouse_id == warehouse_id,
                WarehouseStockLine.consumable_id == consumable_id,
            )
        )
    ).scalar_one()
    return to_quantity(total)


async def _take_from_line(session: AsyncSession, line_id: UUID, take: Decimal) -> None:
    # Conditional decrement: never lets a concurrent writer push the line below zero.
    res = await session.execute(
        update(WarehouseStockLine)
        .where(WarehouseStockLine.id == line_id, WarehouseStockLine.quantity >= take)
        .values(quantity=WarehouseStockLine.quantity - take, updated_at=_utcnow())
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise InsufficientStock(
            "stock changed while it was being taken, please retry",
            detail={"stock_line_id": str(line_id), "quantity": str(take)},
        )


async def decrement_batch(
    session: AsyncSession,
    actor: ActorContext | None,
    warehouse_id: UUID,
    consumable_id: UUID,
    quantity: Decimal,
    *,
    reason: str | None = None,
) -> list[BatchDraw]:
    """
    Take `quantity` of a consumable out of a warehouse.

    The aggregate across all batch lines must cover the amount. Lines are drained
    in receipt order (oldest first); drained lines stay at zero. Either the whole
    amount is taken or nothing is.
    """
    need = _positive(quantity)
    lines = (
        (
            await session.execute(
                select(WarehouseStockLine)
                .where(
                    WarehouseStockLine.warehouse_id == warehouse_id,
                    WarehouseStockLine.consumable_id == consumable_id,
                    WarehouseStockLine.quantity > 0,
                )
                .order_by(WarehouseStockLine.received_at, WarehouseStockLine.id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        )
        .scalars()
        .all()
    )
    available = sum((to_quantity(ln.quantity) for ln in lines), Decimal("0"))
    if available < need:
        raise InsufficientStock(
            "insufficient warehouse stock",
            detail={
                "warehouse_id": str(warehouse_id),
                "consumable_id": str(consumable_id),
                "requested": str(need),
                "available": str(available),
            },
        )

    draws: list[BatchDraw] = []
    remaining = need
    for ln in lines:
        if remaining <= 0:
            break
        before = to_quantity(ln.quantity)
        take = min(before, remaining)
        await _take_from_line(session, ln.id, take)
        remaining -= take
        draws.append(BatchDraw(stock_line_id=ln.id, batch_number=ln.batch_number, quantity=take))
        logger.info(
            "warehouse line decremented: line=%s before=%s delta=-%s after=%s reason=%s",
            ln.id,
            before,
            take,
            before - take,
            reason,
        )
        await audit_service.record(
            session,
            actor,
            "UPDATE",
            WarehouseStockLine.__tablename__,
            ln.id,
            old_values={"quantity": before},
            new_values={"quantity": before - take, "reason": reason},
        )

    logger.debug(
        "warehouse stock decremented: warehouse=%s consumable=%s qty=%s lines=%d reason=%s",
        warehouse_id,
        consumable_id,
        need,
        len(draws),
        reason,
    )
    return draws


async def increment_batch(
    session: AsyncSession,
    actor: ActorContext | None,
    warehouse_id: UUID,
    consumable_id: UUID,
    quantity: Decimal,
    batch_number: str | None = None,
    expiry_date: datetime | None = None,
    *,
    reason: str | None = None,
) -> WarehouseStockLine:
    """Receive stock as a new batch line. Existing lines are never merged into."""
    q = _positive(quantity)
    now = _utcnow()
    line = WarehouseStockLine(
        warehouse_id=warehouse_id,
        consumable_id=consumable_id,
        quantity=q,
        batch_number=batch_number,
        expiry_date=expiry_date,
        received_at=now,
        updated_at=now,
    )
    session.add(line)
    await session.flush()
    await audit_service.record(
        session,
        actor,
        "CREATE",
        WarehouseStockLine.__tablename__,
        line.id,
        new_values={
            "warehouse_id": warehouse_id,
            "consumable_id": consumable_id,
            "quantity": q,
            "batch_number": batch_number,
            "expiry_date": expiry_date,
            "reason": reason,
        },
    )
    logger.info(
        "warehouse stock received: warehouse=%s consumable=%s qty=%s batch=%s line=%s",
        warehouse_id,
        consumable_id,
        q,
        batch_number,
        line.id,
    )
    return line


async def room_line(session: AsyncSession, room_id: UUID, consumable_id: UUID) -> RoomStockLine | None:
    return (
        await session.execute(
            select(RoomStockLine)
            .where(RoomStockLine.room_id == room_id, RoomStockLine.consumable_id == consumable_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()


async def decrement_room(
    session: AsyncSession,
    actor: ActorContext | None,
    room_id: UUID,
    consumable_id: UUID,
    quantity: Decimal,
    *,
    reason: str | None = None,
) -> RoomStockLine:
    need = _positive(quantity)
    line = await room_line(session, room_id, consumable_id)
    available = to_quantity(line.quantity) if line is not None else Decimal("0.00")
    if line is None or available < need:
        raise InsufficientStock(
            "insufficient room stock",
            detail={
                "room_id": str(room_id),
                "consumable_id": str(consumable_id),
                "requested": str(need),
                "available": str(available),
            },
        )

    res = await session.execute(
        update(RoomStockLine)
        .where(RoomStockLine.id == line.id, RoomStockLine.quantity >= need)
        .values(quantity=RoomStockLine.quantity - need, updated_at=_utcnow())
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise InsufficientStock(
            "room stock changed while it was being taken, please retry",
            detail={"room_id": str(room_id), "consumable_id": str(consumable_id)},
        )
    await session.refresh(line)

    await audit_service.record(
        session,
        actor,
        "UPDATE",
        RoomStockLine.__tablename__,
        line.id,
        old_values={"quantity": available},
        new_values={"quantity": available - need, "reason": reason},
    )
    logger.info(
        "room stock decremented: line=%s before=%s delta=-%s after=%s reason=%s",
        line.id,
        available,
        need,
        available - need,
        reason,
    )
    return line


async def increment_room(
    session: AsyncSession,
    actor: ActorContext | None,
    room_id: UUID,
    consumable_id: UUID,
    quantity: Decimal,
    *,
    reason: str | None = None,
) -> RoomStockLine:
    q = _positive(quantity)
    now = _utcnow()
    line = await room_line(session, room_id, consumable_id)
    if line is None:
        line = RoomStockLine(room_id=room_id, consumable_id=consumable_id, quantity=q, created_at=now, updated_at=now)
        session.add(line)
        await session.flush()
        await audit_service.record(
            session,
            actor,
            "CREATE",
            RoomStockLine.__tablename__,
            line.id,
            new_values={"room_id": room_id, "consumable_id": consumable_id, "quantity": q, "reason": reason},
        )
    else:
        before = to_quantity(line.quantity)
        line.quantity = before + q
        line.updated_at = now
        await session.flush()
        await audit_service.record(
            session,
            actor,
            "UPDATE",
            RoomStockLine.__tablename__,
            line.id,
            old_values={"quantity": before},
            new_values={"quantity": before + q, "reason": reason},
        )
    logger.info(
        "room stock incremented: line=%s room=%s consumable=%s delta=%s reason=%s", line.id, room_id, consumable_id, q, reason
    )
    return line


async def reconcile(
    session: AsyncSession,
    actor: ActorContext,
    stock_line_id: UUID,
    physical_quantity: Decimal,
    reason: str,
    adjustment_type: AdjustmentType = AdjustmentType.STOCK_OPNAME,
) -> ReconcileOut:
    """
    Set one warehouse batch line to a physically counted quantity.

    Writes one adjustment record and one audit entry for a non-zero delta and
    nothing at all otherwise, so submitting the same count twice is a no-op.
    """
    reason = (reason or "").strip()
    if len(reason) < settings.opname_reason_min_length:
        raise ValidationError(
            f"reason must be at least {settings.opname_reason_min_length} characters",
            detail={"field": "reason"},
        )
    physical = to_quantity(physical_quantity)
    if physical < 0:
        raise ValidationError("physical quantity cannot be negative", detail={"field": "physical_quantity"})

    line = (
        await session.execute(
            select(WarehouseStockLine)
            .where(WarehouseStockLine.id == stock_line_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if line is None:
        raise LineNotFound("stock line not found", detail={"stock_line_id": str(stock_line_id)})

    permissions.require(
        actor,
        Capability.STOCK_ADJUST,
        Scope(warehouse_id=line.warehouse_id),
        error_cls=CrossWarehouseAccessDenied,
    )

    system = to_quantity(line.quantity)
    delta = physical - system
    if delta == 0:
        return ReconcileOut(
            stock_line_id=line.id,
            changed=False,
            system_quantity=system,
            physical_quantity=physical,
            delta=delta,
        )

    line.quantity = physical
    line.updated_at = _utcnow()
    adj = AdjustmentRecord(
        actor_id=actor.id,
        consumable_id=line.consumable_id,
        warehouse_id=line.warehouse_id,
        stock_line_id=line.id,
        batch_number=line.batch_number,
        delta_quantity=delta,
        type=adjustment_type.value,
        reason=reason,
        created_at=_utcnow(),
    )
    session.add(adj)
    await session.flush()
    await audit_service.record(
        session,
        actor,
        adjustment_type.value,
        WarehouseStockLine.__tablename__,
        line.id,
        old_values={"quantity": system},
        new_values={"quantity": physical, "delta": delta, "reason": reason, "adjustment_id": adj.id},
    )
    logger.info(
        "stock reconciled: line=%s warehouse=%s consumable=%s system=%s physical=%s delta=%s type=%s",
        line.id,
        line.warehouse_id,
        line.consumable_id,
        system,
        physical,
        delta,
        adjustment_type.value,
    )
    return ReconcileOut(
        stock_line_id=line.id,
        changed=True,
        system_quantity=system,
        physical_quantity=physical,
        delta=delta,
        adjustment_id=adj.id,
    )
