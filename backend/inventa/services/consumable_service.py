from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from inventa.core.actor import ActorContext
from inventa.core.errors import ConstraintViolation, NotFoundError
from inventa.db.models.adjustment_record import AdjustmentRecord
from inventa.db.models.consumable import Consumable
from inventa.db.models.procurement import ProcurementLine
from inventa.db.models.request import RequestLine
from inventa.db.models.room_stock import RoomStockLine
from inventa.db.models.usage_report import UsageDetail
from inventa.db.models.warehouse_stock import WarehouseStockLine
from inventa.schemas.consumable import ConsumableCreate, ConsumableOut, ConsumableUpdate
from inventa.services import audit_service
from inventa.services.operation import parse_input, requires
from inventa.services.permissions import Capability

logger = logging.getLogger("inventa.catalog")

# Every table holding a consumable_id; a consumable referenced by any of them stays.
_REFERENCING = (
    WarehouseStockLine,
    RoomStockLine,
    RequestLine,
    ProcurementLine,
    UsageDetail,
    AdjustmentRecord,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def _get(session: AsyncSession, consumable_id: UUID) -> Consumable:
    c = await session.get(Consumable, consumable_id)
    if not c:
        raise NotFoundError("consumable not found", detail={"consumable_id": str(consumable_id)})
    return c


async def _ensure_sku_free(session: AsyncSession, sku: str | None, exclude_id: UUID | None = None) -> None:
    if not sku:
        return
    q = select(Consumable.id).where(func.lower(Consumable.sku) == sku.lower())
    if exclude_id is not None:
        q = q.where(Consumable.id != exclude_id)
    if (await session.execute(q)).first() is not None:
        raise ConstraintViolation(f"SKU {sku} is already in use", detail={"sku": sku})


@requires(Capability.CATALOG_WRITE)
async def create_consumable(session: AsyncSession, actor: ActorContext, body: ConsumableCreate) -> ConsumableOut:
    body = parse_input(ConsumableCreate, body)
    await _ensure_sku_free(session, body.sku)
    now = _utcnow()
    c = Consumable(**body.model_dump(), created_at=now, updated_at=now)
    session.add(c)
    await session.flush()
    await audit_service.record(session, actor, "CREATE", Consumable.__tablename__, c.id, new_values=body.model_dump())
    logger.info("consumable created: id=%s sku=%s", c.id, c.sku)
    return ConsumableOut.model_validate(c)


@requires(Capability.CATALOG_WRITE)
async def update_consumable(
    session: AsyncSession, actor: ActorContext, consumable_id: UUID, body: ConsumableUpdate
) -> ConsumableOut:
    body = parse_input(ConsumableUpdate, body)
    c = await _get(session, consumable_id)
    changes = body.model_dump(exclude_unset=True)
    if "sku" in changes:
        await _ensure_sku_free(session, changes["sku"], exclude_id=c.id)
    old = {k: getattr(c, k) for k in changes}
    for k, v in changes.items():
        if v is None and k not in ("sku", "description"):
            continue
        setattr(c, k, v)
    c.updated_at = _utcnow()
    await session.flush()
    await audit_service.record(
        session, actor, "UPDATE", Consumable.__tablename__, c.id, old, {k: getattr(c, k) for k in changes}
    )
    return ConsumableOut.model_validate(c)


@requires(Capability.CATALOG_DELETE)
async def delete_consumable(session: AsyncSession, actor: ActorContext, consumable_id: UUID) -> None:
    c = await _get(session, consumable_id)
    for model in _REFERENCING:
        referenced = (await session.execute(select(exists().where(model.consumable_id == c.id)))).scalar()
        if referenced:
            raise ConstraintViolation(
                f"consumable {c.name} is still referenced and cannot be deleted",
                detail={"consumable_id": str(c.id), "referenced_by": model.__tablename__},
            )
    old = audit_service.snapshot(c)
    await session.delete(c)
    await session.flush()
    await audit_service.record(session, actor, "DELETE", Consumable.__tablename__, consumable_id, old_values=old)
    logger.info("consumable deleted: id=%s", consumable_id)


@requires(Capability.STOCK_READ)
async def list_consumables(
    session: AsyncSession, actor: ActorContext, *, search: str | None = None
) -> list[ConsumableOut]:
    q = select(Consumable)
    if search:
        like = f"%{search.strip()}%"
        q = q.where(Consumable.name.ilike(like) | Consumable.sku.ilike(like))
    rows = (await session.execute(q.order_by(Consumable.name, Consumable.id))).scalars().all()
    return [ConsumableOut.model_validate(r) for r in rows]


@requires(Capability.STOCK_READ)
async def get_consumable(session: AsyncSession, actor: ActorContext, consumable_id: UUID) -> ConsumableOut:
    return ConsumableOut.model_validate(await _get(session, consumable_id))
