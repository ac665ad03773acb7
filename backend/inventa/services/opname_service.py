from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from inventa.core.actor import ActorContext, Role
from inventa.db.models.adjustment_record import AdjustmentRecord
from inventa.schemas.stock import AdjustmentOut, OpnameSubmit, ReconcileOut
from inventa.services import stock_service
from inventa.services.operation import parse_input, requires
from inventa.services.permissions import Capability


@requires(Capability.STOCK_ADJUST)
async def submit_opname(session: AsyncSession, actor: ActorContext, body: OpnameSubmit) -> ReconcileOut:
    body = parse_input(OpnameSubmit, body)
    return await stock_service.reconcile(
        session,
        actor,
        body.stock_line_id,
        body.physical_quantity,
        body.reason,
        adjustment_type=body.adjustment_type,
    )


@requires(Capability.STOCK_READ)
async def adjustment_history(
    session: AsyncSession,
    actor: ActorContext,
    *,
    warehouse_id: UUID | None = None,
    consumable_id: UUID | None = None,
    limit: int = 100,
) -> list[AdjustmentOut]:
    if actor.role == Role.WAREHOUSE_STAFF:
        warehouse_id = actor.warehouse_id
    q = select(AdjustmentRecord)
    if warehouse_id is not None:
        q = q.where(AdjustmentRecord.warehouse_id == warehouse_id)
    if consumable_id is not None:
        q = q.where(AdjustmentRecord.consumable_id == consumable_id)
    q = q.order_by(AdjustmentRecord.created_at.desc(), AdjustmentRecord.id).limit(max(1, min(int(limit), 500)))
    rows = (await session.execute(q)).scalars().all()
    return [AdjustmentOut.model_validate(r) for r in rows]
