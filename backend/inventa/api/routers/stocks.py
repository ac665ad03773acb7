from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from inventa.api.deps import get_actor, get_db
from inventa.api.responses import respond
from inventa.core.actor import ActorContext
from inventa.schemas.stock import OpnameSubmit
from inventa.services import inventory_service, opname_service
from inventa.services.operation import run_operation

router = APIRouter(tags=["stocks"])


@router.get("/warehouses/{warehouse_id}/stock")
async def warehouse_stock(
    warehouse_id: UUID,
    include_empty: bool = Query(default=False, description="Include drained batch lines"),
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    return respond(
        await run_operation(db, inventory_service.warehouse_stock, actor, warehouse_id, include_empty=include_empty)
    )


@router.get("/rooms/{room_id}/stock")
async def room_stock(
    room_id: UUID, actor: ActorContext = Depends(get_actor), db: AsyncSession = Depends(get_db)
) -> JSONResponse:
    return respond(await run_operation(db, inventory_service.room_stock, actor, room_id))


@router.get("/stock/low")
async def low_stock(
    warehouse_id: UUID | None = Query(default=None),
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    return respond(await run_operation(db, inventory_service.low_stock, actor, warehouse_id=warehouse_id))


@router.post("/stock/opname")
async def submit_opname(
    body: OpnameSubmit, actor: ActorContext = Depends(get_actor), db: AsyncSession = Depends(get_db)
) -> JSONResponse:
    return respond(await run_operation(db, opname_service.submit_opname, actor, body))


@router.get("/stock/adjustments")
async def adjustment_history(
    warehouse_id: UUID | None = Query(default=None),
    consumable_id: UUID | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    return respond(
        await run_operation(
            db,
            opname_service.adjustment_history,
            actor,
            warehouse_id=warehouse_id,
            consumable_id=consumable_id,
            limit=limit,
        )
    )
