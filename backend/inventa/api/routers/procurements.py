from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from inventa.api.deps import get_actor, get_db
from inventa.api.responses import respond
from inventa.core.actor import ActorContext
from inventa.db.models.procurement import ProcurementStatus
from inventa.schemas.procurement import GoodsReceipt, ProcurementCreate, ProcurementReject
from inventa.services import procurement_service
from inventa.services.operation import run_operation

router = APIRouter(prefix="/procurements", tags=["procurements"])


@router.get("")
async def list_procurements(
    status: ProcurementStatus | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    return respond(
        await run_operation(db, procurement_service.list_procurements, actor, status=status, limit=limit)
    )


@router.post("")
async def create_procurement(
    body: ProcurementCreate, actor: ActorContext = Depends(get_actor), db: AsyncSession = Depends(get_db)
) -> JSONResponse:
    return respond(await run_operation(db, procurement_service.create_procurement, actor, body), success_status=201)


@router.get("/{procurement_id}")
async def get_procurement(
    procurement_id: UUID, actor: ActorContext = Depends(get_actor), db: AsyncSession = Depends(get_db)
) -> JSONResponse:
    return respond(await run_operation(db, procurement_service.get_procurement, actor, procurement_id))


@router.put("/{procurement_id}")
async def update_procurement(
    procurement_id: UUID,
    body: ProcurementCreate,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    return respond(await run_operation(db, procurement_service.update_procurement, actor, procurement_id, body))


@router.delete("/{procurement_id}")
async def delete_procurement(
    procurement_id: UUID, actor: ActorContext = Depends(get_actor), db: AsyncSession = Depends(get_db)
) -> JSONResponse:
    return respond(await run_operation(db, procurement_service.delete_procurement, actor, procurement_id))


@router.post("/{procurement_id}/approve")
async def approve_procurement(
    procurement_id: UUID, actor: ActorContext = Depends(get_actor), db: AsyncSession = Depends(get_db)
) -> JSONResponse:
    return respond(await run_operation(db, procurement_service.approve_procurement, actor, procurement_id))


@router.post("/{procurement_id}/reject")
async def reject_procurement(
    procurement_id: UUID,
    body: ProcurementReject,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    return respond(await run_operation(db, procurement_service.reject_procurement, actor, procurement_id, body))


@router.post("/{procurement_id}/receive")
async def receive_goods(
    procurement_id: UUID,
    body: GoodsReceipt,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    return respond(await run_operation(db, procurement_service.receive_goods, actor, procurement_id, body))
