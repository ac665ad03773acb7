from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from inventa.api.deps import get_actor, get_db
from inventa.api.responses import respond
from inventa.core.actor import ActorContext
from inventa.schemas.consumable import ConsumableCreate, ConsumableUpdate
from inventa.services import consumable_service
from inventa.services.operation import run_operation

router = APIRouter(prefix="/consumables", tags=["consumables"])


@router.get("")
async def list_consumables(
    q: str | None = Query(default=None, description="Search by name or SKU"),
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    return respond(await run_operation(db, consumable_service.list_consumables, actor, search=q))


@router.post("")
async def create_consumable(
    body: ConsumableCreate, actor: ActorContext = Depends(get_actor), db: AsyncSession = Depends(get_db)
) -> JSONResponse:
    return respond(await run_operation(db, consumable_service.create_consumable, actor, body), success_status=201)


@router.get("/{consumable_id}")
async def get_consumable(
    consumable_id: UUID, actor: ActorContext = Depends(get_actor), db: AsyncSession = Depends(get_db)
) -> JSONResponse:
    return respond(await run_operation(db, consumable_service.get_consumable, actor, consumable_id))


@router.patch("/{consumable_id}")
async def update_consumable(
    consumable_id: UUID,
    body: ConsumableUpdate,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    return respond(await run_operation(db, consumable_service.update_consumable, actor, consumable_id, body))


@router.delete("/{consumable_id}")
async def delete_consumable(
    consumable_id: UUID, actor: ActorContext = Depends(get_actor), db: AsyncSession = Depends(get_db)
) -> JSONResponse:
    return respond(await run_operation(db, consumable_service.delete_consumable, actor, consumable_id))
