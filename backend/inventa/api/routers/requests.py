from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from inventa.api.deps import get_actor, get_db
from inventa.api.responses import respond
from inventa.core.actor import ActorContext
from inventa.db.models.request import RequestStatus
from inventa.schemas.request import PickupScan, RequestCreate, RequestReject
from inventa.services import request_service
from inventa.services.operation import run_operation

router = APIRouter(prefix="/requests", tags=["requests"])


@router.get("")
async def list_requests(
    status: RequestStatus | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    return respond(await run_operation(db, request_service.list_requests, actor, status=status, limit=limit))


@router.post("")
async def create_request(
    body: RequestCreate, actor: ActorContext = Depends(get_actor), db: AsyncSession = Depends(get_db)
) -> JSONResponse:
    return respond(await run_operation(db, request_service.create_request, actor, body), success_status=201)


@router.post("/pickup")
async def complete_pickup(
    body: PickupScan, actor: ActorContext = Depends(get_actor), db: AsyncSession = Depends(get_db)
) -> JSONResponse:
    return respond(await run_operation(db, request_service.complete_pickup, actor, body.token))


@router.get("/{request_id}")
async def get_request(
    request_id: UUID, actor: ActorContext = Depends(get_actor), db: AsyncSession = Depends(get_db)
) -> JSONResponse:
    return respond(await run_operation(db, request_service.get_request, actor, request_id))


@router.put("/{request_id}")
async def update_request(
    request_id: UUID,
    body: RequestCreate,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    return respond(await run_operation(db, request_service.update_request, actor, request_id, body))


@router.delete("/{request_id}")
async def cancel_request(
    request_id: UUID, actor: ActorContext = Depends(get_actor), db: AsyncSession = Depends(get_db)
) -> JSONResponse:
    return respond(await run_operation(db, request_service.cancel_request, actor, request_id))


@router.post("/{request_id}/approve")
async def approve_request(
    request_id: UUID, actor: ActorContext = Depends(get_actor), db: AsyncSession = Depends(get_db)
) -> JSONResponse:
    return respond(await run_operation(db, request_service.approve_request, actor, request_id))


@router.post("/{request_id}/reject")
async def reject_request(
    request_id: UUID,
    body: RequestReject,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    return respond(await run_operation(db, request_service.reject_request, actor, request_id, body))


@router.post("/{request_id}/process")
async def begin_fulfillment(
    request_id: UUID, actor: ActorContext = Depends(get_actor), db: AsyncSession = Depends(get_db)
) -> JSONResponse:
    return respond(await run_operation(db, request_service.begin_fulfillment, actor, request_id))


@router.post("/{request_id}/ready")
async def mark_ready(
    request_id: UUID, actor: ActorContext = Depends(get_actor), db: AsyncSession = Depends(get_db)
) -> JSONResponse:
    return respond(await run_operation(db, request_service.mark_ready, actor, request_id))
