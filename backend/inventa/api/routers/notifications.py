from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from inventa.api.deps import get_actor, get_db
from inventa.api.responses import respond
from inventa.core.actor import ActorContext
from inventa.services import notification_service
from inventa.services.operation import run_operation

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
async def list_notifications(
    unread_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    return respond(
        await run_operation(
            db, notification_service.list_notifications, actor, unread_only=unread_only, limit=limit
        )
    )


@router.post("/read-all")
async def mark_all_read(actor: ActorContext = Depends(get_actor), db: AsyncSession = Depends(get_db)) -> JSONResponse:
    return respond(await run_operation(db, notification_service.mark_all_read, actor))


@router.post("/{notification_id}/read")
async def mark_read(
    notification_id: UUID, actor: ActorContext = Depends(get_actor), db: AsyncSession = Depends(get_db)
) -> JSONResponse:
    return respond(await run_operation(db, notification_service.mark_read, actor, notification_id))


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: UUID, actor: ActorContext = Depends(get_actor), db: AsyncSession = Depends(get_db)
) -> JSONResponse:
    return respond(await run_operation(db, notification_service.delete_notification, actor, notification_id))
