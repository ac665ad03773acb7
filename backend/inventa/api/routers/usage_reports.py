from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from inventa.api.deps import get_actor, get_db
from inventa.api.responses import respond
from inventa.core.actor import ActorContext
from inventa.schemas.usage import UsageReportCreate, UsageReportUpdate
from inventa.services import usage_service
from inventa.services.operation import run_operation

router = APIRouter(prefix="/usage-reports", tags=["usage-reports"])


@router.get("")
async def list_usage_reports(
    room_id: UUID | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    return respond(await run_operation(db, usage_service.list_usage_reports, actor, room_id=room_id, limit=limit))


@router.post("")
async def report_usage(
    body: UsageReportCreate, actor: ActorContext = Depends(get_actor), db: AsyncSession = Depends(get_db)
) -> JSONResponse:
    return respond(await run_operation(db, usage_service.report_usage, actor, body), success_status=201)


@router.put("/{report_id}")
async def update_usage_report(
    report_id: UUID,
    body: UsageReportUpdate,
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    return respond(await run_operation(db, usage_service.update_usage_report, actor, report_id, body))


@router.delete("/{report_id}")
async def delete_usage_report(
    report_id: UUID, actor: ActorContext = Depends(get_actor), db: AsyncSession = Depends(get_db)
) -> JSONResponse:
    return respond(await run_operation(db, usage_service.delete_usage_report, actor, report_id))
