from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from inventa.api.deps import get_actor, get_db
from inventa.api.responses import respond
from inventa.core.actor import ActorContext
from inventa.services import audit_service
from inventa.services.operation import run_operation

router = APIRouter(prefix="/audit-logs", tags=["audit-logs"])


@router.get("")
async def list_audit_logs(
    table_name: str | None = Query(default=None),
    record_id: str | None = Query(default=None),
    action: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    actor: ActorContext = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    return respond(
        await run_operation(
            db,
            audit_service.list_audit_logs,
            actor,
            table_name=table_name,
            record_id=record_id,
            action=action,
            limit=limit,
        )
    )
