from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic_core import to_jsonable_python
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from inventa.core.actor import ActorContext
from inventa.db.base import Base
from inventa.db.models.audit_log import AuditLogEntry
from inventa.schemas.audit import AuditLogOut
from inventa.services.operation import requires
from inventa.services.permissions import Capability


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def snapshot(row: Base) -> dict[str, Any]:
    """Column values of an ORM row, suitable for old_values/new_values."""
    return {c.key: getattr(row, c.key) for c in row.__table__.columns}


async def record(
    session: AsyncSession,
    actor: ActorContext | None,
    action: str,
    table_name: str,
    record_id: Any,
    old_values: dict[str, Any] | None = None,
    new_values: dict[str, Any] | None = None,
) -> AuditLogEntry:
    entry = AuditLogEntry(
        actor_id=actor.id if actor is not None else None,
        action=action,
        table_name=table_name,
        record_id=str(record_id),
        old_values=to_jsonable_python(old_values) if old_values is not None else None,
        new_values=to_jsonable_python(new_values) if new_values is not None else None,
        created_at=_utcnow(),
    )
    session.add(entry)
    await session.flush()
    return entry


@requires(Capability.AUDIT_READ)
async def list_audit_logs(
    session: AsyncSession,
    actor: ActorContext,
    *,
    table_name: str | None = None,
    record_id: str | None = None,
    action: str | None = None,
    limit: int = 100,
) -> list[AuditLogOut]:
    q = select(AuditLogEntry)
    if table_name:
        q = q.where(AuditLogEntry.table_name == table_name)
    if record_id:
        q = q.where(AuditLogEntry.record_id == record_id)
    if action:
        q = q.where(AuditLogEntry.action == action)
    q = q.order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id).limit(max(1, min(int(limit), 500)))
    rows = (await session.execute(q)).scalars().all()
    return [AuditLogOut.model_validate(r) for r in rows]
