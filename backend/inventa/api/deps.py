from __future__ import annotations

from collections.abc import AsyncIterator
from uuid import UUID

from fastapi import Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from inventa.core.actor import ActorContext, Role
from inventa.db.session import get_session as _get_session


async def get_db() -> AsyncIterator[AsyncSession]:
    async for s in _get_session():
        yield s


def _uuid_or_none(value: str | None, header: str) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(value)
    except ValueError:
        raise HTTPException(status_code=401, detail=f"invalid {header} header") from None


async def get_actor(
    x_actor_id: str | None = Header(default=None),
    x_actor_role: str | None = Header(default=None),
    x_actor_name: str | None = Header(default=None),
    x_actor_unit_id: str | None = Header(default=None),
    x_actor_faculty_id: str | None = Header(default=None),
    x_actor_warehouse_id: str | None = Header(default=None),
) -> ActorContext:
    # Identity is established by the upstream auth proxy, which forwards it in these headers.
    actor_id = _uuid_or_none(x_actor_id, "X-Actor-Id")
    if actor_id is None or not x_actor_role:
        raise HTTPException(status_code=401, detail="missing actor identity")
    try:
        role = Role(x_actor_role)
    except ValueError:
        raise HTTPException(status_code=401, detail="unknown actor role") from None
    return ActorContext(
        id=actor_id,
        role=role,
        name=x_actor_name,
        unit_id=_uuid_or_none(x_actor_unit_id, "X-Actor-Unit-Id"),
        faculty_id=_uuid_or_none(x_actor_faculty_id, "X-Actor-Faculty-Id"),
        warehouse_id=_uuid_or_none(x_actor_warehouse_id, "X-Actor-Warehouse-Id"),
    )
