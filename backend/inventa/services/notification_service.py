from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from inventa.core.actor import ActorContext, Role
from inventa.core.errors import NotFoundError
from inventa.db.models.notification import Notification, NotificationType
from inventa.db.models.organization import User
from inventa.schemas.notification import NotificationOut

logger = logging.getLogger("inventa.notifications")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def notify_users(
    session: AsyncSession,
    user_ids: Iterable[UUID],
    title: str,
    message: str,
    *,
    link: str | None = None,
    type: NotificationType = NotificationType.INFO,
) -> int:
    """Queue an in-app notification for every known user in `user_ids`; unknown ids are skipped."""
    ids = {u for u in user_ids if u is not None}
    if not ids:
        return 0
    known = (await session.execute(select(User.id).where(User.id.in_(ids)))).scalars().all()
    now = _utcnow()
    for uid in known:
        session.add(
            Notification(user_id=uid, title=title, message=message, type=type.value, link=link, created_at=now)
        )
    await session.flush()
    logger.debug("notifications queued: title=%s recipients=%d", title, len(known))
    return len(known)


async def notify_role(
    session: AsyncSession,
    role: Role,
    title: str,
    message: str,
    *,
    unit_id: UUID | None = None,
    faculty_id: UUID | None = None,
    warehouse_id: UUID | None = None,
    link: str | None = None,
    type: NotificationType = NotificationType.INFO,
) -> int:
    q = select(User.id).where(User.role == role.value)
    if unit_id is not None:
        q = q.where(User.unit_id == unit_id)
    if faculty_id is not None:
        q = q.where(User.faculty_id == faculty_id)
    if warehouse_id is not None:
        q = q.where(User.warehouse_id == warehouse_id)
    ids = (await session.execute(q)).scalars().all()
    return await notify_users(session, ids, title, message, link=link, type=type)


async def list_notifications(
    session: AsyncSession, actor: ActorContext, *, unread_only: bool = False, limit: int = 50
) -> list[NotificationOut]:
    q = select(Notification).where(Notification.user_id == actor.id)
    if unread_only:
        q = q.where(Notification.is_read.is_(False))
    q = q.order_by(Notification.created_at.desc(), Notification.id).limit(max(1, min(int(limit), 200)))
    rows = (await session.execute(q)).scalars().all()
    return [NotificationOut.model_validate(r) for r in rows]


async def mark_read(session: AsyncSession, actor: ActorContext, notification_id: UUID) -> NotificationOut:
    n = await session.get(Notification, notification_id)
    if not n or n.user_id != actor.id:
        raise NotFoundError("notification not found", detail={"notification_id": str(notification_id)})
    n.is_read = True
    await session.flush()
    return NotificationOut.model_validate(n)


async def mark_all_read(session: AsyncSession, actor: ActorContext) -> int:
    res = await session.execute(
        update(Notification)
        .where(Notification.user_id == actor.id, Notification.is_read.is_(False))
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    return int(res.rowcount or 0)


async def delete_notification(session: AsyncSession, actor: ActorContext, notification_id: UUID) -> None:
    res = await session.execute(
        delete(Notification)
        .where(Notification.id == notification_id, Notification.user_id == actor.id)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise NotFoundError("notification not found", detail={"notification_id": str(notification_id)})
