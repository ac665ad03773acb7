from __future__ import annotations

import logging
import secrets
import string
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from inventa.core.actor import ActorContext, Role
from inventa.core.config import settings
from inventa.core.errors import (
    AuthorizationError,
    InsufficientStock,
    InvalidRoom,
    InvalidStateTransition,
    NotFoundError,
)
from inventa.db.models.consumable import Consumable
from inventa.db.models.notification import NotificationType
from inventa.db.models.organization import Room, Unit, Warehouse
from inventa.db.models.request import Request, RequestLine, RequestStatus, RequestTimeline
from inventa.schemas.request import (
    RequestCreate,
    RequestLineIn,
    RequestLineOut,
    RequestOut,
    RequestReject,
    RequestTimelineOut,
)
from inventa.services import audit_service, notification_service, permissions, stock_service
from inventa.services.operation import parse_input, requires
from inventa.services.permissions import Capability, Scope

logger = logging.getLogger("inventa.requests")

_CODE_ALPHABET = string.ascii_uppercase + string.digits

# Approval tiers: current status -> (capability needed, next status)
_APPROVAL_TIERS: dict[RequestStatus, tuple[Capability, RequestStatus]] = {
    RequestStatus.PENDING_UNIT: (Capability.REQUEST_APPROVE_UNIT, RequestStatus.PENDING_FACULTY),
    RequestStatus.PENDING_FACULTY: (Capability.REQUEST_APPROVE_FACULTY, RequestStatus.APPROVED),
}

# Warehouse steps without stock effect: target status -> required current status
_WAREHOUSE_STEPS: dict[RequestStatus, RequestStatus] = {
    RequestStatus.PROCESSING: RequestStatus.APPROVED,
    RequestStatus.READY_TO_PICKUP: RequestStatus.PROCESSING,
}

_EDITABLE = (RequestStatus.PENDING_UNIT, RequestStatus.REJECTED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_request_code(now: datetime | None = None) -> str:
    now = now or _utcnow()
    suffix = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(5))
    return f"{settings.request_code_prefix}/{now:%Y%m%d}/{suffix}"


def _link(req: Request) -> str:
    return f"/requests/{req.id}"


async def _load(session: AsyncSession, request_id: UUID, *, lock: bool = True) -> Request:
    q = select(Request).where(Request.id == request_id)
    if lock:
        q = q.with_for_update()
    req = (await session.execute(q.execution_options(populate_existing=True))).scalar_one_or_none()
    if req is None:
        raise NotFoundError("request not found", detail={"request_id": str(request_id)})
    return req


async def _scope(session: AsyncSession, req: Request) -> Scope:
    room = await session.get(Room, req.room_id)
    unit = await session.get(Unit, room.unit_id) if room is not None and room.unit_id else None
    return Scope(
        unit_id=room.unit_id if room is not None else None,
        faculty_id=unit.faculty_id if unit is not None else None,
        warehouse_id=req.target_warehouse_id,
    )


async def _lines(session: AsyncSession, request_id: UUID) -> list[RequestLine]:
    rows = await session.execute(
        select(RequestLine).where(RequestLine.request_id == request_id).order_by(RequestLine.id)
    )
    return list(rows.scalars().all())


async def _to_out(session: AsyncSession, req: Request) -> RequestOut:
    timeline = (
        await session.execute(
            select(RequestTimeline)
            .where(RequestTimeline.request_id == req.id)
            .order_by(RequestTimeline.created_at, RequestTimeline.id)
        )
    ).scalars()
    out = RequestOut.model_validate(req)
    out.lines = [RequestLineOut.model_validate(ln) for ln in await _lines(session, req.id)]
    out.timeline = [RequestTimelineOut.model_validate(t) for t in timeline]
    return out


def _add_timeline(session: AsyncSession, req: Request, actor: ActorContext, notes: str | None = None) -> None:
    session.add(
        RequestTimeline(request_id=req.id, status=req.status, actor_id=actor.id, notes=notes, created_at=_utcnow())
    )


def _summary(req: Request) -> dict:
    return {
        "request_code": req.request_code,
        "status": req.status,
        "room_id": req.room_id,
        "target_warehouse_id": req.target_warehouse_id,
        "rejection_reason": req.rejection_reason,
        "approved_by_unit_id": req.approved_by_unit_id,
        "approved_by_faculty_id": req.approved_by_faculty_id,
    }


def _lines_summary(lines: list[RequestLine]) -> list[dict]:
    return [
        {"consumable_id": ln.consumable_id, "qty_requested": ln.qty_requested, "qty_approved": ln.qty_approved}
        for ln in lines
    ]


async def _check_destination(session: AsyncSession, actor: ActorContext, room_id: UUID, warehouse_id: UUID) -> Room:
    if actor.unit_id is None:
        raise AuthorizationError("your account is not assigned to a unit")
    room = await session.get(Room, room_id)
    if room is None or room.unit_id != actor.unit_id:
        raise InvalidRoom("room does not belong to your unit", detail={"room_id": str(room_id)})
    if await session.get(Warehouse, warehouse_id) is None:
        raise NotFoundError("warehouse not found", detail={"warehouse_id": str(warehouse_id)})
    return room


async def _check_availability(session: AsyncSession, warehouse_id: UUID, items: list[RequestLineIn]) -> None:
    # Read-only: nothing is reserved until pickup.
    for item in items:
        consumable = await session.get(Consumable, item.consumable_id)
        if consumable is None:
            raise NotFoundError("consumable not found", detail={"consumable_id": str(item.consumable_id)})
        available = await stock_service.aggregate_quantity(session, warehouse_id, item.consumable_id)
        if available < item.quantity:
            raise InsufficientStock(
                f"insufficient stock for {consumable.name}",
                detail={
                    "consumable_id": str(item.consumable_id),
                    "requested": str(item.quantity),
                    "available": str(available),
                },
            )


async def _notify_approvers(session: AsyncSession, req: Request, unit_id: UUID | None) -> None:
    if req.status == RequestStatus.PENDING_UNIT.value:
        await notification_service.notify_role(
            session,
            Role.UNIT_ADMIN,
            "Request awaiting unit approval",
            f"Request {req.request_code} needs your approval.",
            unit_id=unit_id,
            link=_link(req),
        )
    elif req.status == RequestStatus.PENDING_FACULTY.value:
        unit = await session.get(Unit, unit_id) if unit_id else None
        await notification_service.notify_role(
            session,
            Role.FACULTY_ADMIN,
            "Request awaiting faculty approval",
            f"Request {req.request_code} needs your approval.",
            faculty_id=unit.faculty_id if unit is not None else None,
            link=_link(req),
        )
    elif req.status == RequestStatus.APPROVED.value:
        await notification_service.notify_role(
            session,
            Role.WAREHOUSE_STAFF,
            "New request to fulfill",
            f"Request {req.request_code} is approved and ready to be processed.",
            warehouse_id=req.target_warehouse_id,
            link=_link(req),
        )


def _initial_status(actor: ActorContext) -> RequestStatus:
    # Unit admins skip their own approval tier.
    return RequestStatus.PENDING_FACULTY if actor.role == Role.UNIT_ADMIN else RequestStatus.PENDING_UNIT


@requires(Capability.REQUEST_CREATE)
async def create_request(session: AsyncSession, actor: ActorContext, body: RequestCreate) -> RequestOut:
    body = parse_input(RequestCreate, body)
    await _check_destination(session, actor, body.room_id, body.target_warehouse_id)
    await _check_availability(session, body.target_warehouse_id, body.items)

    status = _initial_status(actor)
    now = _utcnow()
    req = Request(
        request_code=new_request_code(now),
        requester_id=actor.id,
        room_id=body.room_id,
        target_warehouse_id=body.target_warehouse_id,
        status=status.value,
        description=body.description,
        approved_by_unit_id=actor.id if status == RequestStatus.PENDING_FACULTY else None,
        created_at=now,
        updated_at=now,
    )
    session.add(req)
    await session.flush()
    lines = [
        RequestLine(request_id=req.id, consumable_id=i.consumable_id, qty_requested=i.quantity) for i in body.items
    ]
    session.add_all(lines)
    _add_timeline(session, req, actor, "request created")
    await session.flush()

    await audit_service.record(
        session,
        actor,
        "CREATE",
        Request.__tablename__,
        req.id,
        new_values={**_summary(req), "lines": _lines_summary(lines)},
    )
    await _notify_approvers(session, req, actor.unit_id)
    logger.info("request created: id=%s code=%s status=%s lines=%d", req.id, req.request_code, req.status, len(lines))
    return await _to_out(session, req)


@requires(Capability.REQUEST_UPDATE)
async def update_request(
    session: AsyncSession, actor: ActorContext, request_id: UUID, body: RequestCreate
) -> RequestOut:
    body = parse_input(RequestCreate, body)
    req = await _load(session, request_id)
    scope = await _scope(session, req)
    if req.requester_id != actor.id and not (
        actor.role == Role.UNIT_ADMIN and permissions.in_scope(actor, scope)
    ):
        raise AuthorizationError("only the requester or their unit admin may edit this request")
    if req.status not in {s.value for s in _EDITABLE}:
        raise InvalidStateTransition(
            f"request in status {req.status} can no longer be edited",
            detail={"status": req.status},
        )
    await _check_destination(session, actor, body.room_id, body.target_warehouse_id)
    await _check_availability(session, body.target_warehouse_id, body.items)

    old_lines = await _lines(session, req.id)
    old = {**_summary(req), "lines": _lines_summary(old_lines)}

    await session.execute(
        delete(RequestLine).where(RequestLine.request_id == req.id).execution_options(synchronize_session=False)
    )
    for ln in old_lines:
        session.expunge(ln)
    new_lines = [
        RequestLine(request_id=req.id, consumable_id=i.consumable_id, qty_requested=i.quantity) for i in body.items
    ]
    session.add_all(new_lines)

    req.room_id = body.room_id
    req.target_warehouse_id = body.target_warehouse_id
    req.description = body.description
    req.status = RequestStatus.PENDING_UNIT.value
    req.rejection_reason = None
    req.approved_by_unit_id = None
    req.approved_by_faculty_id = None
    req.updated_at = _utcnow()
    _add_timeline(session, req, actor, "request revised")
    await session.flush()

    await audit_service.record(
        session,
        actor,
        "UPDATE",
        Request.__tablename__,
        req.id,
        old_values=old,
        new_values={**_summary(req), "lines": _lines_summary(new_lines)},
    )
    await _notify_approvers(session, req, scope.unit_id)
    logger.info("request revised: id=%s code=%s lines=%d", req.id, req.request_code, len(new_lines))
    return await _to_out(session, req)


@requires(Capability.REQUEST_APPROVE_UNIT, Capability.REQUEST_APPROVE_FACULTY)
async def approve_request(session: AsyncSession, actor: ActorContext, request_id: UUID) -> RequestOut:
    req = await _load(session, request_id)
    current = RequestStatus(req.status)
    if current not in _APPROVAL_TIERS:
        raise InvalidStateTransition(f"request in status {req.status} cannot be approved", detail={"status": req.status})
    capability, nxt = _APPROVAL_TIERS[current]
    scope = await _scope(session, req)
    permissions.require(actor, capability, scope)

    old = _summary(req)
    req.status = nxt.value
    req.updated_at = _utcnow()
    if current == RequestStatus.PENDING_UNIT:
        req.approved_by_unit_id = actor.id
        note = "approved by unit"
    else:
        req.approved_by_faculty_id = actor.id
        for ln in await _lines(session, req.id):
            ln.qty_approved = ln.qty_requested
        note = "approved by faculty"
    _add_timeline(session, req, actor, note)
    await session.flush()

    await audit_service.record(session, actor, "APPROVE", Request.__tablename__, req.id, old, _summary(req))
    await _notify_approvers(session, req, scope.unit_id)
    await notification_service.notify_users(
        session,
        [req.requester_id],
        "Request approved",
        f"Request {req.request_code} was {note}.",
        link=_link(req),
        type=NotificationType.SUCCESS,
    )
    logger.info("request approved: id=%s from=%s to=%s actor=%s", req.id, current.value, nxt.value, actor.id)
    return await _to_out(session, req)


@requires(Capability.REQUEST_APPROVE_UNIT, Capability.REQUEST_APPROVE_FACULTY)
async def reject_request(
    session: AsyncSession, actor: ActorContext, request_id: UUID, body: RequestReject
) -> RequestOut:
    body = parse_input(RequestReject, body)
    req = await _load(session, request_id)
    current = RequestStatus(req.status)
    if current not in _APPROVAL_TIERS:
        raise InvalidStateTransition(f"request in status {req.status} cannot be rejected", detail={"status": req.status})
    capability, _ = _APPROVAL_TIERS[current]
    permissions.require(actor, capability, await _scope(session, req))

    old = _summary(req)
    req.status = RequestStatus.REJECTED.value
    req.rejection_reason = body.reason
    req.updated_at = _utcnow()
    _add_timeline(session, req, actor, body.reason)
    await session.flush()

    await audit_service.record(session, actor, "REJECT", Request.__tablename__, req.id, old, _summary(req))
    await notification_service.notify_users(
        session,
        [req.requester_id],
        "Request rejected",
        f"Request {req.request_code} was rejected: {body.reason}",
        link=_link(req),
        type=NotificationType.ERROR,
    )
    logger.info("request rejected: id=%s from=%s actor=%s", req.id, current.value, actor.id)
    return await _to_out(session, req)


@requires(Capability.REQUEST_CANCEL)
async def cancel_request(session: AsyncSession, actor: ActorContext, request_id: UUID) -> None:
    """Withdraw a request that nobody has approved yet. The row and its lines are deleted."""
    req = await _load(session, request_id)
    if req.requester_id != actor.id and not (
        actor.role == Role.UNIT_ADMIN and permissions.in_scope(actor, await _scope(session, req))
    ):
        raise AuthorizationError("only the requester or their unit admin may cancel this request")
    if req.status != RequestStatus.PENDING_UNIT.value:
        raise InvalidStateTransition(f"request in status {req.status} cannot be canceled", detail={"status": req.status})

    lines = await _lines(session, req.id)
    old = {**audit_service.snapshot(req), "lines": _lines_summary(lines)}
    await session.execute(
        delete(RequestTimeline)
        .where(RequestTimeline.request_id == req.id)
        .execution_options(synchronize_session=False)
    )
    await session.execute(
        delete(RequestLine).where(RequestLine.request_id == req.id).execution_options(synchronize_session=False)
    )
    for ln in lines:
        session.expunge(ln)
    await session.delete(req)
    await session.flush()

    await audit_service.record(
        session,
        actor,
        "DELETE",
        Request.__tablename__,
        request_id,
        old_values=old,
        new_values={"status": RequestStatus.CANCELED.value},
    )
    logger.info("request canceled: id=%s code=%s actor=%s", request_id, old["request_code"], actor.id)


async def _advance_warehouse_step(
    session: AsyncSession, actor: ActorContext, request_id: UUID, target: RequestStatus, note: str
) -> RequestOut:
    req = await _load(session, request_id)
    permissions.require(actor, Capability.REQUEST_FULFILL, Scope(warehouse_id=req.target_warehouse_id))
    required = _WAREHOUSE_STEPS[target]
    if req.status != required.value:
        raise InvalidStateTransition(
            f"request must be {required.value} to move to {target.value}, not {req.status}",
            detail={"status": req.status},
        )
    old = _summary(req)
    req.status = target.value
    req.updated_at = _utcnow()
    _add_timeline(session, req, actor, note)
    await session.flush()
    await audit_service.record(session, actor, "UPDATE", Request.__tablename__, req.id, old, _summary(req))
    return req


@requires(Capability.REQUEST_FULFILL)
async def begin_fulfillment(session: AsyncSession, actor: ActorContext, request_id: UUID) -> RequestOut:
    req = await _advance_warehouse_step(session, actor, request_id, RequestStatus.PROCESSING, "processing started")
    await notification_service.notify_users(
        session, [req.requester_id], "Request in process", f"Request {req.request_code} is being prepared.",
        link=_link(req),
    )
    logger.info("request processing: id=%s actor=%s", req.id, actor.id)
    return await _to_out(session, req)


@requires(Capability.REQUEST_FULFILL)
async def mark_ready(session: AsyncSession, actor: ActorContext, request_id: UUID) -> RequestOut:
    req = await _advance_warehouse_step(session, actor, request_id, RequestStatus.READY_TO_PICKUP, "ready for pickup")
    await notification_service.notify_users(
        session,
        [req.requester_id],
        "Request ready for pickup",
        f"Request {req.request_code} is ready. Show your pickup code at the warehouse.",
        link=_link(req),
        type=NotificationType.SUCCESS,
    )
    logger.info("request ready: id=%s actor=%s", req.id, actor.id)
    return await _to_out(session, req)


@requires(Capability.REQUEST_FULFILL)
async def complete_pickup(session: AsyncSession, actor: ActorContext, token: str) -> RequestOut:
    """
    Hand over a ready request. The scanned token is the request id.

    This is the only request transition that moves stock: each line leaves the
    target warehouse and lands in the destination room, all or nothing.
    """
    try:
        request_id = UUID(str(token).strip())
    except ValueError:
        raise NotFoundError("unknown pickup code") from None

    req = await _load(session, request_id)
    permissions.require(actor, Capability.REQUEST_FULFILL, Scope(warehouse_id=req.target_warehouse_id))
    if req.status != RequestStatus.READY_TO_PICKUP.value:
        raise InvalidStateTransition(
            f"request in status {req.status} cannot be picked up",
            detail={"status": req.status},
        )

    reason = f"pickup {req.request_code}"
    for ln in await _lines(session, req.id):
        qty = ln.qty_approved if ln.qty_approved is not None else ln.qty_requested
        await stock_service.decrement_batch(
            session, actor, req.target_warehouse_id, ln.consumable_id, qty, reason=reason
        )
        await stock_service.increment_room(session, actor, req.room_id, ln.consumable_id, qty, reason=reason)

    old = _summary(req)
    req.status = RequestStatus.COMPLETED.value
    req.updated_at = _utcnow()
    _add_timeline(session, req, actor, "picked up")
    await session.flush()

    await audit_service.record(session, actor, "COMPLETE", Request.__tablename__, req.id, old, _summary(req))
    await notification_service.notify_users(
        session,
        [req.requester_id],
        "Request completed",
        f"Request {req.request_code} was picked up and added to room stock.",
        link=_link(req),
        type=NotificationType.SUCCESS,
    )
    logger.info("request completed: id=%s code=%s actor=%s", req.id, req.request_code, actor.id)
    return await _to_out(session, req)


@requires(Capability.STOCK_READ)
async def get_request(session: AsyncSession, actor: ActorContext, request_id: UUID) -> RequestOut:
    req = await _load(session, request_id, lock=False)
    if not permissions.in_scope(actor, await _scope(session, req)):
        raise NotFoundError("request not found", detail={"request_id": str(request_id)})
    return await _to_out(session, req)


@requires(Capability.STOCK_READ)
async def list_requests(
    session: AsyncSession, actor: ActorContext, *, status: RequestStatus | None = None, limit: int = 100
) -> list[RequestOut]:
    q = select(Request)
    if status is not None:
        q = q.where(Request.status == status.value)
    if actor.role in (Role.UNIT_ADMIN, Role.UNIT_STAFF):
        q = q.join(Room, Room.id == Request.room_id).where(Room.unit_id == actor.unit_id)
    elif actor.role == Role.FACULTY_ADMIN:
        q = (
            q.join(Room, Room.id == Request.room_id)
            .join(Unit, Unit.id == Room.unit_id)
            .where(Unit.faculty_id == actor.faculty_id)
        )
    elif actor.role == Role.WAREHOUSE_STAFF:
        q = q.where(Request.target_warehouse_id == actor.warehouse_id)
    q = q.order_by(Request.created_at.desc(), Request.id).limit(max(1, min(int(limit), 500)))
    rows = (await session.execute(q)).scalars().all()
    return [RequestOut.model_validate(r) for r in rows]
