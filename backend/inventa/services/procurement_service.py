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
    ConstraintViolation,
    InvalidStateTransition,
    NotFoundError,
    ValidationError,
)
from inventa.db.models.consumable import Consumable
from inventa.db.models.notification import NotificationType
from inventa.db.models.organization import Unit, Warehouse
from inventa.db.models.procurement import (
    Procurement,
    ProcurementLine,
    ProcurementStatus,
    ProcurementTimeline,
    ReceiptCondition,
)
from inventa.schemas.procurement import (
    GoodsReceipt,
    ProcurementCreate,
    ProcurementLineOut,
    ProcurementOut,
    ProcurementReject,
    ProcurementTimelineOut,
)
from inventa.services import audit_service, notification_service, permissions, stock_service
from inventa.services.operation import parse_input, requires
from inventa.services.permissions import Capability, Scope

logger = logging.getLogger("inventa.procurements")

_EDITABLE = (ProcurementStatus.PENDING.value, ProcurementStatus.REJECTED.value)
_CODE_ALPHABET = string.ascii_uppercase + string.digits
_CODE_ATTEMPTS = 5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_procurement_code(now: datetime | None = None) -> str:
    now = now or _utcnow()
    suffix = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(6))
    return f"{settings.procurement_code_prefix}/{now:%Y}/{suffix}"


async def _allocate_code(session: AsyncSession, now: datetime) -> str:
    for _ in range(_CODE_ATTEMPTS):
        code = new_procurement_code(now)
        taken = await session.scalar(select(Procurement.id).where(Procurement.procurement_code == code))
        if taken is None:
            return code
        logger.warning("procurement code clash, regenerating: code=%s", code)
    raise ConstraintViolation("could not allocate a unique procurement code, please retry")


def _link(p: Procurement) -> str:
    return f"/procurements/{p.id}"


async def _load(session: AsyncSession, procurement_id: UUID, *, lock: bool = True) -> Procurement:
    q = select(Procurement).where(Procurement.id == procurement_id)
    if lock:
        q = q.with_for_update()
    p = (await session.execute(q.execution_options(populate_existing=True))).scalar_one_or_none()
    if p is None:
        raise NotFoundError("procurement not found", detail={"procurement_id": str(procurement_id)})
    return p


async def _lines(session: AsyncSession, procurement_id: UUID) -> list[ProcurementLine]:
    rows = await session.execute(
        select(ProcurementLine).where(ProcurementLine.procurement_id == procurement_id).order_by(ProcurementLine.id)
    )
    return list(rows.scalars().all())


async def _scope(session: AsyncSession, p: Procurement) -> Scope:
    wh = await session.get(Warehouse, p.warehouse_id)
    return Scope(warehouse_id=p.warehouse_id, faculty_id=wh.faculty_id if wh is not None else None)


async def _actor_faculty(session: AsyncSession, actor: ActorContext) -> UUID | None:
    if actor.role in (Role.UNIT_ADMIN, Role.UNIT_STAFF) and actor.unit_id is not None:
        unit = await session.get(Unit, actor.unit_id)
        return unit.faculty_id if unit is not None else None
    return actor.faculty_id


async def _visible(session: AsyncSession, actor: ActorContext, p: Procurement) -> bool:
    # unit and faculty roles see the proposals of warehouses in their faculty
    if actor.role == Role.SUPER_ADMIN:
        return True
    if actor.role == Role.WAREHOUSE_STAFF:
        return p.warehouse_id == actor.warehouse_id
    scope = await _scope(session, p)
    faculty_id = await _actor_faculty(session, actor)
    return scope.faculty_id is not None and scope.faculty_id == faculty_id


async def _to_out(session: AsyncSession, p: Procurement) -> ProcurementOut:
    timeline = (
        await session.execute(
            select(ProcurementTimeline)
            .where(ProcurementTimeline.procurement_id == p.id)
            .order_by(ProcurementTimeline.created_at, ProcurementTimeline.id)
        )
    ).scalars()
    out = ProcurementOut.model_validate(p)
    out.lines = [ProcurementLineOut.model_validate(ln) for ln in await _lines(session, p.id)]
    out.timeline = [ProcurementTimelineOut.model_validate(t) for t in timeline]
    return out


def _add_timeline(session: AsyncSession, p: Procurement, actor: ActorContext, notes: str | None = None) -> None:
    session.add(
        ProcurementTimeline(procurement_id=p.id, status=p.status, actor_id=actor.id, notes=notes, created_at=_utcnow())
    )


def _summary(p: Procurement) -> dict:
    return {
        "procurement_code": p.procurement_code,
        "status": p.status,
        "warehouse_id": p.warehouse_id,
        "description": p.description,
        "notes": p.notes,
    }


def _lines_summary(lines: list[ProcurementLine]) -> list[dict]:
    return [{"consumable_id": ln.consumable_id, "warehouse_id": ln.warehouse_id, "quantity": ln.quantity} for ln in lines]


async def _resolve_warehouse(session: AsyncSession, actor: ActorContext, warehouse_id: UUID | None) -> UUID:
    if actor.role == Role.WAREHOUSE_STAFF:
        if actor.warehouse_id is None:
            raise AuthorizationError("your account is not assigned to a warehouse")
        if warehouse_id is not None and warehouse_id != actor.warehouse_id:
            raise AuthorizationError("you may only procure for your own warehouse")
        warehouse_id = actor.warehouse_id
    if warehouse_id is None:
        raise ValidationError("warehouse_id is required", detail={"field": "warehouse_id"})
    if await session.get(Warehouse, warehouse_id) is None:
        raise NotFoundError("warehouse not found", detail={"warehouse_id": str(warehouse_id)})
    return warehouse_id


async def _build_lines(
    session: AsyncSession, actor: ActorContext, procurement_id: UUID, warehouse_id: UUID, body: ProcurementCreate
) -> list[ProcurementLine]:
    lines: list[ProcurementLine] = []
    for item in body.items:
        if await session.get(Consumable, item.consumable_id) is None:
            raise NotFoundError("consumable not found", detail={"consumable_id": str(item.consumable_id)})
        line_wh = item.warehouse_id or warehouse_id
        if line_wh != warehouse_id:
            permissions.require(actor, Capability.PROCUREMENT_CREATE, Scope(warehouse_id=line_wh))
            if await session.get(Warehouse, line_wh) is None:
                raise NotFoundError("warehouse not found", detail={"warehouse_id": str(line_wh)})
        lines.append(
            ProcurementLine(
                procurement_id=procurement_id,
                consumable_id=item.consumable_id,
                warehouse_id=line_wh,
                quantity=item.quantity,
            )
        )
    return lines


async def _notify_faculty(session: AsyncSession, p: Procurement, title: str, message: str) -> None:
    scope = await _scope(session, p)
    if scope.faculty_id is None:
        # warehouse outside any faculty: only super admins decide
        await notification_service.notify_role(session, Role.SUPER_ADMIN, title, message, link=_link(p))
        return
    await notification_service.notify_role(
        session, Role.FACULTY_ADMIN, title, message, faculty_id=scope.faculty_id, link=_link(p)
    )


@requires(Capability.PROCUREMENT_CREATE)
async def create_procurement(session: AsyncSession, actor: ActorContext, body: ProcurementCreate) -> ProcurementOut:
    body = parse_input(ProcurementCreate, body)
    warehouse_id = await _resolve_warehouse(session, actor, body.warehouse_id)

    now = _utcnow()
    p = Procurement(
        procurement_code=await _allocate_code(session, now),
        requester_id=actor.id,
        warehouse_id=warehouse_id,
        status=ProcurementStatus.PENDING.value,
        description=body.description,
        created_at=now,
        updated_at=now,
    )
    session.add(p)
    await session.flush()
    lines = await _build_lines(session, actor, p.id, warehouse_id, body)
    session.add_all(lines)
    _add_timeline(session, p, actor, "procurement proposed")
    await session.flush()

    await audit_service.record(
        session,
        actor,
        "CREATE",
        Procurement.__tablename__,
        p.id,
        new_values={**_summary(p), "lines": _lines_summary(lines)},
    )
    await _notify_faculty(
        session, p, "Procurement awaiting approval", f"Procurement {p.procurement_code} needs your approval."
    )
    logger.info("procurement created: id=%s code=%s lines=%d", p.id, p.procurement_code, len(lines))
    return await _to_out(session, p)


@requires(Capability.PROCUREMENT_UPDATE)
async def update_procurement(
    session: AsyncSession, actor: ActorContext, procurement_id: UUID, body: ProcurementCreate
) -> ProcurementOut:
    body = parse_input(ProcurementCreate, body)
    p = await _load(session, procurement_id)
    if p.requester_id != actor.id:
        raise AuthorizationError("only the creator may edit this procurement")
    if p.status not in _EDITABLE:
        raise InvalidStateTransition(f"procurement in status {p.status} can no longer be edited", detail={"status": p.status})
    warehouse_id = await _resolve_warehouse(session, actor, body.warehouse_id or p.warehouse_id)

    old_lines = await _lines(session, p.id)
    old = {**_summary(p), "lines": _lines_summary(old_lines)}
    was_rejected = p.status == ProcurementStatus.REJECTED.value

    await session.execute(
        delete(ProcurementLine)
        .where(ProcurementLine.procurement_id == p.id)
        .execution_options(synchronize_session=False)
    )
    for ln in old_lines:
        session.expunge(ln)
    lines = await _build_lines(session, actor, p.id, warehouse_id, body)
    session.add_all(lines)

    p.warehouse_id = warehouse_id
    p.description = body.description
    p.status = ProcurementStatus.PENDING.value
    p.notes = None
    p.updated_at = _utcnow()
    _add_timeline(session, p, actor, "resubmitted after rejection" if was_rejected else "procurement revised")
    await session.flush()

    await audit_service.record(
        session,
        actor,
        "UPDATE",
        Procurement.__tablename__,
        p.id,
        old_values=old,
        new_values={**_summary(p), "lines": _lines_summary(lines)},
    )
    await _notify_faculty(
        session, p, "Procurement revised", f"Procurement {p.procurement_code} was revised and needs your approval."
    )
    logger.info("procurement revised: id=%s code=%s resubmitted=%s", p.id, p.procurement_code, was_rejected)
    return await _to_out(session, p)


@requires(Capability.PROCUREMENT_DELETE)
async def delete_procurement(session: AsyncSession, actor: ActorContext, procurement_id: UUID) -> None:
    p = await _load(session, procurement_id)
    if p.requester_id != actor.id and actor.role != Role.SUPER_ADMIN:
        raise AuthorizationError("only the creator or a super admin may delete this procurement")
    if p.status != ProcurementStatus.PENDING.value:
        raise InvalidStateTransition(f"procurement in status {p.status} cannot be deleted", detail={"status": p.status})

    lines = await _lines(session, p.id)
    old = {**audit_service.snapshot(p), "lines": _lines_summary(lines)}
    for stmt in (
        delete(ProcurementLine).where(ProcurementLine.procurement_id == p.id),
        delete(ProcurementTimeline).where(ProcurementTimeline.procurement_id == p.id),
    ):
        await session.execute(stmt.execution_options(synchronize_session=False))
    for ln in lines:
        session.expunge(ln)
    await session.delete(p)
    await session.flush()

    await audit_service.record(session, actor, "DELETE", Procurement.__tablename__, procurement_id, old_values=old)
    logger.info("procurement deleted: id=%s code=%s actor=%s", procurement_id, old["procurement_code"], actor.id)


async def _decide(session: AsyncSession, actor: ActorContext, procurement_id: UUID) -> Procurement:
    p = await _load(session, procurement_id)
    scope = await _scope(session, p)
    permissions.require(actor, Capability.PROCUREMENT_APPROVE, scope)
    if scope.faculty_id is None and actor.role != Role.SUPER_ADMIN:
        raise AuthorizationError(
            "the warehouse belongs to no faculty, only a super admin may decide",
            detail={"warehouse_id": str(p.warehouse_id)},
        )
    if p.status != ProcurementStatus.PENDING.value:
        raise InvalidStateTransition(f"procurement in status {p.status} is not awaiting a decision", detail={"status": p.status})
    return p


@requires(Capability.PROCUREMENT_APPROVE)
async def approve_procurement(session: AsyncSession, actor: ActorContext, procurement_id: UUID) -> ProcurementOut:
    p = await _decide(session, actor, procurement_id)
    old = _summary(p)
    p.status = ProcurementStatus.APPROVED.value
    p.updated_at = _utcnow()
    _add_timeline(session, p, actor, "approved")
    await session.flush()

    await audit_service.record(session, actor, "APPROVE", Procurement.__tablename__, p.id, old, _summary(p))
    await notification_service.notify_users(
        session,
        [p.requester_id],
        "Procurement approved",
        f"Procurement {p.procurement_code} was approved. Record the goods receipt when it arrives.",
        link=_link(p),
        type=NotificationType.SUCCESS,
    )
    logger.info("procurement approved: id=%s actor=%s", p.id, actor.id)
    return await _to_out(session, p)


@requires(Capability.PROCUREMENT_APPROVE)
async def reject_procurement(
    session: AsyncSession, actor: ActorContext, procurement_id: UUID, body: ProcurementReject
) -> ProcurementOut:
    body = parse_input(ProcurementReject, body)
    p = await _decide(session, actor, procurement_id)
    old = _summary(p)
    p.status = ProcurementStatus.REJECTED.value
    p.notes = body.reason
    p.updated_at = _utcnow()
    _add_timeline(session, p, actor, body.reason)
    await session.flush()

    await audit_service.record(session, actor, "REJECT", Procurement.__tablename__, p.id, old, _summary(p))
    await notification_service.notify_users(
        session,
        [p.requester_id],
        "Procurement rejected",
        f"Procurement {p.procurement_code} was rejected: {body.reason}",
        link=_link(p),
        type=NotificationType.ERROR,
    )
    logger.info("procurement rejected: id=%s actor=%s", p.id, actor.id)
    return await _to_out(session, p)


@requires(Capability.PROCUREMENT_RECEIVE)
async def receive_goods(
    session: AsyncSession, actor: ActorContext, procurement_id: UUID, body: GoodsReceipt
) -> ProcurementOut:
    """
    Record the goods receipt of an approved procurement and complete it.

    Every line must be accounted for exactly once. Only GOOD lines are credited,
    each as a new batch line at its target warehouse.
    """
    body = parse_input(GoodsReceipt, body)
    p = await _load(session, procurement_id)
    permissions.require(actor, Capability.PROCUREMENT_RECEIVE, Scope(warehouse_id=p.warehouse_id))
    if p.status != ProcurementStatus.APPROVED.value:
        raise InvalidStateTransition(
            f"procurement in status {p.status} cannot be received",
            detail={"status": p.status},
        )

    lines = {ln.id: ln for ln in await _lines(session, p.id)}
    received = {r.line_id: r for r in body.lines}
    unknown = set(received) - set(lines)
    missing = set(lines) - set(received)
    if unknown:
        raise ValidationError(
            "receipt references lines outside this procurement",
            detail={"line_ids": sorted(str(i) for i in unknown)},
        )
    if missing:
        raise ValidationError(
            "receipt must cover every procurement line",
            detail={"line_ids": sorted(str(i) for i in missing)},
        )

    # Validate everything before the first stock mutation.
    for line_id, r in received.items():
        consumable = await session.get(Consumable, lines[line_id].consumable_id)
        if consumable is not None and consumable.has_expiry:
            if not r.batch_number or r.expiry_date is None:
                raise ValidationError(
                    f"batch number and expiry date are required for {consumable.name}",
                    detail={"line_id": str(line_id), "fields": ["batch_number", "expiry_date"]},
                )

    credited = 0
    reason = f"receipt {p.procurement_code}"
    for line_id, r in received.items():
        ln = lines[line_id]
        ln.received_quantity = r.received_quantity
        ln.condition = r.condition.value
        ln.batch_number = r.batch_number
        ln.expiry_date = r.expiry_date
        ln.receipt_notes = r.notes
        if r.condition == ReceiptCondition.GOOD:
            stock_line = await stock_service.increment_batch(
                session,
                actor,
                ln.warehouse_id,
                ln.consumable_id,
                r.received_quantity,
                r.batch_number,
                r.expiry_date,
                reason=reason,
            )
            ln.stock_line_id = stock_line.id
            credited += 1

    old = _summary(p)
    p.status = ProcurementStatus.COMPLETED.value
    p.updated_at = _utcnow()
    _add_timeline(session, p, actor, f"goods received ({credited} of {len(lines)} lines stocked)")
    await session.flush()

    await audit_service.record(
        session,
        actor,
        "INBOUND_RECEIPT",
        Procurement.__tablename__,
        p.id,
        old_values=old,
        new_values={
            **_summary(p),
            "lines": [
                {
                    "line_id": ln.id,
                    "received_quantity": ln.received_quantity,
                    "condition": ln.condition,
                    "batch_number": ln.batch_number,
                    "stock_line_id": ln.stock_line_id,
                }
                for ln in lines.values()
            ],
        },
    )
    await _notify_faculty(
        session, p, "Procurement received", f"Goods for procurement {p.procurement_code} were received."
    )
    logger.info("procurement received: id=%s lines=%d credited=%d actor=%s", p.id, len(lines), credited, actor.id)
    return await _to_out(session, p)


@requires(Capability.STOCK_READ)
async def get_procurement(session: AsyncSession, actor: ActorContext, procurement_id: UUID) -> ProcurementOut:
    p = await _load(session, procurement_id, lock=False)
    if not await _visible(session, actor, p):
        raise NotFoundError("procurement not found", detail={"procurement_id": str(procurement_id)})
    return await _to_out(session, p)


@requires(Capability.STOCK_READ)
async def list_procurements(
    session: AsyncSession, actor: ActorContext, *, status: ProcurementStatus | None = None, limit: int = 100
) -> list[ProcurementOut]:
    q = select(Procurement)
    if status is not None:
        q = q.where(Procurement.status == status.value)
    if actor.role == Role.WAREHOUSE_STAFF:
        q = q.where(Procurement.warehouse_id == actor.warehouse_id)
    elif actor.role != Role.SUPER_ADMIN:
        faculty_id = await _actor_faculty(session, actor)
        if faculty_id is None:
            return []
        q = q.join(Warehouse, Warehouse.id == Procurement.warehouse_id).where(Warehouse.faculty_id == faculty_id)
    q = q.order_by(Procurement.created_at.desc(), Procurement.id).limit(max(1, min(int(limit), 500)))
    rows = (await session.execute(q)).scalars().all()
    return [ProcurementOut.model_validate(r) for r in rows]
