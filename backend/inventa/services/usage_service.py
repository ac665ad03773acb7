from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from inventa.core.actor import ActorContext, Role
from inventa.core.errors import (
    AuthorizationError,
    ConstraintViolation,
    InsufficientStock,
    InvalidRoom,
    NotFoundError,
)
from inventa.db.models.organization import Room
from inventa.db.models.usage_report import UsageDetail, UsageReport
from inventa.schemas.usage import UsageDetailOut, UsageLineIn, UsageReportCreate, UsageReportOut, UsageReportUpdate
from inventa.services import audit_service, stock_service
from inventa.services.operation import parse_input, requires
from inventa.services.permissions import Capability

logger = logging.getLogger("inventa.usage")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def _details(session: AsyncSession, report_id: UUID) -> list[UsageDetail]:
    rows = await session.execute(select(UsageDetail).where(UsageDetail.report_id == report_id).order_by(UsageDetail.id))
    return list(rows.scalars().all())


async def _to_out(session: AsyncSession, report: UsageReport) -> UsageReportOut:
    out = UsageReportOut.model_validate(report)
    out.details = [UsageDetailOut.model_validate(d) for d in await _details(session, report.id)]
    return out


def _details_summary(details: list[UsageDetail]) -> list[dict]:
    return [{"consumable_id": d.consumable_id, "qty_used": d.qty_used} for d in details]


async def _own_room(session: AsyncSession, actor: ActorContext, room_id: UUID) -> Room:
    if actor.unit_id is None:
        raise AuthorizationError("your account is not assigned to a unit")
    room = await session.get(Room, room_id)
    if room is None or room.unit_id != actor.unit_id:
        raise InvalidRoom("room does not belong to your unit", detail={"room_id": str(room_id)})
    return room


async def _scan(session: AsyncSession, room_id: UUID, items: list[UsageLineIn]) -> None:
    # Every line is checked before the first debit so a short line never leaves a partial report.
    for item in items:
        line = await stock_service.room_line(session, room_id, item.consumable_id)
        available = stock_service.to_quantity(line.quantity) if line is not None else stock_service.to_quantity(0)
        if available < item.quantity:
            raise InsufficientStock(
                "insufficient room stock",
                detail={
                    "room_id": str(room_id),
                    "consumable_id": str(item.consumable_id),
                    "requested": str(item.quantity),
                    "available": str(available),
                },
            )


async def _debit(
    session: AsyncSession, actor: ActorContext, report: UsageReport, items: list[UsageLineIn]
) -> list[UsageDetail]:
    details = []
    reason = f"usage {report.activity_name}"
    for item in items:
        await stock_service.decrement_room(session, actor, report.room_id, item.consumable_id, item.quantity, reason=reason)
        details.append(UsageDetail(report_id=report.id, consumable_id=item.consumable_id, qty_used=item.quantity))
    session.add_all(details)
    await session.flush()
    return details


async def _credit_back(
    session: AsyncSession, actor: ActorContext, report: UsageReport, details: list[UsageDetail], reason: str
) -> None:
    for d in details:
        if await stock_service.room_line(session, report.room_id, d.consumable_id) is None:
            raise ConstraintViolation(
                "room stock for this report no longer exists",
                detail={"room_id": str(report.room_id), "consumable_id": str(d.consumable_id)},
            )
        await stock_service.increment_room(session, actor, report.room_id, d.consumable_id, d.qty_used, reason=reason)


async def _load_for_change(session: AsyncSession, actor: ActorContext, report_id: UUID) -> UsageReport:
    report = (
        await session.execute(
            select(UsageReport)
            .where(UsageReport.id == report_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if report is None:
        raise NotFoundError("usage report not found", detail={"report_id": str(report_id)})
    if report.reporter_id != actor.id:
        room = await session.get(Room, report.room_id)
        if actor.role != Role.UNIT_ADMIN or room is None or room.unit_id != actor.unit_id:
            raise AuthorizationError("only the reporter or their unit admin may change this report")
    return report


@requires(Capability.USAGE_REPORT)
async def report_usage(session: AsyncSession, actor: ActorContext, body: UsageReportCreate) -> UsageReportOut:
    body = parse_input(UsageReportCreate, body)
    await _own_room(session, actor, body.room_id)
    await _scan(session, body.room_id, body.items)

    now = _utcnow()
    report = UsageReport(
        reporter_id=actor.id,
        room_id=body.room_id,
        activity_name=body.activity_name,
        activity_date=body.activity_date or now,
        created_at=now,
        updated_at=now,
    )
    session.add(report)
    await session.flush()
    details = await _debit(session, actor, report, body.items)

    await audit_service.record(
        session,
        actor,
        "CREATE_USAGE_REPORT",
        UsageReport.__tablename__,
        report.id,
        new_values={
            "room_id": report.room_id,
            "activity_name": report.activity_name,
            "details": _details_summary(details),
        },
    )
    logger.info("usage reported: id=%s room=%s lines=%d actor=%s", report.id, report.room_id, len(details), actor.id)
    return await _to_out(session, report)


@requires(Capability.USAGE_REPORT)
async def update_usage_report(
    session: AsyncSession, actor: ActorContext, report_id: UUID, body: UsageReportUpdate
) -> UsageReportOut:
    body = parse_input(UsageReportUpdate, body)
    report = await _load_for_change(session, actor, report_id)
    old_details = await _details(session, report.id)
    old = {"activity_name": report.activity_name, "details": _details_summary(old_details)}

    await _credit_back(session, actor, report, old_details, f"usage revised {report.activity_name}")
    await session.execute(
        delete(UsageDetail).where(UsageDetail.report_id == report.id).execution_options(synchronize_session=False)
    )
    for d in old_details:
        session.expunge(d)

    await _scan(session, report.room_id, body.items)
    report.activity_name = body.activity_name
    report.updated_at = _utcnow()
    details = await _debit(session, actor, report, body.items)

    await audit_service.record(
        session,
        actor,
        "UPDATE",
        UsageReport.__tablename__,
        report.id,
        old_values=old,
        new_values={"activity_name": report.activity_name, "details": _details_summary(details)},
    )
    logger.info("usage report revised: id=%s lines=%d actor=%s", report.id, len(details), actor.id)
    return await _to_out(session, report)


@requires(Capability.USAGE_REPORT)
async def delete_usage_report(session: AsyncSession, actor: ActorContext, report_id: UUID) -> None:
    """Reverse a usage report: every recorded quantity goes back to the room."""
    report = await _load_for_change(session, actor, report_id)
    details = await _details(session, report.id)
    old = {**audit_service.snapshot(report), "details": _details_summary(details)}

    await _credit_back(session, actor, report, details, f"usage reversed {report.activity_name}")
    await session.execute(
        delete(UsageDetail).where(UsageDetail.report_id == report.id).execution_options(synchronize_session=False)
    )
    for d in details:
        session.expunge(d)
    await session.delete(report)
    await session.flush()

    await audit_service.record(session, actor, "DELETE", UsageReport.__tablename__, report_id, old_values=old)
    logger.info("usage report deleted: id=%s lines=%d actor=%s", report_id, len(details), actor.id)


@requires(Capability.STOCK_READ)
async def list_usage_reports(
    session: AsyncSession, actor: ActorContext, *, room_id: UUID | None = None, limit: int = 100
) -> list[UsageReportOut]:
    q = select(UsageReport)
    if room_id is not None:
        q = q.where(UsageReport.room_id == room_id)
    if actor.role in (Role.UNIT_ADMIN, Role.UNIT_STAFF):
        q = q.join(Room, Room.id == UsageReport.room_id).where(Room.unit_id == actor.unit_id)
    q = q.order_by(UsageReport.activity_date.desc(), UsageReport.id).limit(max(1, min(int(limit), 500)))
    reports = (await session.execute(q)).scalars().all()
    return [await _to_out(session, r) for r in reports]
