from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy import select

from inventa.core.errors import ErrorKind
from inventa.db import models
from inventa.db.models.request import RequestStatus
from inventa.services import opname_service, request_service


def _body(seed, *items, room=None, warehouse=None):
    return {
        "target_warehouse_id": (warehouse or seed.warehouse).id,
        "room_id": (room or seed.room).id,
        "items": [{"consumable_id": c.id, "quantity": q} for c, q in items],
    }


async def _create(harness, seed, *items, actor=None):
    return await harness.ok(
        request_service.create_request, actor or seed.actors.unit_staff, _body(seed, *items)
    )


async def _drive_to(harness, seed, request_id, status: RequestStatus) -> None:
    a = seed.actors
    path = [
        (RequestStatus.PENDING_FACULTY, request_service.approve_request, a.unit_admin),
        (RequestStatus.APPROVED, request_service.approve_request, a.faculty_admin),
        (RequestStatus.PROCESSING, request_service.begin_fulfillment, a.warehouse_staff),
        (RequestStatus.READY_TO_PICKUP, request_service.mark_ready, a.warehouse_staff),
    ]
    for reached, op, actor in path:
        if status == RequestStatus.PENDING_UNIT:
            return
        await harness.ok(op, actor, request_id)
        if reached == status:
            return
    if status == RequestStatus.COMPLETED:
        await harness.ok(request_service.complete_pickup, a.warehouse_staff, str(request_id))


async def test_full_request_lifecycle_moves_stock_at_pickup(harness, seed):
    await harness.add_stock(seed.warehouse.id, seed.paper.id, 10)
    req = await _create(harness, seed, (seed.paper, "5"))
    assert req.status == RequestStatus.PENDING_UNIT.value
    assert req.request_code.startswith("REQ/")

    a = seed.actors
    assert (await harness.ok(request_service.approve_request, a.unit_admin, req.id)).status == "PENDING_FACULTY"
    approved = await harness.ok(request_service.approve_request, a.faculty_admin, req.id)
    assert approved.status == "APPROVED"
    assert approved.lines[0].qty_approved == Decimal("5")
    # approval reserves nothing
    assert await harness.warehouse_total(seed.warehouse.id, seed.paper.id) == Decimal("10.00")

    assert (await harness.ok(request_service.begin_fulfillment, a.warehouse_staff, req.id)).status == "PROCESSING"
    ready = await harness.ok(request_service.mark_ready, a.warehouse_staff, req.id)
    assert ready.status == "READY_TO_PICKUP"
    assert ready.pickup_token == str(req.id)

    done = await harness.ok(request_service.complete_pickup, a.warehouse_staff, ready.pickup_token)
    assert done.status == "COMPLETED"
    assert await harness.warehouse_total(seed.warehouse.id, seed.paper.id) == Decimal("5.00")
    assert await harness.room_qty(seed.room.id, seed.paper.id) == Decimal("5.00")
    assert [t.status for t in done.timeline] == [
        "PENDING_UNIT",
        "PENDING_FACULTY",
        "APPROVED",
        "PROCESSING",
        "READY_TO_PICKUP",
        "COMPLETED",
    ]


async def test_pickup_fails_when_stock_was_consumed_after_approval(harness, seed):
    line = await harness.add_stock(seed.warehouse.id, seed.paper.id, 10)
    req = await _create(harness, seed, (seed.paper, "5"))
    await _drive_to(harness, seed, req.id, RequestStatus.READY_TO_PICKUP)

    await harness.ok(
        opname_service.submit_opname,
        seed.actors.warehouse_staff,
        {"stock_line_id": line.id, "physical_quantity": "2", "adjustment_type": "LOSS", "reason": "spilled"},
    )
    audits_before = await harness.count(models.AuditLogEntry)

    outcome = await harness.run(request_service.complete_pickup, seed.actors.warehouse_staff, str(req.id))

    assert outcome.ok is False
    assert outcome.error_kind == ErrorKind.INSUFFICIENT_STOCK
    assert (await harness.get(models.Request, req.id)).status == "READY_TO_PICKUP"
    assert await harness.warehouse_total(seed.warehouse.id, seed.paper.id) == Decimal("2.00")
    assert await harness.room_qty(seed.room.id, seed.paper.id) is None
    assert await harness.count(models.AuditLogEntry) == audits_before


async def test_pickup_is_all_or_nothing_across_lines(harness, seed):
    await harness.add_stock(seed.warehouse.id, seed.paper.id, 10)
    gloves_line = await harness.add_stock(seed.warehouse.id, seed.gloves.id, 10)
    req = await _create(harness, seed, (seed.paper, "4"), (seed.gloves, "6"))
    await _drive_to(harness, seed, req.id, RequestStatus.READY_TO_PICKUP)

    # last line becomes short
    await harness.ok(
        opname_service.submit_opname,
        seed.actors.warehouse_staff,
        {"stock_line_id": gloves_line.id, "physical_quantity": "5", "reason": "recount"},
    )

    outcome = await harness.run(request_service.complete_pickup, seed.actors.warehouse_staff, str(req.id))

    assert outcome.error_kind == ErrorKind.INSUFFICIENT_STOCK
    assert await harness.warehouse_total(seed.warehouse.id, seed.paper.id) == Decimal("10.00")
    assert await harness.room_qty(seed.room.id, seed.paper.id) is None
    stock_audits = await harness.all(
        select(models.AuditLogEntry).where(models.AuditLogEntry.table_name.in_(["warehouse_stocks", "room_stocks"]))
    )
    assert [a.action for a in stock_audits] == ["STOCK_OPNAME"]


async def test_unit_admin_request_skips_unit_tier(harness, seed):
    await harness.add_stock(seed.warehouse.id, seed.paper.id, 10)
    req = await _create(harness, seed, (seed.paper, "1"), actor=seed.actors.unit_admin)
    assert req.status == RequestStatus.PENDING_FACULTY.value
    assert req.approved_by_unit_id == seed.actors.unit_admin.id


async def test_create_rejects_room_of_another_unit(harness, seed):
    await harness.add_stock(seed.warehouse.id, seed.paper.id, 10)
    outcome = await harness.run(
        request_service.create_request,
        seed.actors.unit_staff,
        _body(seed, (seed.paper, "1"), room=seed.other_room),
    )
    assert outcome.error_kind == ErrorKind.NOT_FOUND
    assert await harness.count(models.Request) == 0


async def test_create_checks_aggregate_stock_without_reserving(harness, seed):
    await harness.add_stock(seed.warehouse.id, seed.paper.id, 3)
    await harness.add_stock(seed.warehouse.id, seed.paper.id, 3)

    outcome = await harness.run(request_service.create_request, seed.actors.unit_staff, _body(seed, (seed.paper, "7")))
    assert outcome.error_kind == ErrorKind.INSUFFICIENT_STOCK

    await _create(harness, seed, (seed.paper, "6"))
    await _create(harness, seed, (seed.paper, "6"))
    assert await harness.warehouse_total(seed.warehouse.id, seed.paper.id) == Decimal("6.00")


@pytest.mark.parametrize(
    "items",
    [
        [],
        [{"quantity": "1"}],
        "zero",
        "duplicate",
    ],
)
async def test_create_rejects_malformed_input(harness, seed, items):
    if items == "zero":
        items = [{"consumable_id": seed.paper.id, "quantity": "0"}]
    elif items == "duplicate":
        items = [{"consumable_id": seed.paper.id, "quantity": "1"}] * 2
    body = {"target_warehouse_id": seed.warehouse.id, "room_id": seed.room.id, "items": items}
    outcome = await harness.run(request_service.create_request, seed.actors.unit_staff, body)
    assert outcome.error_kind == ErrorKind.VALIDATION_ERROR


async def test_reject_requires_reason_and_notifies_requester(harness, seed):
    await harness.add_stock(seed.warehouse.id, seed.paper.id, 10)
    req = await _create(harness, seed, (seed.paper, "1"))

    blank = await harness.run(request_service.reject_request, seed.actors.unit_admin, req.id, {"reason": "  "})
    assert blank.error_kind == ErrorKind.VALIDATION_ERROR

    rejected = await harness.ok(
        request_service.reject_request, seed.actors.unit_admin, req.id, {"reason": "not in budget"}
    )
    assert rejected.status == "REJECTED"
    assert rejected.rejection_reason == "not in budget"
    notes = await harness.all(
        select(models.Notification).where(models.Notification.user_id == seed.actors.unit_staff.id)
    )
    assert any(n.title == "Request rejected" for n in notes)


async def test_rejected_request_can_be_edited_and_resubmitted(harness, seed):
    await harness.add_stock(seed.warehouse.id, seed.paper.id, 10)
    await harness.add_stock(seed.warehouse.id, seed.gloves.id, 10)
    req = await _create(harness, seed, (seed.paper, "1"))
    await harness.ok(request_service.reject_request, seed.actors.unit_admin, req.id, {"reason": "wrong item"})

    edited = await harness.ok(
        request_service.update_request, seed.actors.unit_staff, req.id, _body(seed, (seed.gloves, "2"))
    )

    assert edited.status == "PENDING_UNIT"
    assert edited.rejection_reason is None
    assert [(ln.consumable_id, ln.qty_requested) for ln in edited.lines] == [(seed.gloves.id, Decimal("2"))]
    update_audit = await harness.all(select(models.AuditLogEntry).where(models.AuditLogEntry.action == "UPDATE"))
    assert update_audit[0].old_values["status"] == "REJECTED"


async def test_edit_is_refused_once_approved_by_faculty(harness, seed):
    await harness.add_stock(seed.warehouse.id, seed.paper.id, 10)
    req = await _create(harness, seed, (seed.paper, "1"))
    await _drive_to(harness, seed, req.id, RequestStatus.APPROVED)

    outcome = await harness.run(
        request_service.update_request, seed.actors.unit_staff, req.id, _body(seed, (seed.paper, "2"))
    )
    assert outcome.error_kind == ErrorKind.INVALID_STATE_TRANSITION


async def test_cancel_deletes_request_and_keeps_audit_trail(harness, seed):
    await harness.add_stock(seed.warehouse.id, seed.paper.id, 10)
    req = await _create(harness, seed, (seed.paper, "1"))

    await harness.ok(request_service.cancel_request, seed.actors.unit_staff, req.id)

    assert await harness.get(models.Request, req.id) is None
    assert await harness.count(models.RequestLine) == 0
    actions = [
        a.action
        for a in await harness.all(
            select(models.AuditLogEntry)
            .where(models.AuditLogEntry.record_id == str(req.id))
            .order_by(models.AuditLogEntry.created_at)
        )
    ]
    assert actions == ["CREATE", "DELETE"]


async def test_other_unit_cannot_approve(harness, seed):
    await harness.add_stock(seed.warehouse.id, seed.paper.id, 10)
    req = await _create(harness, seed, (seed.paper, "1"))
    outcome = await harness.run(request_service.approve_request, seed.actors.other_unit_admin, req.id)
    assert outcome.error_kind == ErrorKind.AUTHORIZATION_ERROR

    await harness.ok(request_service.approve_request, seed.actors.unit_admin, req.id)
    outcome = await harness.run(request_service.approve_request, seed.actors.other_faculty_admin, req.id)
    assert outcome.error_kind == ErrorKind.AUTHORIZATION_ERROR


async def test_other_warehouse_cannot_fulfill(harness, seed):
    await harness.add_stock(seed.warehouse.id, seed.paper.id, 10)
    req = await _create(harness, seed, (seed.paper, "1"))
    await _drive_to(harness, seed, req.id, RequestStatus.APPROVED)
    outcome = await harness.run(request_service.begin_fulfillment, seed.actors.other_warehouse_staff, req.id)
    assert outcome.error_kind == ErrorKind.AUTHORIZATION_ERROR


@pytest.mark.parametrize("token", ["not-a-uuid", "00000000-0000-0000-0000-000000000000"])
async def test_unknown_pickup_token_is_not_found(harness, seed, token):
    outcome = await harness.run(request_service.complete_pickup, seed.actors.warehouse_staff, token)
    assert outcome.error_kind == ErrorKind.NOT_FOUND


async def test_approval_notifies_next_tier(harness, seed):
    await harness.add_stock(seed.warehouse.id, seed.paper.id, 10)
    req = await _create(harness, seed, (seed.paper, "1"))
    await harness.ok(request_service.approve_request, seed.actors.unit_admin, req.id)

    dean = await harness.all(
        select(models.Notification).where(models.Notification.user_id == seed.actors.faculty_admin.id)
    )
    other_dean = await harness.all(
        select(models.Notification).where(models.Notification.user_id == seed.actors.other_faculty_admin.id)
    )
    assert len(dean) == 1
    assert other_dean == []


ACTIONS = ["approve", "reject", "process", "ready", "pickup", "cancel"]
ROLES = ["super_admin", "faculty_admin", "unit_admin", "unit_staff", "warehouse_staff"]
STATES = [
    RequestStatus.PENDING_UNIT,
    RequestStatus.PENDING_FACULTY,
    RequestStatus.APPROVED,
    RequestStatus.PROCESSING,
    RequestStatus.READY_TO_PICKUP,
    RequestStatus.COMPLETED,
    RequestStatus.REJECTED,
]
ALLOWED = {
    (RequestStatus.PENDING_UNIT, "unit_admin", "approve"),
    (RequestStatus.PENDING_UNIT, "unit_admin", "reject"),
    (RequestStatus.PENDING_FACULTY, "faculty_admin", "approve"),
    (RequestStatus.PENDING_FACULTY, "faculty_admin", "reject"),
    (RequestStatus.APPROVED, "warehouse_staff", "process"),
    (RequestStatus.PROCESSING, "warehouse_staff", "ready"),
    (RequestStatus.READY_TO_PICKUP, "warehouse_staff", "pickup"),
    (RequestStatus.PENDING_UNIT, "unit_staff", "cancel"),
    (RequestStatus.PENDING_UNIT, "unit_admin", "cancel"),
}


async def _act(harness, action, actor, req_id):
    if action == "approve":
        return await harness.run(request_service.approve_request, actor, req_id)
    if action == "reject":
        return await harness.run(request_service.reject_request, actor, req_id, {"reason": "no"})
    if action == "process":
        return await harness.run(request_service.begin_fulfillment, actor, req_id)
    if action == "ready":
        return await harness.run(request_service.mark_ready, actor, req_id)
    if action == "pickup":
        return await harness.run(request_service.complete_pickup, actor, str(req_id))
    return await harness.run(request_service.cancel_request, actor, req_id)


@pytest.mark.parametrize("state", STATES, ids=lambda s: s.value)
@pytest.mark.parametrize("role", ROLES)
@pytest.mark.parametrize("action", ACTIONS)
async def test_transition_grid(harness, seed, state, role, action):
    await harness.add_stock(seed.warehouse.id, seed.paper.id, 100)
    req = await _create(harness, seed, (seed.paper, "1"))
    if state == RequestStatus.REJECTED:
        await harness.ok(request_service.reject_request, seed.actors.unit_admin, req.id, {"reason": "no"})
    else:
        await _drive_to(harness, seed, req.id, state)
    assert (await harness.get(models.Request, req.id)).status == state.value

    outcome = await _act(harness, action, getattr(seed.actors, role), req.id)

    if (state, role, action) in ALLOWED:
        assert outcome.ok, outcome.message
    else:
        assert outcome.ok is False
        assert outcome.error_kind in (ErrorKind.INVALID_STATE_TRANSITION, ErrorKind.AUTHORIZATION_ERROR)
        assert (await harness.get(models.Request, req.id)).status == state.value
