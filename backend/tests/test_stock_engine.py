from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from inventa.core.config import settings
from inventa.core.errors import ErrorKind, InsufficientStock, ValidationError
from inventa.db import models
from inventa.services import opname_service, stock_service


async def test_decrement_batch_drains_oldest_lines_first(harness, seed):
    wh, paper, actor = seed.warehouse.id, seed.paper.id, seed.actors.warehouse_staff
    old = await harness.add_stock(wh, paper, 4, batch_number="A", received_at=seed.base_time)
    new = await harness.add_stock(wh, paper, 10, batch_number="B", received_at=seed.base_time + timedelta(days=1))

    async with harness.session_factory() as s:
        async with s.begin():
            draws = await stock_service.decrement_batch(s, actor, wh, paper, Decimal("7"))

    assert [(d.stock_line_id, d.quantity) for d in draws] == [(old.id, Decimal("4.00")), (new.id, Decimal("3.00"))]
    assert (await harness.get(models.WarehouseStockLine, old.id)).quantity == Decimal("0")
    assert (await harness.get(models.WarehouseStockLine, new.id)).quantity == Decimal("7")
    assert await harness.warehouse_total(wh, paper) == Decimal("7.00")
    # drained lines are kept at zero
    assert await harness.count(models.WarehouseStockLine, models.WarehouseStockLine.consumable_id == paper) == 2


async def test_decrement_beyond_aggregate_fails_and_leaves_quantity_unchanged(harness, seed):
    wh, paper, actor = seed.warehouse.id, seed.paper.id, seed.actors.warehouse_staff
    await harness.add_stock(wh, paper, 3, received_at=seed.base_time)
    await harness.add_stock(wh, paper, 2, received_at=seed.base_time + timedelta(hours=1))

    with pytest.raises(InsufficientStock) as exc:
        async with harness.session_factory() as s:
            async with s.begin():
                await stock_service.decrement_batch(s, actor, wh, paper, Decimal("6"))

    assert exc.value.detail["available"] == "5.00"
    assert await harness.warehouse_total(wh, paper) == Decimal("5.00")
    assert await harness.count(models.AuditLogEntry) == 0


async def test_sequence_of_decrements_never_goes_negative(harness, seed):
    wh, paper, actor = seed.warehouse.id, seed.paper.id, seed.actors.warehouse_staff
    await harness.add_stock(wh, paper, 10)

    results = []
    for qty in ("4", "4", "4", "2", "1"):
        try:
            async with harness.session_factory() as s:
                async with s.begin():
                    await stock_service.decrement_batch(s, actor, wh, paper, Decimal(qty))
            results.append(True)
        except InsufficientStock:
            results.append(False)
        assert await harness.warehouse_total(wh, paper) >= 0

    assert results == [True, True, False, True, False]
    assert await harness.warehouse_total(wh, paper) == Decimal("0.00")


@pytest.mark.parametrize("qty", ["0", "-1"])
async def test_non_positive_quantity_is_rejected(harness, seed, qty):
    with pytest.raises(ValidationError):
        async with harness.session_factory() as s:
            async with s.begin():
                await stock_service.decrement_batch(
                    s, seed.actors.warehouse_staff, seed.warehouse.id, seed.paper.id, Decimal(qty)
                )


async def test_increment_batch_never_merges_batches(harness, seed):
    wh, reagent, actor = seed.warehouse.id, seed.reagent.id, seed.actors.warehouse_staff
    async with harness.session_factory() as s:
        async with s.begin():
            first = await stock_service.increment_batch(s, actor, wh, reagent, Decimal("100"), "LOT-1")
            second = await stock_service.increment_batch(s, actor, wh, reagent, Decimal("50"), "LOT-1")

    assert first.id != second.id
    assert await harness.warehouse_total(wh, reagent) == Decimal("150.00")
    entries = await harness.all(select(models.AuditLogEntry).where(models.AuditLogEntry.action == "CREATE"))
    assert {e.record_id for e in entries} == {str(first.id), str(second.id)}


async def test_room_increment_creates_then_accumulates(harness, seed):
    room, gloves, actor = seed.room.id, seed.gloves.id, seed.actors.warehouse_staff
    for qty in ("3", "2"):
        async with harness.session_factory() as s:
            async with s.begin():
                await stock_service.increment_room(s, actor, room, gloves, Decimal(qty))

    assert await harness.room_qty(room, gloves) == Decimal("5.00")
    assert await harness.count(models.RoomStockLine, models.RoomStockLine.room_id == room) == 1


async def test_room_decrement_without_line_is_insufficient(harness, seed):
    with pytest.raises(InsufficientStock):
        async with harness.session_factory() as s:
            async with s.begin():
                await stock_service.decrement_room(
                    s, seed.actors.unit_staff, seed.room.id, seed.gloves.id, Decimal("1")
                )


async def test_reconcile_sets_quantity_and_records_one_adjustment(harness, seed):
    line = await harness.add_stock(seed.warehouse.id, seed.paper.id, 20, batch_number="B-7")

    data = await harness.ok(
        opname_service.submit_opname,
        seed.actors.warehouse_staff,
        {"stock_line_id": line.id, "physical_quantity": "17", "reason": "monthly count"},
    )

    assert data.changed is True
    assert data.delta == Decimal("-3.00")
    assert (await harness.get(models.WarehouseStockLine, line.id)).quantity == Decimal("17")
    adjustments = await harness.all(select(models.AdjustmentRecord))
    assert len(adjustments) == 1
    assert adjustments[0].delta_quantity == Decimal("-3")
    assert adjustments[0].batch_number == "B-7"
    assert adjustments[0].type == "STOCK_OPNAME"
    audits = await harness.all(select(models.AuditLogEntry))
    assert [a.action for a in audits] == ["STOCK_OPNAME"]


async def test_reconcile_with_matching_count_is_a_no_op(harness, seed):
    line = await harness.add_stock(seed.warehouse.id, seed.paper.id, 20)

    for _ in range(2):
        data = await harness.ok(
            opname_service.submit_opname,
            seed.actors.warehouse_staff,
            {"stock_line_id": line.id, "physical_quantity": "20", "reason": "monthly count"},
        )
        assert data.changed is False

    assert await harness.count(models.AdjustmentRecord) == 0
    assert await harness.count(models.AuditLogEntry) == 0


async def test_reconcile_can_raise_quantity(harness, seed):
    line = await harness.add_stock(seed.warehouse.id, seed.gloves.id, 5)
    data = await harness.ok(
        opname_service.submit_opname,
        seed.actors.super_admin,
        {"stock_line_id": line.id, "physical_quantity": "8", "adjustment_type": "CORRECTION", "reason": "found box"},
    )
    assert data.delta == Decimal("3.00")
    assert await harness.warehouse_total(seed.warehouse.id, seed.gloves.id) == Decimal("8.00")


async def test_reconcile_on_another_warehouse_is_denied(harness, seed):
    line = await harness.add_stock(seed.warehouse.id, seed.paper.id, 20)
    outcome = await harness.run(
        opname_service.submit_opname,
        seed.actors.other_warehouse_staff,
        {"stock_line_id": line.id, "physical_quantity": "1", "reason": "count"},
    )
    assert outcome.error_kind == ErrorKind.AUTHORIZATION_ERROR
    assert (await harness.get(models.WarehouseStockLine, line.id)).quantity == Decimal("20")


@pytest.mark.parametrize(
    "payload",
    [
        {"physical_quantity": "-1", "reason": "count"},
        {"physical_quantity": "5", "reason": "ab"},
        {"reason": "count"},
    ],
)
async def test_reconcile_rejects_malformed_input(harness, seed, payload):
    line = await harness.add_stock(seed.warehouse.id, seed.paper.id, 20)
    outcome = await harness.run(
        opname_service.submit_opname, seed.actors.warehouse_staff, {"stock_line_id": line.id, **payload}
    )
    assert outcome.error_kind == ErrorKind.VALIDATION_ERROR
    assert await harness.count(models.AdjustmentRecord) == 0


async def test_reconcile_reason_length_follows_settings(harness, seed, monkeypatch):
    monkeypatch.setattr(settings, "opname_reason_min_length", 10)
    line = await harness.add_stock(seed.warehouse.id, seed.paper.id, 20)

    short = await harness.run(
        opname_service.submit_opname,
        seed.actors.warehouse_staff,
        {"stock_line_id": line.id, "physical_quantity": "15", "reason": "recount"},
    )
    assert short.error_kind == ErrorKind.VALIDATION_ERROR
    assert short.detail == {"field": "reason"}

    data = await harness.ok(
        opname_service.submit_opname,
        seed.actors.warehouse_staff,
        {"stock_line_id": line.id, "physical_quantity": "15", "reason": "recount after spill"},
    )
    assert data.delta == Decimal("-5.00")


async def test_reconcile_unknown_line_is_not_found(harness, seed):
    outcome = await harness.run(
        opname_service.submit_opname,
        seed.actors.warehouse_staff,
        {"stock_line_id": seed.paper.id, "physical_quantity": "1", "reason": "count"},
    )
    assert outcome.error_kind == ErrorKind.NOT_FOUND


async def test_opname_is_not_available_to_unit_roles(harness, seed):
    line = await harness.add_stock(seed.warehouse.id, seed.paper.id, 20)
    outcome = await harness.run(
        opname_service.submit_opname,
        seed.actors.unit_admin,
        {"stock_line_id": line.id, "physical_quantity": "1", "reason": "count"},
    )
    assert outcome.error_kind == ErrorKind.AUTHORIZATION_ERROR
