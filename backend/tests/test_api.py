from __future__ import annotations

import httpx
import pytest

from inventa.api.deps import get_db
from inventa.main import app


@pytest.fixture
async def client(session_factory):
    async def _get_db():
        async with session_factory() as s:
            yield s

    app.dependency_overrides[get_db] = _get_db
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


def _headers(actor) -> dict[str, str]:
    h = {"X-Actor-Id": str(actor.id), "X-Actor-Role": actor.role.value}
    for field, header in (
        ("unit_id", "X-Actor-Unit-Id"),
        ("faculty_id", "X-Actor-Faculty-Id"),
        ("warehouse_id", "X-Actor-Warehouse-Id"),
    ):
        value = getattr(actor, field)
        if value is not None:
            h[header] = str(value)
    return h


async def test_health(client):
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


async def test_missing_identity_is_unauthorized(client):
    r = await client.get("/consumables")
    assert r.status_code == 401


async def test_request_round_trip_over_http(client, harness, seed):
    await harness.add_stock(seed.warehouse.id, seed.paper.id, 10)
    staff = _headers(seed.actors.unit_staff)

    r = await client.post(
        "/requests",
        json={
            "target_warehouse_id": str(seed.warehouse.id),
            "room_id": str(seed.room.id),
            "items": [{"consumable_id": str(seed.paper.id), "quantity": "5"}],
        },
        headers=staff,
    )
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["ok"] is True
    request_id = body["data"]["id"]
    assert body["data"]["pickup_token"] == request_id

    r = await client.post(f"/requests/{request_id}/approve", headers=_headers(seed.actors.warehouse_staff))
    assert r.status_code == 403
    assert r.json() == {
        "ok": False,
        "data": None,
        "error_kind": "AuthorizationError",
        "message": r.json()["message"],
        "detail": r.json()["detail"],
    }

    r = await client.post(f"/requests/{request_id}/process", headers=_headers(seed.actors.warehouse_staff))
    assert r.status_code == 409
    assert r.json()["error_kind"] == "InvalidStateTransition"

    r = await client.get(f"/requests/{request_id}", headers=staff)
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "PENDING_UNIT"


async def test_malformed_body_maps_to_validation_outcome(client, seed):
    r = await client.post(
        "/requests",
        json={"room_id": "nope", "items": []},
        headers=_headers(seed.actors.unit_staff),
    )
    assert r.status_code == 422
    assert r.json()["ok"] is False
    assert r.json()["error_kind"] == "ValidationError"


async def test_opname_and_audit_trail_over_http(client, harness, seed):
    line = await harness.add_stock(seed.warehouse.id, seed.paper.id, 20)

    r = await client.post(
        "/stock/opname",
        json={"stock_line_id": str(line.id), "physical_quantity": "18", "reason": "monthly count"},
        headers=_headers(seed.actors.warehouse_staff),
    )
    assert r.status_code == 200, r.text
    assert r.json()["data"]["delta"] == "-2.00"

    r = await client.get(
        "/audit-logs",
        params={"table_name": "warehouse_stocks", "record_id": str(line.id)},
        headers=_headers(seed.actors.faculty_admin),
    )
    assert r.status_code == 200
    assert [e["action"] for e in r.json()["data"]] == ["STOCK_OPNAME"]

    r = await client.get("/audit-logs", headers=_headers(seed.actors.unit_staff))
    assert r.status_code == 403


async def test_insufficient_stock_maps_to_conflict(client, harness, seed):
    await harness.add_room_stock(seed.room.id, seed.paper.id, 1)
    r = await client.post(
        "/usage-reports",
        json={
            "room_id": str(seed.room.id),
            "activity_name": "practical",
            "items": [{"consumable_id": str(seed.paper.id), "quantity": "2"}],
        },
        headers=_headers(seed.actors.unit_staff),
    )
    assert r.status_code == 409
    assert r.json()["error_kind"] == "InsufficientStock"
