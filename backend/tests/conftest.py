"""
Shared fixtures: a fresh in-memory SQLite database per test, two organization
trees (faculty -> unit -> room, faculty -> warehouse), a small catalog and one
actor per role.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from typing import Any
from uuid import UUID

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from inventa.core.actor import ActorContext, Role
from inventa.db import models
from inventa.db.base import Base
from inventa.schemas.common import Outcome
from inventa.services.operation import run_operation


@pytest.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@dataclass
class Harness:
    """Runs operations and reads state, each through its own session."""

    session_factory: async_sessionmaker[AsyncSession]

    async def run(self, op, actor: ActorContext, *args: Any, **kwargs: Any) -> Outcome:
        async with self.session_factory() as s:
            return await run_operation(s, op, actor, *args, **kwargs)

    async def ok(self, op, actor: ActorContext, *args: Any, **kwargs: Any) -> Any:
        outcome = await self.run(op, actor, *args, **kwargs)
        assert outcome.ok, f"{outcome.error_kind}: {outcome.message} {outcome.detail}"
        return outcome.data

    async def get(self, model, ident):
        async with self.session_factory() as s:
            return await s.get(model, ident)

    async def all(self, stmt) -> list:
        async with self.session_factory() as s:
            return list((await s.execute(stmt)).scalars().all())

    async def count(self, model, *where) -> int:
        async with self.session_factory() as s:
            return int((await s.execute(select(func.count()).select_from(model).where(*where))).scalar_one())

    async def warehouse_total(self, warehouse_id: UUID, consumable_id: UUID) -> Decimal:
        async with self.session_factory() as s:
            total = (
                await s.execute(
                    select(func.coalesce(func.sum(models.WarehouseStockLine.quantity), 0)).where(
                        models.WarehouseStockLine.warehouse_id == warehouse_id,
                        models.WarehouseStockLine.consumable_id == consumable_id,
                    )
                )
            ).scalar_one()
            return Decimal(str(total)).quantize(Decimal("0.01"))

    async def room_qty(self, room_id: UUID, consumable_id: UUID) -> Decimal | None:
        async with self.session_factory() as s:
            line = (
                await s.execute(
                    select(models.RoomStockLine).where(
                        models.RoomStockLine.room_id == room_id,
                        models.RoomStockLine.consumable_id == consumable_id,
                    )
                )
            ).scalar_one_or_none()
            return None if line is None else Decimal(str(line.quantity)).quantize(Decimal("0.01"))

    async def add_stock(
        self,
        warehouse_id: UUID,
        consumable_id: UUID,
        quantity: str | int,
        *,
        batch_number: str | None = None,
        received_at: datetime | None = None,
    ) -> models.WarehouseStockLine:
        now = datetime.now(timezone.utc)
        async with self.session_factory() as s:
            line = models.WarehouseStockLine(
                warehouse_id=warehouse_id,
                consumable_id=consumable_id,
                quantity=Decimal(str(quantity)),
                batch_number=batch_number,
                received_at=received_at or now,
                updated_at=now,
            )
            s.add(line)
            await s.commit()
            return line

    async def add_room_stock(self, room_id: UUID, consumable_id: UUID, quantity: str | int) -> None:
        async with self.session_factory() as s:
            s.add(models.RoomStockLine(room_id=room_id, consumable_id=consumable_id, quantity=Decimal(str(quantity))))
            await s.commit()


@pytest.fixture
def harness(session_factory) -> Harness:
    return Harness(session_factory)


def _actor(user: models.User) -> ActorContext:
    return ActorContext(
        id=user.id,
        role=Role(user.role),
        name=user.name,
        unit_id=user.unit_id,
        faculty_id=user.faculty_id,
        warehouse_id=user.warehouse_id,
    )


@pytest.fixture
async def seed(session_factory) -> SimpleNamespace:
    async with session_factory() as s:
        f1 = models.Faculty(name="Faculty of Science")
        f2 = models.Faculty(name="Faculty of Engineering")
        s.add_all([f1, f2])
        await s.flush()

        u1 = models.Unit(name="Chemistry Lab", faculty_id=f1.id)
        u2 = models.Unit(name="Workshop", faculty_id=f2.id)
        s.add_all([u1, u2])
        await s.flush()

        r1 = models.Room(name="Lab 101", unit_id=u1.id)
        r2 = models.Room(name="Workshop A", unit_id=u2.id)
        w1 = models.Warehouse(name="Science Store", faculty_id=f1.id)
        w2 = models.Warehouse(name="Engineering Store", faculty_id=f2.id)
        s.add_all([r1, r2, w1, w2])
        await s.flush()

        users = {
            "super_admin": models.User(name="Root", role=Role.SUPER_ADMIN.value),
            "faculty_admin": models.User(name="Dean", role=Role.FACULTY_ADMIN.value, faculty_id=f1.id),
            "unit_admin": models.User(name="Head", role=Role.UNIT_ADMIN.value, unit_id=u1.id, faculty_id=f1.id),
            "unit_staff": models.User(name="Tech", role=Role.UNIT_STAFF.value, unit_id=u1.id, faculty_id=f1.id),
            "warehouse_staff": models.User(name="Keeper", role=Role.WAREHOUSE_STAFF.value, warehouse_id=w1.id),
            "other_faculty_admin": models.User(name="Dean2", role=Role.FACULTY_ADMIN.value, faculty_id=f2.id),
            "other_unit_admin": models.User(name="Head2", role=Role.UNIT_ADMIN.value, unit_id=u2.id, faculty_id=f2.id),
            "other_unit_staff": models.User(name="Tech2", role=Role.UNIT_STAFF.value, unit_id=u2.id, faculty_id=f2.id),
            "other_warehouse_staff": models.User(name="Keeper2", role=Role.WAREHOUSE_STAFF.value, warehouse_id=w2.id),
        }
        s.add_all(users.values())

        paper = models.Consumable(name="Filter paper", sku="FP-001", base_unit="sheet", minimum_stock=Decimal("10"))
        reagent = models.Consumable(
            name="Ethanol 96%", sku="ETH-096", base_unit="ml", minimum_stock=Decimal("500"), has_expiry=True
        )
        gloves = models.Consumable(name="Nitrile gloves", sku="GLV-M", base_unit="pair", minimum_stock=Decimal("5"))
        s.add_all([paper, reagent, gloves])
        await s.commit()

    return SimpleNamespace(
        faculty=f1,
        unit=u1,
        room=r1,
        warehouse=w1,
        other_faculty=f2,
        other_unit=u2,
        other_room=r2,
        other_warehouse=w2,
        paper=paper,
        reagent=reagent,
        gloves=gloves,
        users=users,
        actors=SimpleNamespace(**{k: _actor(u) for k, u in users.items()}),
        base_time=datetime.now(timezone.utc) - timedelta(days=30),
    )
