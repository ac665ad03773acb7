from __future__ import annotations

import enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class Role(str, enum.Enum):
    SUPER_ADMIN = "super_admin"
    FACULTY_ADMIN = "faculty_admin"
    UNIT_ADMIN = "unit_admin"
    UNIT_STAFF = "unit_staff"
    WAREHOUSE_STAFF = "warehouse_staff"


class ActorContext(BaseModel):
    """Authenticated caller, supplied by the identity provider on every operation."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    role: Role
    name: str | None = None
    unit_id: UUID | None = None
    faculty_id: UUID | None = None
    warehouse_id: UUID | None = None
