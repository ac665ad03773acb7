from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from inventa.schemas.common import APIModel


class AuditLogOut(APIModel):
    id: UUID
    actor_id: UUID | None = None
    action: str
    table_name: str
    record_id: str
    old_values: dict[str, Any] | None = None
    new_values: dict[str, Any] | None = None
    created_at: datetime
