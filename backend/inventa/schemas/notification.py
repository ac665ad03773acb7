from __future__ import annotations

from datetime import datetime
from uuid import UUID

from inventa.schemas.common import APIModel


class NotificationOut(APIModel):
    id: UUID
    title: str
    message: str
    type: str
    link: str | None = None
    is_read: bool
    created_at: datetime
