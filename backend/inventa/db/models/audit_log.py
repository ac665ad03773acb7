from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Index, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from inventa.db.base import Base


_JSON = JSON().with_variant(JSONB(), "postgresql")


class AuditLogEntry(Base):
    """System-wide change history: one row per mutation, any table. Append-only."""

    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    actor_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)

    action: Mapped[str] = mapped_column(Text, nullable=False)
    table_name: Mapped[str] = mapped_column(Text, nullable=False)
    record_id: Mapped[str] = mapped_column(Text, nullable=False)

    old_values: Mapped[dict[str, Any] | None] = mapped_column(_JSON, nullable=True)
    new_values: Mapped[dict[str, Any] | None] = mapped_column(_JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)


Index("ix_audit_logs_table_record", AuditLogEntry.table_name, AuditLogEntry.record_id)
Index("ix_audit_logs_created_at", AuditLogEntry.created_at)
