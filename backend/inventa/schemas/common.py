from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from inventa.core.errors import DomainError, ErrorKind


class APIModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class IdResponse(APIModel):
    id: UUID


class Health(APIModel):
    status: str
    time: datetime


class Outcome(BaseModel):
    """Public result of every core operation: `{ok: true, data}` or `{ok: false, error_kind, message}`."""

    ok: bool
    data: Any = None
    error_kind: ErrorKind | None = None
    message: str | None = None
    detail: dict[str, Any] | None = None

    @classmethod
    def success(cls, data: Any = None) -> "Outcome":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, err: DomainError) -> "Outcome":
        return cls(ok=False, error_kind=err.kind, message=err.message, detail=err.detail or None)
