from __future__ import annotations

from fastapi.responses import JSONResponse

from inventa.core.errors import ErrorKind
from inventa.schemas.common import Outcome

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION_ERROR: 422,
    ErrorKind.AUTHORIZATION_ERROR: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_STATE_TRANSITION: 409,
    ErrorKind.INSUFFICIENT_STOCK: 409,
    ErrorKind.CONSTRAINT_VIOLATION: 409,
    ErrorKind.SYSTEM_ERROR: 500,
}


def respond(outcome: Outcome, success_status: int = 200) -> JSONResponse:
    status = success_status if outcome.ok else STATUS_BY_KIND.get(outcome.error_kind, 500)
    return JSONResponse(status_code=status, content=outcome.model_dump(mode="json"))
