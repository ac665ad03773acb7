from __future__ import annotations

import enum
from typing import Any


class ErrorKind(str, enum.Enum):
    VALIDATION_ERROR = "ValidationError"
    AUTHORIZATION_ERROR = "AuthorizationError"
    NOT_FOUND = "NotFoundError"
    INVALID_STATE_TRANSITION = "InvalidStateTransition"
    INSUFFICIENT_STOCK = "InsufficientStock"
    CONSTRAINT_VIOLATION = "ConstraintViolation"
    SYSTEM_ERROR = "SystemError"


class DomainError(Exception):
    """
    Base for every failure a core operation reports to its caller.

    `message` is safe to show to an end user; `detail` carries structured,
    non-sensitive context (ids, quantities) for the UI layer.
    """

    kind: ErrorKind = ErrorKind.SYSTEM_ERROR

    def __init__(self, message: str, detail: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class ValidationError(DomainError):
    kind = ErrorKind.VALIDATION_ERROR


class AuthorizationError(DomainError):
    kind = ErrorKind.AUTHORIZATION_ERROR


class NotFoundError(DomainError):
    kind = ErrorKind.NOT_FOUND


class InvalidStateTransition(DomainError):
    kind = ErrorKind.INVALID_STATE_TRANSITION


class InsufficientStock(DomainError):
    kind = ErrorKind.INSUFFICIENT_STOCK


class ConstraintViolation(DomainError):
    kind = ErrorKind.CONSTRAINT_VIOLATION


class SystemError(DomainError):  # noqa: A001
    kind = ErrorKind.SYSTEM_ERROR


class InvalidRoom(NotFoundError):
    pass


class LineNotFound(NotFoundError):
    pass


class CrossWarehouseAccessDenied(AuthorizationError):
    pass
