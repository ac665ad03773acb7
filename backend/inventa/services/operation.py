from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import pydantic
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from inventa.core.actor import ActorContext
from inventa.core.errors import ConstraintViolation, DomainError, SystemError, ValidationError
from inventa.schemas.common import Outcome
from inventa.services.permissions import Capability, require_any

logger = logging.getLogger("inventa.operation")

M = TypeVar("M", bound=pydantic.BaseModel)
Op = Callable[..., Awaitable[Any]]


def requires(*capabilities: Capability) -> Callable[[Op], Op]:
    """
    Mark a core operation with the capabilities that may invoke it (any of).

    The check runs on every call; `run_operation` also runs it before opening
    a transaction so unauthorized callers never touch the database.
    """

    def deco(fn: Op) -> Op:
        @functools.wraps(fn)
        async def wrapper(session: AsyncSession, actor: ActorContext, *args: Any, **kwargs: Any) -> Any:
            require_any(actor, capabilities)
            return await fn(session, actor, *args, **kwargs)

        wrapper.capabilities = capabilities  # type: ignore[attr-defined]
        return wrapper

    return deco


def parse_input(model: type[M], data: Any) -> M:
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        errors = e.errors(include_url=False, include_context=False, include_input=False)
        raise ValidationError("invalid input", detail={"errors": errors}) from e


async def run_operation(session: AsyncSession, op: Op, actor: ActorContext, *args: Any, **kwargs: Any) -> Outcome:
    """
    Execute one core operation as a single atomic unit of work.

    Every mutation the operation makes (stock, documents, timeline, audit,
    notifications) commits together or not at all. Failures are reported as an
    `Outcome` instead of propagating.
    """
    name = getattr(op, "__name__", repr(op))
    try:
        capabilities = getattr(op, "capabilities", None)
        if capabilities:
            require_any(actor, capabilities)
        async with session.begin():
            data = await op(session, actor, *args, **kwargs)
    except DomainError as e:
        logger.info(
            "operation rejected: op=%s actor=%s role=%s kind=%s message=%s",
            name,
            actor.id,
            actor.role.value,
            e.kind.value,
            e.message,
        )
        return Outcome.failure(e)
    except IntegrityError as e:
        logger.warning("operation constraint violation: op=%s actor=%s err=%s", name, actor.id, e.orig)
        return Outcome.failure(
            ConstraintViolation("the change conflicts with existing data or is still referenced elsewhere")
        )
    except SQLAlchemyError:
        logger.exception("operation failed: op=%s actor=%s", name, actor.id)
        return Outcome.failure(SystemError("unexpected storage failure, please retry"))
    except Exception:
        logger.exception("operation crashed: op=%s actor=%s", name, actor.id)
        return Outcome.failure(SystemError("unexpected failure, please retry"))
    return Outcome.success(data)
