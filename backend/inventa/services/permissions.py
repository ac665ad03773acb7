from __future__ import annotations

import enum
from dataclasses import dataclass
from uuid import UUID

from inventa.core.actor import ActorContext, Role
from inventa.core.errors import AuthorizationError


class Capability(str, enum.Enum):
    REQUEST_CREATE = "request:create"
    REQUEST_UPDATE = "request:update"
    REQUEST_CANCEL = "request:cancel"
    REQUEST_APPROVE_UNIT = "request:approve_unit"
    REQUEST_APPROVE_FACULTY = "request:approve_faculty"
    REQUEST_FULFILL = "request:fulfill"
    PROCUREMENT_CREATE = "procurement:create"
    PROCUREMENT_UPDATE = "procurement:update"
    PROCUREMENT_DELETE = "procurement:delete"
    PROCUREMENT_APPROVE = "procurement:approve"
    PROCUREMENT_RECEIVE = "procurement:receive"
    USAGE_REPORT = "usage:report"
    STOCK_ADJUST = "stock:adjust"
    STOCK_READ = "stock:read"
    CATALOG_WRITE = "catalog:write"
    CATALOG_DELETE = "catalog:delete"
    AUDIT_READ = "audit:read"


# super_admin administers procurement, stock and catalog but never acts inside
# the request approval chain or the warehouse fulfillment queue.
ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.SUPER_ADMIN: frozenset(
        {
            Capability.PROCUREMENT_CREATE,
            Capability.PROCUREMENT_UPDATE,
            Capability.PROCUREMENT_DELETE,
            Capability.PROCUREMENT_APPROVE,
            Capability.PROCUREMENT_RECEIVE,
            Capability.STOCK_ADJUST,
            Capability.STOCK_READ,
            Capability.CATALOG_WRITE,
            Capability.CATALOG_DELETE,
            Capability.AUDIT_READ,
        }
    ),
    Role.FACULTY_ADMIN: frozenset(
        {
            Capability.REQUEST_APPROVE_FACULTY,
            Capability.PROCUREMENT_APPROVE,
            Capability.STOCK_READ,
            Capability.AUDIT_READ,
        }
    ),
    Role.UNIT_ADMIN: frozenset(
        {
            Capability.REQUEST_CREATE,
            Capability.REQUEST_UPDATE,
            Capability.REQUEST_CANCEL,
            Capability.REQUEST_APPROVE_UNIT,
            Capability.USAGE_REPORT,
            Capability.STOCK_READ,
        }
    ),
    Role.UNIT_STAFF: frozenset(
        {
            Capability.REQUEST_CREATE,
            Capability.REQUEST_UPDATE,
            Capability.REQUEST_CANCEL,
            Capability.USAGE_REPORT,
            Capability.STOCK_READ,
        }
    ),
    Role.WAREHOUSE_STAFF: frozenset(
        {
            Capability.REQUEST_FULFILL,
            Capability.PROCUREMENT_CREATE,
            Capability.PROCUREMENT_UPDATE,
            Capability.PROCUREMENT_DELETE,
            Capability.PROCUREMENT_RECEIVE,
            Capability.STOCK_ADJUST,
            Capability.STOCK_READ,
            Capability.CATALOG_WRITE,
        }
    ),
}


@dataclass(frozen=True)
class Scope:
    """
    Organizational location of the row being acted on.

    A role is only checked against the dimension it is assigned to: unit roles
    against `unit_id`, faculty_admin against `faculty_id`, warehouse_staff
    against `warehouse_id`. A dimension left as None does not restrict.
    """

    unit_id: UUID | None = None
    faculty_id: UUID | None = None
    warehouse_id: UUID | None = None


def has_capability(actor: ActorContext, capability: Capability) -> bool:
    return capability in ROLE_CAPABILITIES.get(actor.role, frozenset())


def in_scope(actor: ActorContext, scope: Scope | None) -> bool:
    if scope is None or actor.role == Role.SUPER_ADMIN:
        return True
    if actor.role in (Role.UNIT_ADMIN, Role.UNIT_STAFF):
        return scope.unit_id is None or scope.unit_id == actor.unit_id
    if actor.role == Role.FACULTY_ADMIN:
        return scope.faculty_id is None or scope.faculty_id == actor.faculty_id
    if actor.role == Role.WAREHOUSE_STAFF:
        return scope.warehouse_id is None or scope.warehouse_id == actor.warehouse_id
    return False


def is_allowed(actor: ActorContext, capability: Capability, scope: Scope | None = None) -> bool:
    return has_capability(actor, capability) and in_scope(actor, scope)


def require(
    actor: ActorContext,
    capability: Capability,
    scope: Scope | None = None,
    *,
    error_cls: type[AuthorizationError] = AuthorizationError,
) -> None:
    if not has_capability(actor, capability):
        raise AuthorizationError(
            f"role {actor.role.value} may not perform {capability.value}",
            detail={"role": actor.role.value, "capability": capability.value},
        )
    if not in_scope(actor, scope):
        raise error_cls(
            "target is outside your assigned organization scope",
            detail={"role": actor.role.value, "capability": capability.value},
        )


def require_any(actor: ActorContext, capabilities: tuple[Capability, ...]) -> None:
    if not any(has_capability(actor, c) for c in capabilities):
        raise AuthorizationError(
            f"role {actor.role.value} may not perform this operation",
            detail={"role": actor.role.value, "capabilities": [c.value for c in capabilities]},
        )
