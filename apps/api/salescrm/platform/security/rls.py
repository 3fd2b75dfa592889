from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy import false, select
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from salescrm import audit
from salescrm.business.users.models import User
from salescrm.crm.enums import Role
from salescrm.metrics import observe_scope_denial, observe_scope_resolution
from salescrm.platform.security.context import AuthContext
from salescrm.platform.security.errors import ForbiddenError


logger = logging.getLogger("salescrm.security")

_SCOPE_CACHE_KEY = "access_scope"


@dataclass(frozen=True, slots=True)
class AccessScope:
    """Record owners visible to an actor. ``owner_ids=None`` means unrestricted."""

    owner_ids: frozenset[uuid.UUID] | None

    @property
    def unrestricted(self) -> bool:
        return self.owner_ids is None

    def allows(self, owner_id: uuid.UUID | None) -> bool:
        if self.owner_ids is None:
            return True
        return owner_id is not None and owner_id in self.owner_ids

    def narrow(self, owner_id: uuid.UUID | None) -> AccessScope:
        if owner_id is None:
            return self
        if self.owner_ids is None:
            return AccessScope(frozenset({owner_id}))
        return AccessScope(self.owner_ids & {owner_id})


def direct_report_ids(session: Session, manager_id: uuid.UUID) -> set[uuid.UUID]:
    return set(session.scalars(select(User.id).where(User.manager_id == manager_id)).all())


def resolve_scope(session: Session, ctx: AuthContext) -> AccessScope:
    cached = ctx._cache.get(_SCOPE_CACHE_KEY)
    if cached is not None:
        return cached

    match ctx.role:
        case Role.EMPLOYEE:
            scope = AccessScope(frozenset({ctx.user_id}))
        case Role.MANAGER:
            scope = AccessScope(frozenset({ctx.user_id} | direct_report_ids(session, ctx.user_id)))
        case Role.SUPER_ADMIN:
            scope = AccessScope(None)
        case _:
            logger.warning("access.unknown_role", extra={"actor_id": str(ctx.user_id), "actor_role": str(ctx.role)})
            raise ForbiddenError(f"unknown role '{ctx.role}'")

    observe_scope_resolution(str(ctx.role))
    ctx._cache[_SCOPE_CACHE_KEY] = scope
    return scope


def resolve_owner_filter(session: Session, ctx: AuthContext, requested_owner_id: uuid.UUID | None) -> AccessScope:
    """Combine the actor scope with a caller supplied owner filter.

    Employees are always pinned to themselves, managers get the intersection
    with their team and super admins get the requested owner as-is.
    """

    scope = resolve_scope(session, ctx)
    if ctx.role == Role.EMPLOYEE:
        return scope
    return scope.narrow(requested_owner_id)


def apply_scope_filter(query: Select[Any], column: Any, scope: AccessScope) -> Select[Any]:
    if scope.owner_ids is None:
        return query
    if not scope.owner_ids:
        return query.where(false())
    return query.where(column.in_(sorted(scope.owner_ids, key=str)))


def can_see(session: Session, ctx: AuthContext, owner_id: uuid.UUID | None) -> bool:
    return resolve_scope(session, ctx).allows(owner_id)


def ensure_owner_visible(
    session: Session,
    ctx: AuthContext,
    *,
    resource: str,
    entity_id: Any,
    owner_id: uuid.UUID | None,
    action: str = "read",
) -> None:
    if can_see(session, ctx, owner_id):
        return

    observe_scope_denial(resource=resource, action=action)
    audit.record(
        actor_user_id=str(ctx.user_id),
        entity_type="security.scope",
        entity_id=str(entity_id),
        action="scope.denied",
        before=None,
        after={
            "resource": resource,
            "action": action,
            "owner_id": str(owner_id) if owner_id is not None else None,
            "actor_role": str(ctx.role),
        },
        correlation_id=ctx.correlation_id,
    )
    logger.info(
        "access.denied",
        extra={
            "actor_id": str(ctx.user_id),
            "actor_role": str(ctx.role),
            "resource": resource,
            "entity_id": str(entity_id),
        },
    )
    raise ForbiddenError(f"{resource} is outside your access scope")
