from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from salescrm.platform.security.context import AuthContext
from salescrm.platform.security.errors import NotFoundError
from salescrm.platform.security.rls import AccessScope, apply_scope_filter, ensure_owner_visible, resolve_owner_filter


class BaseRepository:
    resource = ""
    model: Any = None
    owner_attribute: str | None = None

    def get(self, session: Session, entity_id: uuid.UUID) -> Any:
        row = session.get(self.model, entity_id)
        if row is None:
            raise NotFoundError(self.resource, entity_id)
        return row

    def exists(self, session: Session, entity_id: uuid.UUID) -> bool:
        return session.scalar(select(self.model.id).where(self.model.id == entity_id)) is not None

    def scope_for(self, session: Session, ctx: AuthContext, owner_id: uuid.UUID | None = None) -> AccessScope:
        return resolve_owner_filter(session, ctx, owner_id)

    def apply_scope_query(
        self,
        session: Session,
        query: Select[Any],
        ctx: AuthContext,
        *,
        owner_id: uuid.UUID | None = None,
    ) -> Select[Any]:
        if self.owner_attribute is None:
            return query
        column = getattr(self.model, self.owner_attribute)
        return apply_scope_filter(query, column, self.scope_for(session, ctx, owner_id))

    def ensure_visible(self, session: Session, ctx: AuthContext, row: Any, *, action: str = "read") -> None:
        if self.owner_attribute is None:
            return
        ensure_owner_visible(
            session,
            ctx,
            resource=self.resource,
            entity_id=row.id,
            owner_id=getattr(row, self.owner_attribute),
            action=action,
        )

    def get_visible(self, session: Session, ctx: AuthContext, entity_id: uuid.UUID, *, action: str = "read") -> Any:
        row = self.get(session, entity_id)
        self.ensure_visible(session, ctx, row, action=action)
        return row
