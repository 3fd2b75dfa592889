from __future__ import annotations

from typing import Any

from sqlalchemy import Select
from sqlalchemy.orm import Session

from salescrm.business.deals.models import Deal
from salescrm.crm.models import Activity, Customer, Lead
from salescrm.platform.security.context import AuthContext
from salescrm.platform.security.repository import BaseRepository
from salescrm.platform.security.rls import AccessScope, apply_scope_filter


class ReportingRepository(BaseRepository):
    """Scope filters for the columns each report aggregates over."""

    resource = "reports"

    def scoped(self, query: Select[Any], column: Any, scope: AccessScope) -> Select[Any]:
        return apply_scope_filter(query, column, scope)

    def own_or_all(self, ctx: AuthContext) -> AccessScope:
        # the dashboard counts a non super admin's own records only
        if ctx.is_super_admin:
            return AccessScope(None)
        return AccessScope(frozenset({ctx.user_id}))

    def leads(self, query: Select[Any], scope: AccessScope) -> Select[Any]:
        return self.scoped(query, Lead.assignee_id, scope)

    def deals(self, query: Select[Any], scope: AccessScope) -> Select[Any]:
        return self.scoped(query, Deal.owner_id, scope)

    def activities(self, query: Select[Any], scope: AccessScope) -> Select[Any]:
        return self.scoped(query, Activity.assignee_id, scope)

    def customers(self, query: Select[Any], scope: AccessScope) -> Select[Any]:
        return self.scoped(query, Customer.assignee_id, scope)

    def resolve(self, session: Session, ctx: AuthContext) -> AccessScope:
        return self.scope_for(session, ctx)
