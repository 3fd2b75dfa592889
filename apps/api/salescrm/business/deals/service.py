from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from salescrm import audit, events
from salescrm.business.deals.models import Deal
from salescrm.business.deals.repository import DealRepository
from salescrm.business.deals.schemas import DealCreate, DealRead, DealStatsRead, DealUpdate, StageBucket
from salescrm.business.deals.stages import apply_stage_transition
from salescrm.business.reporting.rates import money
from salescrm.business.users.models import User
from salescrm.crm.enums import DealStage, Role
from salescrm.crm.models import Customer, Lead
from salescrm.platform.security.context import AuthContext
from salescrm.platform.security.errors import ForbiddenError, NotFoundError
from salescrm.platform.security.rls import ensure_owner_visible


logger = logging.getLogger("salescrm.deals")

_AUDITED_FIELDS = (
    "title",
    "value",
    "stage",
    "probability",
    "owner_id",
    "customer_id",
    "lead_id",
    "expected_close_date",
    "actual_close_date",
)


@dataclass(slots=True)
class DealsService:
    deal_repository: DealRepository = DealRepository()

    def create_deal(self, session: Session, ctx: AuthContext, payload: DealCreate) -> DealRead:
        data = payload.model_dump(mode="python")
        owner_id = self._resolve_owner(session, ctx, data.pop("owner_id"))
        self._ensure_references(session, customer_id=data.get("customer_id"), lead_id=data.get("lead_id"))

        stage = data.pop("stage")
        probability = data.pop("probability")
        deal = Deal(**data, owner_id=owner_id)
        apply_stage_transition(deal, stage, probability=probability)
        session.add(deal)
        session.commit()
        session.refresh(deal)

        self._record(ctx, deal, "deals.deal.created", before=None)
        logger.info(
            "deal.created",
            extra={"actor_id": str(ctx.user_id), "entity_id": str(deal.id), "stage": deal.stage},
        )
        return DealRead.model_validate(deal)

    def create_from_lead(self, session: Session, ctx: AuthContext, lead_id: uuid.UUID, payload: DealCreate) -> DealRead:
        if session.get(Lead, lead_id) is None:
            raise NotFoundError("crm.lead", lead_id)
        return self.create_deal(session, ctx, payload.model_copy(update={"lead_id": lead_id}))

    def list_deals(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        stage: DealStage | str | None = None,
        owner_id: uuid.UUID | None = None,
        customer_id: uuid.UUID | None = None,
        search: str | None = None,
    ) -> list[DealRead]:
        stmt: Select[tuple[Deal]] = select(Deal)
        if stage is not None:
            stmt = stmt.where(Deal.stage == DealStage(stage).value)
        if customer_id is not None:
            stmt = stmt.where(Deal.customer_id == customer_id)
        if search:
            stmt = stmt.where(Deal.title.ilike(f"%{search.strip()}%"))

        stmt = self.deal_repository.apply_scope_query(session, stmt, ctx, owner_id=owner_id)
        rows = session.scalars(stmt.order_by(Deal.created_at.desc(), Deal.id)).unique().all()
        return [DealRead.model_validate(row) for row in rows]

    def get_deal(self, session: Session, ctx: AuthContext, deal_id: uuid.UUID) -> DealRead:
        return DealRead.model_validate(self.deal_repository.get_visible(session, ctx, deal_id))

    def update_deal(self, session: Session, ctx: AuthContext, deal_id: uuid.UUID, payload: DealUpdate) -> DealRead:
        deal = self.deal_repository.get_visible(session, ctx, deal_id, action="update")
        changes = payload.model_dump(exclude_unset=True, mode="python")
        self._ensure_references(session, customer_id=changes.get("customer_id"), lead_id=changes.get("lead_id"))

        before = self._snapshot(deal)
        stage = changes.pop("stage", None)
        probability = changes.pop("probability", None)
        if stage is not None and (DealStage(stage).value != deal.stage or probability is not None):
            apply_stage_transition(deal, stage, probability=probability)
        elif probability is not None:
            deal.probability = probability

        for key, value in changes.items():
            if key in {"title", "value"} and value is None:
                continue
            setattr(deal, key, value)

        session.add(deal)
        session.commit()
        session.refresh(deal)

        self._record(ctx, deal, "deals.deal.updated", before=before)
        if before["stage"] != deal.stage:
            self._log_stage_change(ctx, deal, before["stage"])
        return DealRead.model_validate(deal)

    def update_stage(self, session: Session, ctx: AuthContext, deal_id: uuid.UUID, stage: DealStage | str) -> DealRead:
        deal = self.deal_repository.get_visible(session, ctx, deal_id, action="update")
        before = self._snapshot(deal)
        apply_stage_transition(deal, stage)
        session.add(deal)
        session.commit()
        session.refresh(deal)

        self._record(ctx, deal, "deals.deal.stage_changed", before=before)
        self._log_stage_change(ctx, deal, before["stage"])
        return DealRead.model_validate(deal)

    def delete_deal(self, session: Session, ctx: AuthContext, deal_id: uuid.UUID) -> None:
        if ctx.role == Role.EMPLOYEE:
            raise ForbiddenError("Employees cannot delete deals")
        deal = self.deal_repository.get_visible(session, ctx, deal_id, action="delete")
        before = self._snapshot(deal)
        session.delete(deal)
        session.commit()

        audit.record(
            actor_user_id=str(ctx.user_id),
            entity_type="deals.deal",
            entity_id=str(deal_id),
            action="deals.deal.deleted",
            before=before,
            after=None,
            correlation_id=ctx.correlation_id,
        )
        events.publish({"event_type": "deals.deal.deleted", "deal_id": str(deal_id), "correlation_id": ctx.correlation_id})

    def deal_stats(self, session: Session, ctx: AuthContext) -> DealStatsRead:
        stmt = select(Deal.stage, func.count(Deal.id), func.sum(Deal.value)).group_by(Deal.stage)
        stmt = self.deal_repository.apply_scope_query(session, stmt, ctx)

        by_stage = {stage.value: StageBucket(value=money(0)) for stage in DealStage}
        for stage, count, value in session.execute(stmt).all():
            by_stage[stage] = StageBucket(count=int(count), value=money(value))

        won = by_stage[DealStage.CLOSED_WON.value]
        return DealStatsRead(
            total_deals=sum(bucket.count for bucket in by_stage.values()),
            total_value=money(sum(bucket.value for bucket in by_stage.values())),
            won_deals=won.count,
            won_value=won.value,
            by_stage=by_stage,
        )

    def pipeline(self, session: Session, ctx: AuthContext) -> dict[str, list[DealRead]]:
        stmt = self.deal_repository.apply_scope_query(session, select(Deal), ctx)
        rows = session.scalars(stmt.order_by(Deal.updated_at.desc(), Deal.id)).unique().all()

        grouped: dict[str, list[DealRead]] = {stage.value: [] for stage in DealStage}
        for row in rows:
            grouped.setdefault(row.stage, []).append(DealRead.model_validate(row))
        return grouped

    def _resolve_owner(self, session: Session, ctx: AuthContext, requested: uuid.UUID | None) -> uuid.UUID:
        if requested is None or requested == ctx.user_id or ctx.role == Role.EMPLOYEE:
            return ctx.user_id
        if session.get(User, requested) is None:
            raise NotFoundError("users.user", requested)
        ensure_owner_visible(
            session,
            ctx,
            resource=self.deal_repository.resource,
            entity_id="new",
            owner_id=requested,
            action="create",
        )
        return requested

    @staticmethod
    def _ensure_references(session: Session, *, customer_id: uuid.UUID | None, lead_id: uuid.UUID | None) -> None:
        if customer_id is not None and session.get(Customer, customer_id) is None:
            raise NotFoundError("crm.customer", customer_id)
        if lead_id is not None and session.get(Lead, lead_id) is None:
            raise NotFoundError("crm.lead", lead_id)

    @staticmethod
    def _snapshot(deal: Deal) -> dict[str, Any]:
        snapshot: dict[str, Any] = {}
        for key in _AUDITED_FIELDS:
            value = getattr(deal, key)
            snapshot[key] = value if value is None or isinstance(value, (int, str)) else str(value)
        return snapshot

    def _record(self, ctx: AuthContext, deal: Deal, action: str, *, before: dict[str, Any] | None) -> None:
        audit.record(
            actor_user_id=str(ctx.user_id),
            entity_type="deals.deal",
            entity_id=str(deal.id),
            action=action,
            before=before,
            after=self._snapshot(deal),
            correlation_id=ctx.correlation_id,
        )
        events.publish(
            {
                "event_type": action,
                "deal_id": str(deal.id),
                "owner_id": str(deal.owner_id),
                "stage": deal.stage,
                "value": str(deal.value),
                "correlation_id": ctx.correlation_id,
            }
        )

    @staticmethod
    def _log_stage_change(ctx: AuthContext, deal: Deal, previous_stage: str | None) -> None:
        logger.info(
            "deal.stage_changed",
            extra={
                "actor_id": str(ctx.user_id),
                "entity_id": str(deal.id),
                "stage": deal.stage,
                "previous_stage": previous_stage,
            },
        )


deals_service = DealsService()
