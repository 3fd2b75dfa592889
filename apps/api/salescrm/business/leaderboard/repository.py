from __future__ import annotations

import uuid
from collections.abc import Collection
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from salescrm.business.deals.models import Deal
from salescrm.business.leaderboard.schemas import LeaderboardMetrics, ManagerMetrics
from salescrm.business.reporting.periods import DateRange
from salescrm.business.reporting.rates import money, percentage
from salescrm.crm.enums import CONVERTED_LEAD_STATUSES, ActivityStatus, DealStage
from salescrm.crm.models import Activity, Lead
from salescrm.platform.security.repository import BaseRepository


class LeaderboardRepository(BaseRepository):
    resource = "leaderboard.metrics"

    def won_deals(self, session: Session, owner_ids: Collection[uuid.UUID], period: DateRange) -> tuple[int, Any]:
        if not owner_ids:
            return 0, None
        stmt = select(func.count(Deal.id), func.sum(Deal.value)).where(
            Deal.owner_id.in_(list(owner_ids)),
            Deal.stage == DealStage.CLOSED_WON.value,
        )
        count, total = session.execute(period.apply(stmt, Deal.created_at)).one()
        return int(count or 0), total

    def user_metrics(self, session: Session, user_id: uuid.UUID, period: DateRange) -> LeaderboardMetrics:
        deals_won, revenue = self.won_deals(session, [user_id], period)

        activity_stmt = select(func.count(Activity.id)).where(Activity.assignee_id == user_id)
        activity_stmt = period.apply(activity_stmt, Activity.created_at)
        total_activities = session.scalar(activity_stmt) or 0
        completed = session.scalar(activity_stmt.where(Activity.status == ActivityStatus.COMPLETED.value)) or 0

        lead_stmt = select(func.count(Lead.id)).where(Lead.assignee_id == user_id)
        lead_stmt = period.apply(lead_stmt, Lead.created_at)
        leads_assigned = session.scalar(lead_stmt) or 0
        leads_converted = (
            session.scalar(lead_stmt.where(Lead.status.in_([status.value for status in CONVERTED_LEAD_STATUSES])))
            or 0
        )

        return LeaderboardMetrics(
            revenue_closed=money(revenue),
            deals_won=deals_won,
            activities_completed=completed,
            follow_up_completion_rate=percentage(completed, total_activities),
            lead_conversion_rate=percentage(leads_converted, leads_assigned),
        )

    def team_metrics(self, session: Session, member_ids: Collection[uuid.UUID], period: DateRange) -> ManagerMetrics:
        deals_won, revenue = self.won_deals(session, member_ids, period)
        return ManagerMetrics(revenue_closed=money(revenue), deals_won=deals_won, team_size=len(member_ids))
