from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from salescrm.business.deals.models import Deal
from salescrm.business.deals.stages import CLOSED_STAGES
from salescrm.business.reporting.periods import DateRange, day_bounds, month_start, trailing_months, utcnow
from salescrm.business.reporting.rates import money, percentage
from salescrm.business.reporting.repository import ReportingRepository
from salescrm.business.reporting.schemas import (
    AssigneeRead,
    DashboardRead,
    EmployeeProductivityRead,
    LeadSourceRead,
    MonthlyCount,
    MonthlyRevenue,
    OverdueActivityRead,
    OverdueGroupRead,
    OverdueReportRead,
    PipelineStageRead,
    SalesPerformanceRead,
)
from salescrm.business.users.models import User
from salescrm.crm.enums import (
    CLOSED_LEAD_STATUSES,
    CONVERTED_LEAD_STATUSES,
    PENDING_ACTIVITY_STATUSES,
    ActivityStatus,
    DealStage,
    Role,
)
from salescrm.crm.models import Activity, Customer, Lead
from salescrm.metrics import observe_aggregation
from salescrm.otel import get_tracer
from salescrm.platform.security.context import AuthContext
from salescrm.platform.security.rls import apply_scope_filter


logger = logging.getLogger("salescrm.reports")
tracer = get_tracer("salescrm.reports")

_CLOSED_LEADS = [status.value for status in CLOSED_LEAD_STATUSES]
_CONVERTED = [status.value for status in CONVERTED_LEAD_STATUSES]
_PENDING = [status.value for status in PENDING_ACTIVITY_STATUSES]
_CLOSED = [stage.value for stage in CLOSED_STAGES]


@dataclass(slots=True)
class ReportingService:
    repository: ReportingRepository = ReportingRepository()

    def dashboard(self, session: Session, ctx: AuthContext, *, now: datetime | None = None) -> DashboardRead:
        now = now or utcnow()
        today_start, tomorrow = day_bounds(now)
        this_month = month_start(now)
        scope = self.repository.own_or_all(ctx)

        with self._measure("dashboard"):
            leads = self.repository.leads(select(func.count(Lead.id)), scope)
            deals = self.repository.deals(select(func.count(Deal.id)), scope)
            won_this_month = self.repository.deals(
                select(func.count(Deal.id), func.sum(Deal.value)).where(
                    Deal.stage == DealStage.CLOSED_WON.value,
                    Deal.actual_close_date >= this_month,
                ),
                scope,
            )
            activities = self.repository.activities(select(func.count(Activity.id)), scope)

            won_count, won_revenue = session.execute(won_this_month).one()
            return DashboardRead(
                total_leads=session.scalar(leads) or 0,
                new_leads_this_month=session.scalar(leads.where(Lead.created_at >= this_month)) or 0,
                total_customers=session.scalar(self.repository.customers(select(func.count(Customer.id)), scope)) or 0,
                total_deals=session.scalar(deals) or 0,
                open_deals=session.scalar(deals.where(Deal.stage.not_in(_CLOSED))) or 0,
                won_deals_this_month=int(won_count or 0),
                revenue_this_month=money(won_revenue),
                activities_today=session.scalar(
                    activities.where(Activity.scheduled_at >= today_start, Activity.scheduled_at < tomorrow)
                )
                or 0,
                overdue_activities=session.scalar(
                    activities.where(Activity.scheduled_at < today_start, Activity.status.in_(_PENDING))
                )
                or 0,
            )

    def sales_performance(
        self,
        session: Session,
        ctx: AuthContext,
        period: DateRange | None = None,
        *,
        now: datetime | None = None,
    ) -> SalesPerformanceRead:
        period = period or DateRange()
        months = trailing_months(now or utcnow())
        scope = self.repository.resolve(session, ctx)

        with self._measure("sales_performance"):
            leads = period.apply(self.repository.leads(select(func.count(Lead.id)), scope), Lead.created_at)
            total_leads = session.scalar(leads) or 0
            closed_leads = session.scalar(leads.where(Lead.status.in_(_CLOSED_LEADS))) or 0

            monthly_closed = [
                MonthlyCount(
                    month=key,
                    count=session.scalar(
                        self.repository.leads(
                            select(func.count(Lead.id)).where(
                                Lead.status.in_(_CLOSED_LEADS),
                                Lead.created_at >= start,
                                Lead.created_at < end,
                            ),
                            scope,
                        )
                    )
                    or 0,
                )
                for key, start, end in months
            ]

            won_stmt = period.apply(
                self.repository.deals(
                    select(func.count(Deal.id), func.sum(Deal.value), func.avg(Deal.value)).where(
                        Deal.stage == DealStage.CLOSED_WON.value
                    ),
                    scope,
                ),
                Deal.created_at,
            )
            won_deals, total_revenue, avg_value = session.execute(won_stmt).one()
            lost_deals = session.scalar(
                period.apply(
                    self.repository.deals(
                        select(func.count(Deal.id)).where(Deal.stage == DealStage.CLOSED_LOST.value), scope
                    ),
                    Deal.created_at,
                )
            ) or 0

            monthly_revenue = [
                MonthlyRevenue(
                    month=key,
                    revenue=money(
                        session.scalar(
                            self.repository.deals(
                                select(func.sum(Deal.value)).where(
                                    Deal.stage == DealStage.CLOSED_WON.value,
                                    Deal.actual_close_date >= start,
                                    Deal.actual_close_date < end,
                                ),
                                scope,
                            )
                        )
                    ),
                )
                for key, start, end in months
            ]

            won_deals = int(won_deals or 0)
            return SalesPerformanceRead(
                total_leads=total_leads,
                closed_leads=closed_leads,
                conversion_rate=percentage(closed_leads, total_leads),
                monthly_closed_leads=monthly_closed,
                total_revenue=money(total_revenue),
                won_deals=won_deals,
                lost_deals=lost_deals,
                win_rate=percentage(won_deals, won_deals + lost_deals),
                avg_deal_size=money(avg_value),
                monthly_revenue=monthly_revenue,
            )

    def pipeline_breakdown(self, session: Session, ctx: AuthContext) -> list[PipelineStageRead]:
        scope = self.repository.resolve(session, ctx)
        with self._measure("pipeline_breakdown"):
            stmt = self.repository.deals(
                select(Deal.stage, func.count(Deal.id), func.sum(Deal.value)).group_by(Deal.stage), scope
            )
            totals = {stage: (int(count), money(value)) for stage, count, value in session.execute(stmt).all()}
            return [
                PipelineStageRead(
                    stage=stage.value,
                    count=totals.get(stage.value, (0, money(0)))[0],
                    value=totals.get(stage.value, (0, money(0)))[1],
                )
                for stage in DealStage
            ]

    def employee_productivity(
        self,
        session: Session,
        ctx: AuthContext,
        period: DateRange | None = None,
    ) -> list[EmployeeProductivityRead]:
        period = period or DateRange()
        scope = self.repository.resolve(session, ctx)

        with self._measure("employee_productivity"):
            employees = session.scalars(
                apply_scope_filter(
                    select(User).where(User.role == Role.EMPLOYEE.value, User.is_active.is_(True)),
                    User.id,
                    scope,
                )
            ).all()

            rows: list[EmployeeProductivityRead] = []
            for employee in employees:
                leads = period.apply(select(func.count(Lead.id)).where(Lead.assignee_id == employee.id), Lead.created_at)
                activities = period.apply(
                    select(func.count(Activity.id)).where(Activity.assignee_id == employee.id), Activity.created_at
                )
                won = period.apply(
                    select(func.count(Deal.id), func.sum(Deal.value)).where(
                        Deal.owner_id == employee.id, Deal.stage == DealStage.CLOSED_WON.value
                    ),
                    Deal.created_at,
                )

                leads_assigned = session.scalar(leads) or 0
                leads_converted = session.scalar(leads.where(Lead.status.in_(_CONVERTED))) or 0
                activities_total = session.scalar(activities) or 0
                activities_completed = (
                    session.scalar(activities.where(Activity.status == ActivityStatus.COMPLETED.value)) or 0
                )
                deals_won, revenue = session.execute(won).one()

                rows.append(
                    EmployeeProductivityRead(
                        id=employee.id,
                        name=employee.full_name,
                        leads_assigned=leads_assigned,
                        leads_converted=leads_converted,
                        lead_conversion_rate=percentage(leads_converted, leads_assigned),
                        activities_total=activities_total,
                        activities_completed=activities_completed,
                        activity_completion_rate=percentage(activities_completed, activities_total),
                        deals_won=int(deals_won or 0),
                        revenue=money(revenue),
                    )
                )

            rows.sort(key=lambda row: (-row.leads_converted, -row.revenue, str(row.id)))
            return rows

    def overdue_followups(self, session: Session, ctx: AuthContext, *, now: datetime | None = None) -> OverdueReportRead:
        scope = self.repository.resolve(session, ctx)
        with self._measure("overdue_followups"):
            stmt = self.repository.activities(
                select(Activity).where(Activity.scheduled_at < (now or utcnow()), Activity.status.in_(_PENDING)),
                scope,
            )
            activities = session.scalars(stmt.order_by(Activity.scheduled_at.asc(), Activity.id)).all()

            assignee_ids = {activity.assignee_id for activity in activities}
            assignees = {
                user.id: user
                for user in session.scalars(select(User).where(User.id.in_(list(assignee_ids)))).all()
            } if assignee_ids else {}

            groups: dict[uuid.UUID, OverdueGroupRead] = {}
            items: list[OverdueActivityRead] = []
            for activity in activities:
                item = OverdueActivityRead.model_validate(activity)
                items.append(item)
                group = groups.get(activity.assignee_id)
                if group is None:
                    user = assignees.get(activity.assignee_id)
                    group = OverdueGroupRead(
                        assignee=AssigneeRead.model_validate(user) if user is not None else None,
                        count=0,
                    )
                    groups[activity.assignee_id] = group
                group.activities.append(item)
                group.count += 1

            by_assignee = sorted(
                groups.items(),
                key=lambda pair: (-pair[1].count, str(pair[0])),
            )
            return OverdueReportRead(
                total_overdue=len(items),
                by_assignee=[group for _, group in by_assignee],
                activities=items,
            )

    def lead_sources(self, session: Session, ctx: AuthContext, period: DateRange | None = None) -> list[LeadSourceRead]:
        period = period or DateRange()
        scope = self.repository.resolve(session, ctx)
        with self._measure("lead_sources"):
            base = period.apply(
                self.repository.leads(select(Lead.source, func.count(Lead.id)).group_by(Lead.source), scope),
                Lead.created_at,
            )
            totals = dict(session.execute(base).all())
            converted = dict(session.execute(base.where(Lead.status.in_(_CONVERTED))).all())

            rows = [
                LeadSourceRead(
                    source=source,
                    count=int(count),
                    converted=int(converted.get(source, 0)),
                    conversion_rate=percentage(int(converted.get(source, 0)), int(count)),
                )
                for source, count in totals.items()
            ]
            rows.sort(key=lambda row: (-row.count, row.source))
            return rows

    @contextmanager
    def _measure(self, report: str) -> Iterator[None]:
        started = time.perf_counter()
        with tracer.start_as_current_span(f"reports.{report}"):
            yield
        duration = time.perf_counter() - started
        observe_aggregation(f"reports.{report}", duration)
        logger.info("report.built", extra={"board": report, "duration_ms": round(duration * 1000, 2)})


reporting_service = ReportingService()
