from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class DashboardRead(BaseModel):
    total_leads: int
    new_leads_this_month: int
    total_customers: int
    total_deals: int
    open_deals: int
    won_deals_this_month: int
    revenue_this_month: Decimal
    activities_today: int
    overdue_activities: int


class MonthlyCount(BaseModel):
    month: str
    count: int


class MonthlyRevenue(BaseModel):
    month: str
    revenue: Decimal


class SalesPerformanceRead(BaseModel):
    total_leads: int
    closed_leads: int
    conversion_rate: int
    monthly_closed_leads: list[MonthlyCount]
    total_revenue: Decimal
    won_deals: int
    lost_deals: int
    win_rate: int
    avg_deal_size: Decimal
    monthly_revenue: list[MonthlyRevenue]


class PipelineStageRead(BaseModel):
    stage: str
    count: int
    value: Decimal


class EmployeeProductivityRead(BaseModel):
    id: UUID
    name: str
    leads_assigned: int
    leads_converted: int
    lead_conversion_rate: int
    activities_total: int
    activities_completed: int
    activity_completion_rate: int
    deals_won: int
    revenue: Decimal


class AssigneeRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    first_name: str
    last_name: str
    email: str


class OverdueActivityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    type: str
    status: str
    scheduled_at: datetime
    assignee_id: UUID
    lead_id: UUID | None
    customer_id: UUID | None
    deal_id: UUID | None


class OverdueGroupRead(BaseModel):
    assignee: AssigneeRead | None
    count: int
    activities: list[OverdueActivityRead] = Field(default_factory=list)


class OverdueReportRead(BaseModel):
    total_overdue: int
    by_assignee: list[OverdueGroupRead]
    activities: list[OverdueActivityRead]


class LeadSourceRead(BaseModel):
    source: str
    count: int
    converted: int
    conversion_rate: int
