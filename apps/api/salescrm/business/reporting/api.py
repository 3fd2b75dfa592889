from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from salescrm.business.leaderboard.service import build_period
from salescrm.business.reporting.schemas import (
    DashboardRead,
    EmployeeProductivityRead,
    LeadSourceRead,
    OverdueReportRead,
    PipelineStageRead,
    SalesPerformanceRead,
)
from salescrm.business.reporting.service import reporting_service
from salescrm.core.auth import get_auth_context
from salescrm.core.database import get_db
from salescrm.core.rbac import require_roles
from salescrm.crm.enums import Role
from salescrm.platform.security.context import AuthContext


router = APIRouter(prefix="/api/reports", tags=["reports"])

_admins_and_managers = require_roles(Role.SUPER_ADMIN, Role.MANAGER)


@router.get("/dashboard", response_model=DashboardRead)
def dashboard(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> DashboardRead:
    return reporting_service.dashboard(db, ctx)


@router.get("/sales-performance", response_model=SalesPerformanceRead)
def sales_performance(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> SalesPerformanceRead:
    return reporting_service.sales_performance(db, ctx, build_period(start_date, end_date))


@router.get("/pipeline", response_model=list[PipelineStageRead])
def pipeline_breakdown(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[PipelineStageRead]:
    return reporting_service.pipeline_breakdown(db, ctx)


@router.get("/employee-productivity", response_model=list[EmployeeProductivityRead])
def employee_productivity(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(_admins_and_managers),
) -> list[EmployeeProductivityRead]:
    return reporting_service.employee_productivity(db, ctx, build_period(start_date, end_date))


@router.get("/overdue-followups", response_model=OverdueReportRead)
def overdue_followups(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(_admins_and_managers),
) -> OverdueReportRead:
    return reporting_service.overdue_followups(db, ctx)


@router.get("/lead-sources", response_model=list[LeadSourceRead])
def lead_sources(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(_admins_and_managers),
) -> list[LeadSourceRead]:
    return reporting_service.lead_sources(db, ctx, build_period(start_date, end_date))
