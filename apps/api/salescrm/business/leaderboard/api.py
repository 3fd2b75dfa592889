from __future__ import annotations

import uuid
from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from salescrm.business.leaderboard.schemas import LeaderboardEntry, ManagerLeaderboardEntry, SelfStatsRead
from salescrm.business.leaderboard.service import build_period, leaderboard_service
from salescrm.core.auth import get_auth_context
from salescrm.core.database import get_db
from salescrm.core.rbac import require_roles
from salescrm.crm.enums import Role
from salescrm.platform.security.context import AuthContext


router = APIRouter(prefix="/api/leaderboard", tags=["leaderboard"])


@router.get("/global", response_model=list[LeaderboardEntry])
def global_leaderboard(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(require_roles(Role.SUPER_ADMIN, Role.MANAGER)),
) -> list[LeaderboardEntry]:
    return leaderboard_service.global_leaderboard(db, ctx, build_period(start_date, end_date))


@router.get("/team", response_model=list[LeaderboardEntry])
def team_leaderboard(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    manager_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(require_roles(Role.SUPER_ADMIN, Role.MANAGER)),
) -> list[LeaderboardEntry]:
    return leaderboard_service.team_leaderboard(db, ctx, build_period(start_date, end_date), manager_id=manager_id)


@router.get("/managers", response_model=list[ManagerLeaderboardEntry])
def managers_leaderboard(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[ManagerLeaderboardEntry]:
    return leaderboard_service.managers_leaderboard(db, ctx, build_period(start_date, end_date))


@router.get("/self", response_model=SelfStatsRead)
def self_stats(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> SelfStatsRead:
    return leaderboard_service.self_stats(db, ctx, build_period(start_date, end_date))


@router.get("/monthly", response_model=SelfStatsRead)
def monthly_stats(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> SelfStatsRead:
    return leaderboard_service.monthly_stats(db, ctx)
