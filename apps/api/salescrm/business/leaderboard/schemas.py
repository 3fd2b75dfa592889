from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel


class LeaderboardMetrics(BaseModel):
    revenue_closed: Decimal = Decimal("0.00")
    deals_won: int = 0
    activities_completed: int = 0
    follow_up_completion_rate: int = 0
    lead_conversion_rate: int = 0


class LeaderboardEntry(BaseModel):
    user_id: UUID
    first_name: str
    last_name: str
    email: str
    avatar: str | None = None
    role: str
    metrics: LeaderboardMetrics
    rank: int = 0


class ManagerMetrics(BaseModel):
    revenue_closed: Decimal = Decimal("0.00")
    deals_won: int = 0
    team_size: int = 0


class ManagerLeaderboardEntry(BaseModel):
    user_id: UUID
    first_name: str
    last_name: str
    email: str
    avatar: str | None = None
    role: str
    metrics: ManagerMetrics
    rank: int = 0


class SelfStatsRead(BaseModel):
    user_id: UUID
    first_name: str
    last_name: str
    email: str
    avatar: str | None = None
    metrics: LeaderboardMetrics
    global_rank: int = 0
