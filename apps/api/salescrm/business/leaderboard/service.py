from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from salescrm.business.leaderboard.repository import LeaderboardRepository
from salescrm.business.leaderboard.schemas import (
    LeaderboardEntry,
    ManagerLeaderboardEntry,
    SelfStatsRead,
)
from salescrm.business.reporting.periods import DateRange, add_months, month_start, utcnow
from salescrm.business.users.models import User
from salescrm.crm.enums import Role
from salescrm.metrics import observe_aggregation
from salescrm.otel import get_tracer
from salescrm.platform.security.context import AuthContext
from salescrm.platform.security.errors import ForbiddenError, NotFoundError, ValidationError


logger = logging.getLogger("salescrm.leaderboard")
tracer = get_tracer("salescrm.leaderboard")


def _rank_key(entry: LeaderboardEntry | ManagerLeaderboardEntry) -> tuple:
    return (-entry.metrics.revenue_closed, -entry.metrics.deals_won, str(entry.user_id))


def assign_ranks(entries: list) -> list:
    """Sort by revenue desc, then deals won desc, then user id, and number from 1."""

    entries.sort(key=_rank_key)
    for index, entry in enumerate(entries, start=1):
        entry.rank = index
    return entries


def build_period(start_date: date | datetime | None, end_date: date | datetime | None) -> DateRange:
    period = DateRange.from_dates(start_date, end_date)
    if period.start is not None and period.end is not None and period.start > period.end:
        raise ValidationError("start_date must not be after end_date")
    return period


@dataclass(slots=True)
class LeaderboardService:
    repository: LeaderboardRepository = LeaderboardRepository()

    def global_leaderboard(self, session: Session, ctx: AuthContext, period: DateRange | None = None) -> list[LeaderboardEntry]:
        users = session.scalars(
            select(User).where(User.is_active.is_(True), User.role != Role.SUPER_ADMIN.value)
        ).all()
        return self._ranked("global", session, users, period or DateRange())

    def team_leaderboard(
        self,
        session: Session,
        ctx: AuthContext,
        period: DateRange | None = None,
        *,
        manager_id: uuid.UUID | None = None,
    ) -> list[LeaderboardEntry]:
        if ctx.role == Role.MANAGER:
            if manager_id not in (None, ctx.user_id):
                raise ForbiddenError("managers can only view their own team")
            manager_id = ctx.user_id
        elif ctx.role == Role.SUPER_ADMIN:
            if manager_id is None:
                raise ValidationError("manager_id is required")
            manager = session.get(User, manager_id)
            if manager is None or manager.role != Role.MANAGER:
                raise NotFoundError("users.manager", manager_id)
        else:
            raise ForbiddenError("team leaderboard is limited to managers")

        members = session.scalars(
            select(User).where(User.manager_id == manager_id, User.is_active.is_(True))
        ).all()
        return self._ranked("team", session, members, period or DateRange())

    def managers_leaderboard(
        self, session: Session, ctx: AuthContext, period: DateRange | None = None
    ) -> list[ManagerLeaderboardEntry]:
        period = period or DateRange()
        started = time.perf_counter()
        with tracer.start_as_current_span("leaderboard.managers") as span:
            managers = session.scalars(
                select(User).where(User.role == Role.MANAGER.value, User.is_active.is_(True))
            ).all()
            entries: list[ManagerLeaderboardEntry] = []
            for manager in managers:
                member_ids = set(session.scalars(select(User.id).where(User.manager_id == manager.id)).all())
                entries.append(
                    ManagerLeaderboardEntry(
                        user_id=manager.id,
                        first_name=manager.first_name,
                        last_name=manager.last_name,
                        email=manager.email,
                        avatar=manager.avatar,
                        role=manager.role,
                        metrics=self.repository.team_metrics(session, member_ids, period),
                    )
                )
            assign_ranks(entries)
            span.set_attribute("leaderboard.entries", len(entries))
        self._observe("managers", started, len(entries))
        return entries

    def self_stats(self, session: Session, ctx: AuthContext, period: DateRange | None = None) -> SelfStatsRead:
        user = session.get(User, ctx.user_id)
        if user is None:
            raise NotFoundError("users.user", ctx.user_id)

        global_rank = 0
        for entry in self.global_leaderboard(session, ctx):
            if entry.user_id == user.id:
                global_rank = entry.rank
                break

        return SelfStatsRead(
            user_id=user.id,
            first_name=user.first_name,
            last_name=user.last_name,
            email=user.email,
            avatar=user.avatar,
            metrics=self.repository.user_metrics(session, user.id, period or DateRange()),
            global_rank=global_rank,
        )

    def monthly_stats(self, session: Session, ctx: AuthContext, *, now: datetime | None = None) -> SelfStatsRead:
        start = month_start(now or utcnow())
        end = add_months(start, 1) - timedelta(microseconds=1)
        return self.self_stats(session, ctx, DateRange(start=start, end=end))

    def _ranked(self, board: str, session: Session, users: Iterable[User], period: DateRange) -> list[LeaderboardEntry]:
        started = time.perf_counter()
        with tracer.start_as_current_span(f"leaderboard.{board}") as span:
            entries = [
                LeaderboardEntry(
                    user_id=user.id,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    email=user.email,
                    avatar=user.avatar,
                    role=user.role,
                    metrics=self.repository.user_metrics(session, user.id, period),
                )
                for user in users
            ]
            assign_ranks(entries)
            span.set_attribute("leaderboard.entries", len(entries))
        self._observe(board, started, len(entries))
        return entries

    @staticmethod
    def _observe(board: str, started: float, count: int) -> None:
        duration = time.perf_counter() - started
        observe_aggregation(f"leaderboard.{board}", duration)
        logger.info(
            "leaderboard.built",
            extra={"board": board, "entries": count, "duration_ms": round(duration * 1000, 2)},
        )


leaderboard_service = LeaderboardService()
