from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any


@dataclass(frozen=True, slots=True)
class DateRange:
    start: datetime | None = None
    end: datetime | None = None

    @classmethod
    def from_dates(cls, start_date: date | datetime | None, end_date: date | datetime | None) -> DateRange:
        return cls(start=_as_start(start_date), end=_as_end(end_date))

    def apply(self, query: Any, column: Any) -> Any:
        if self.start is not None:
            query = query.where(column >= self.start)
        if self.end is not None:
            query = query.where(column <= self.end)
        return query


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _as_start(value: date | datetime | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _as_end(value: date | datetime | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    return datetime.combine(value, time.max, tzinfo=timezone.utc)


def day_bounds(now: datetime) -> tuple[datetime, datetime]:
    start = datetime.combine(ensure_utc(now).date(), time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def month_start(now: datetime) -> datetime:
    current = ensure_utc(now)
    return datetime(current.year, current.month, 1, tzinfo=timezone.utc)


def add_months(start: datetime, months: int) -> datetime:
    index = start.year * 12 + (start.month - 1) + months
    return start.replace(year=index // 12, month=index % 12 + 1, day=1)


def trailing_months(now: datetime, count: int = 12) -> list[tuple[str, datetime, datetime]]:
    """Calendar months ending with the current one, oldest first, keyed ``YYYY-MM``."""

    current = month_start(now)
    months: list[tuple[str, datetime, datetime]] = []
    for offset in range(count - 1, -1, -1):
        start = add_months(current, -offset)
        months.append((f"{start.year:04d}-{start.month:02d}", start, add_months(start, 1)))
    return months
