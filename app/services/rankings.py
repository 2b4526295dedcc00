"""
Ranking read API — cached standings, position lookup, history.

Public API
----------
get_ranking(db, cache, course_id, limit, group_id, offset)             -> rows | NoRankedStudents
get_ranking_by_window(db, cache, course_id, start, end, limit, offset) -> rows | NoRankedStudents
period_window(period, now, week_start_day)                             -> (start, end) | None
get_user_position(db, course_id, user_id)                              -> UserPosition
get_user_points_history(db, course_id, user_id, limit)                 -> list[HistoryEntry]
get_daily_points(db, course_id)                                        -> list[DailyPoints]

Caching
-------
Only offset == 0 reads are memoized; paginated reads always recompute so the
key space stays bounded. Cached payloads are the ranked page as dicts.
"""
from __future__ import annotations

import calendar
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.errors import InvalidWindowError
from app.models.award_log import AwardLogEntry
from app.models.completion import ActivityCompletion
from app.models.points_total import PointsTotal
from app.services import ledger
from app.services.ranking import RankInput, RankedRow, rank
from app.services.ranking_cache import RankingCache, dated_key, general_key

logger = logging.getLogger(__name__)

PERIOD_ALL = "all"
PERIOD_WEEKLY = "weekly"
PERIOD_MONTHLY = "monthly"
PERIODS = (PERIOD_ALL, PERIOD_WEEKLY, PERIOD_MONTHLY)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class NoRankedStudents:
    """Valid empty result: nobody has points in the requested view."""
    message: str = "No students to show"


RankingResult = Union[list[RankedRow], NoRankedStudents]


@dataclass
class UserPosition:
    position: int          # 0 when the user has no points row
    points: Decimal
    total_students: int


@dataclass
class HistoryEntry:
    id: int
    points: Decimal
    created_at: datetime
    activity_type: str     # "" for awards not tied to a completion


@dataclass
class DailyPoints:
    day: date
    points: Decimal


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _rows_from_cache(payload) -> list[RankedRow]:
    return [RankedRow.from_dict(item) for item in payload]


def _finish(rows: list[RankedRow]) -> RankingResult:
    return rows if rows else NoRankedStudents()


# ---------------------------------------------------------------------------
# Public — standings
# ---------------------------------------------------------------------------

def get_ranking(
    db: Session,
    cache: Optional[RankingCache],
    course_id: int,
    limit: int,
    group_id: Optional[int] = None,
    offset: int = 0,
    ttl: Optional[int] = None,
) -> RankingResult:
    """All-time standings for a course, optionally restricted to a group."""
    key = general_key(course_id, limit, group_id)
    use_cache = cache is not None and offset == 0

    if use_cache:
        cached = cache.get(key)
        if cached is not None:
            return _finish(_rows_from_cache(cached))

    totals = ledger.course_totals(db, course_id, group_id=group_id)
    rows = rank(
        [RankInput(user_id=u, points=p) for u, p in totals],
        offset=offset,
        limit=limit,
    )

    if use_cache:
        cache.set(key, [r.to_dict() for r in rows], ttl)
    return _finish(rows)


def get_ranking_by_window(
    db: Session,
    cache: Optional[RankingCache],
    course_id: int,
    start: datetime,
    end: datetime,
    limit: int,
    offset: int = 0,
    ttl: Optional[int] = None,
) -> RankingResult:
    """Standings by points earned with start <= awarded_at <= end."""
    if start > end:
        raise InvalidWindowError(start, end)

    key = dated_key(course_id, limit, start, end)
    use_cache = cache is not None and offset == 0

    if use_cache:
        cached = cache.get(key)
        if cached is not None:
            return _finish(_rows_from_cache(cached))

    sums = ledger.sum_log_in_window(db, course_id, start, end)
    rows = rank(
        [RankInput(user_id=u, points=p) for u, p in sums.items()],
        offset=offset,
        limit=limit,
    )

    if use_cache:
        cache.set(key, [r.to_dict() for r in rows], ttl)
    return _finish(rows)


def period_window(
    period: str,
    now: Optional[datetime] = None,
    week_start_day: int = 0,
) -> Optional[tuple[datetime, datetime]]:
    """
    (start, end) of the current week or month in UTC, None for "all".
    end is the last microsecond of the period so the window (and its cache
    key) stays fixed until the period rolls over.
    """
    if period == PERIOD_ALL:
        return None
    now = now or _utcnow()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)

    if period == PERIOD_WEEKLY:
        days_back = (midnight.weekday() - week_start_day) % 7
        start = midnight - timedelta(days=days_back)
        end = start + timedelta(days=7) - timedelta(microseconds=1)
        return start, end

    if period == PERIOD_MONTHLY:
        start = midnight.replace(day=1)
        days = calendar.monthrange(start.year, start.month)[1]
        end = start + timedelta(days=days) - timedelta(microseconds=1)
        return start, end

    raise ValueError(f"Unknown period: {period!r}")


# ---------------------------------------------------------------------------
# Public — single user
# ---------------------------------------------------------------------------

def get_user_position(db: Session, course_id: int, user_id: int) -> UserPosition:
    """
    Live position with gap semantics: 1 + number of users with strictly more
    points. Users without a row get position 0 and 0 points; a row holding
    0 points is unranked too, matching total_students (points > 0 only).
    """
    total_students = ledger.count_ranked(db, course_id)
    row = ledger.get_total(db, user_id, course_id)
    if row is None:
        return UserPosition(position=0, points=Decimal("0"), total_students=total_students)
    if row.points <= 0:
        return UserPosition(position=0, points=Decimal(row.points), total_students=total_students)

    ahead = db.execute(
        select(func.count(PointsTotal.id)).where(
            PointsTotal.course_id == course_id,
            PointsTotal.points > row.points,
        )
    ).scalar() or 0
    return UserPosition(
        position=ahead + 1,
        points=Decimal(row.points),
        total_students=total_students,
    )


def get_user_points_history(
    db: Session,
    course_id: int,
    user_id: int,
    limit: int = 50,
) -> list[HistoryEntry]:
    """Award log of one user in one course, newest first."""
    rows = db.execute(
        select(
            AwardLogEntry.id,
            AwardLogEntry.points,
            AwardLogEntry.created_at,
            ActivityCompletion.activity_type,
        )
        .join(PointsTotal, PointsTotal.id == AwardLogEntry.points_total_id)
        .outerjoin(ActivityCompletion, ActivityCompletion.id == AwardLogEntry.completion_id)
        .where(PointsTotal.user_id == user_id, PointsTotal.course_id == course_id)
        .order_by(AwardLogEntry.created_at.desc(), AwardLogEntry.id.desc())
        .limit(limit)
    ).all()
    return [
        HistoryEntry(
            id=log_id,
            points=Decimal(points),
            created_at=created_at,
            activity_type=activity_type or "",
        )
        for log_id, points, created_at, activity_type in rows
    ]


def get_daily_points(db: Session, course_id: int) -> list[DailyPoints]:
    """Points awarded per calendar day (UTC) in a course, oldest first."""
    rows = db.execute(
        select(AwardLogEntry.created_at, AwardLogEntry.points)
        .where(AwardLogEntry.course_id == course_id)
        .order_by(AwardLogEntry.created_at)
    ).all()

    per_day: dict[date, Decimal] = defaultdict(lambda: Decimal("0"))
    for created_at, points in rows:
        per_day[created_at.date()] += Decimal(points)
    return [DailyPoints(day=d, points=p) for d, p in sorted(per_day.items())]
