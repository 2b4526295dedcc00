"""
Ranking read router.

GET /courses/{course_id}/ranking                    — all-time / weekly / monthly
GET /courses/{course_id}/ranking/window             — arbitrary time window
GET /courses/{course_id}/users/{user_id}/position   — live position lookup
GET /courses/{course_id}/users/{user_id}/history    — award log, newest first
GET /courses/{course_id}/users/{user_id}/snapshot   — precomputed position
GET /courses/{course_id}/daily-points               — points per day
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.base import get_db
from app.schemas.common import error_responses
from app.schemas.rankings import (
    DailyPointsOut,
    DailyPointsResponse,
    HistoryEntryOut,
    PointsHistoryResponse,
    RankedRowOut,
    RankingResponse,
    SnapshotPositionResponse,
    UserPositionResponse,
)
from app.services.ranking import RankedRow
from app.services.ranking_cache import RankingCache, get_cache
from app.services.rankings import (
    PERIOD_ALL,
    NoRankedStudents,
    RankingResult,
    get_daily_points,
    get_ranking,
    get_ranking_by_window,
    get_user_points_history,
    get_user_position,
    period_window,
)
from app.services.snapshot import get_snapshot_position

router = APIRouter(prefix="/courses/{course_id}", tags=["rankings"])


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------

def _row_to_out(row: RankedRow) -> RankedRowOut:
    return RankedRowOut(
        user_id=row.user_id,
        points=float(row.points),
        position=row.position,
        progress_percent=row.progress_percent,
        is_top_three=row.is_top_three,
        is_gold=row.is_gold,
        is_silver=row.is_silver,
        is_bronze=row.is_bronze,
    )


def _ranking_response(
    course_id: int,
    result: RankingResult,
    period: str,
    offset: int,
    limit: int,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> RankingResponse:
    empty = isinstance(result, NoRankedStudents)
    return RankingResponse(
        course_id=course_id,
        period=period,
        start=start.isoformat() if start else None,
        end=end.isoformat() if end else None,
        offset=offset,
        limit=limit,
        students=[] if empty else [_row_to_out(r) for r in result],
        message=result.message if empty else None,
    )


# ---------------------------------------------------------------------------
# Standings
# ---------------------------------------------------------------------------

@router.get("/ranking", response_model=RankingResponse, summary="Course ranking")
def course_ranking(
    course_id: int,
    limit: Optional[int] = Query(default=None, ge=1, le=500, description="Page size. Defaults to RANKING_SIZE."),
    offset: int = Query(default=0, ge=0, description="Skip N ranked students."),
    group_id: Optional[int] = Query(default=None, ge=1, description="Restrict to one group (all-time only)."),
    period: str = Query(default=PERIOD_ALL, pattern="^(all|weekly|monthly)$"),
    db: Session = Depends(get_db),
    cache: RankingCache = Depends(get_cache),
):
    """
    Ranked students of a course. Positions are absolute across pages and
    ties share a position (1, 2, 2, 4). First pages are cached for
    CACHE_TTL_SECONDS; weekly and monthly views may lag by up to one TTL.
    """
    limit = limit or settings.RANKING_SIZE
    window = period_window(period, week_start_day=settings.WEEK_START_DAY)

    if window is None:
        result = get_ranking(db, cache, course_id, limit, group_id=group_id, offset=offset)
        return _ranking_response(course_id, result, period, offset, limit)

    start, end = window
    result = get_ranking_by_window(db, cache, course_id, start, end, limit, offset=offset)
    return _ranking_response(course_id, result, period, offset, limit, start, end)


@router.get(
    "/ranking/window",
    response_model=RankingResponse,
    summary="Ranking for a time window",
    responses=error_responses(422),
)
def course_ranking_window(
    course_id: int,
    start: datetime = Query(description="Inclusive window start (ISO 8601)."),
    end: datetime = Query(description="Inclusive window end (ISO 8601)."),
    limit: Optional[int] = Query(default=None, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    cache: RankingCache = Depends(get_cache),
):
    """Ranks students by the points they earned inside [start, end]."""
    limit = limit or settings.RANKING_SIZE
    result = get_ranking_by_window(db, cache, course_id, start, end, limit, offset=offset)
    return _ranking_response(course_id, result, "window", offset, limit, start, end)


# ---------------------------------------------------------------------------
# Single user
# ---------------------------------------------------------------------------

@router.get(
    "/users/{user_id}/position",
    response_model=UserPositionResponse,
    summary="A user's live position",
)
def user_position(course_id: int, user_id: int, db: Session = Depends(get_db)):
    pos = get_user_position(db, course_id, user_id)
    return UserPositionResponse(
        course_id=course_id,
        user_id=user_id,
        position=pos.position,
        points=float(pos.points),
        total_students=pos.total_students,
    )


@router.get(
    "/users/{user_id}/history",
    response_model=PointsHistoryResponse,
    summary="A user's points history (newest first)",
)
def user_history(
    course_id: int,
    user_id: int,
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    entries = get_user_points_history(db, course_id, user_id, limit)
    return PointsHistoryResponse(
        course_id=course_id,
        user_id=user_id,
        entries=[
            HistoryEntryOut(
                id=e.id,
                points=float(e.points),
                created_at=e.created_at.isoformat() if e.created_at else "",
                activity_type=e.activity_type,
            )
            for e in entries
        ],
    )


@router.get(
    "/users/{user_id}/snapshot",
    response_model=SnapshotPositionResponse,
    summary="A user's position in the last precomputed snapshot",
    responses={404: {"description": "User not in the latest snapshot"}},
)
def user_snapshot(course_id: int, user_id: int, db: Session = Depends(get_db)):
    row = get_snapshot_position(db, course_id, user_id)
    if row is None:
        raise HTTPException(status_code=404, detail="User is not in the ranking snapshot.")
    return SnapshotPositionResponse(
        course_id=course_id,
        user_id=user_id,
        position=row.position,
        points=float(row.points),
        total_users=row.total_users,
        last_updated=row.last_updated.isoformat() if row.last_updated else None,
    )


@router.get("/daily-points", response_model=DailyPointsResponse, summary="Points awarded per day")
def daily_points(course_id: int, db: Session = Depends(get_db)):
    return DailyPointsResponse(
        course_id=course_id,
        days=[DailyPointsOut(day=str(d.day), points=float(d.points)) for d in get_daily_points(db, course_id)],
    )
