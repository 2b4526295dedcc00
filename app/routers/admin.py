"""
Maintenance router — for data-correction tools and privacy requests.

POST   /courses/{course_id}/cache/invalidate
POST   /snapshots/refresh
DELETE /courses/{course_id}/data
DELETE /users/{user_id}/data?course_id=
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.db.base import get_db
from app.schemas.admin import CacheInvalidationResponse, PurgeResponse, SnapshotRefreshResponse
from app.services import ledger
from app.services.ranking_cache import RankingCache, get_cache, invalidate_course_cache
from app.services.snapshot import refresh_all

router = APIRouter(tags=["admin"])


@router.post(
    "/courses/{course_id}/cache/invalidate",
    response_model=CacheInvalidationResponse,
    summary="Drop a course's common ranking cache keys",
)
def invalidate_cache(course_id: int, cache: RankingCache = Depends(get_cache)):
    keys = invalidate_course_cache(cache, course_id)
    return CacheInvalidationResponse(course_id=course_id, deleted_keys=keys)


@router.post(
    "/snapshots/refresh",
    response_model=SnapshotRefreshResponse,
    summary="Rebuild the ranking snapshot of every course",
)
def refresh_snapshots(db: Session = Depends(get_db)):
    """Same job the scheduler runs. Per-course failures are reported, not raised."""
    report = refresh_all(db)
    return SnapshotRefreshResponse(
        refreshed=report.refreshed,
        failed=report.failed,
        rows_written=report.rows_written,
    )


@router.delete(
    "/courses/{course_id}/data",
    response_model=PurgeResponse,
    summary="Delete every points total and log entry of a course",
)
def purge_course(
    course_id: int,
    db: Session = Depends(get_db),
    cache: RankingCache = Depends(get_cache),
):
    removed = ledger.delete_all_for_course(db, course_id)
    invalidate_course_cache(cache, course_id)
    return PurgeResponse(course_id=course_id, totals_deleted=removed)


@router.delete(
    "/users/{user_id}/data",
    response_model=PurgeResponse,
    summary="Delete a user's points, in one course or all courses",
)
def purge_user(
    user_id: int,
    course_id: Optional[int] = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    cache: RankingCache = Depends(get_cache),
):
    removed = ledger.delete_all_for_user(db, user_id, course_id)
    if course_id is not None:
        invalidate_course_cache(cache, course_id)
    return PurgeResponse(course_id=course_id, user_id=user_id, totals_deleted=removed)
