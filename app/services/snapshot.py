"""
Ranking snapshot — scheduled rebuild of per-course standings.

Public API
----------
refresh_all(db, now)                         -> RefreshReport
refresh_course(db, course_id, now)           -> int   (rows written)
get_snapshot_position(db, course_id, user_id)-> RankingSnapshotRow | None

Each course is rebuilt in its own transaction: delete the course's rows,
rank every positive-points total, bulk insert, commit. A failing course is
rolled back, logged, and skipped; the remaining courses still refresh.

The job does not coordinate with concurrent awards. An award landing
mid-refresh is picked up by the next cycle.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, insert, select
from sqlalchemy.orm import Session

from app.models.ranking_snapshot import RankingSnapshotRow
from app.services import ledger
from app.services.ranking import RankInput, rank

logger = logging.getLogger(__name__)


@dataclass
class RefreshReport:
    refreshed: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)
    rows_written: int = 0


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def refresh_course(db: Session, course_id: int, now: Optional[datetime] = None) -> int:
    """Rebuild one course's snapshot. Commits on success, rolls back on failure."""
    now = now or _utcnow()
    try:
        db.execute(delete(RankingSnapshotRow).where(RankingSnapshotRow.course_id == course_id))

        totals = ledger.course_totals(db, course_id, positive_only=True)
        ranked = rank([RankInput(user_id=u, points=p) for u, p in totals])
        total_users = len(ranked)

        if ranked:
            db.execute(
                insert(RankingSnapshotRow),
                [
                    {
                        "course_id": course_id,
                        "user_id": row.user_id,
                        "points": row.points,
                        "position": row.position,
                        "total_users": total_users,
                        "last_updated": now,
                    }
                    for row in ranked
                ],
            )
        db.commit()
    except Exception:
        db.rollback()
        raise
    return total_users


def refresh_all(db: Session, now: Optional[datetime] = None) -> RefreshReport:
    """Entry point for the external scheduler."""
    now = now or _utcnow()
    report = RefreshReport()

    for course_id in ledger.courses_with_points(db):
        try:
            report.rows_written += refresh_course(db, course_id, now)
            report.refreshed.append(course_id)
        except Exception:
            logger.exception("ranking snapshot refresh failed for course %s", course_id)
            report.failed.append(course_id)

    logger.info(
        "ranking snapshot refresh done: %d courses, %d rows, %d failures",
        len(report.refreshed), report.rows_written, len(report.failed),
    )
    return report


def get_snapshot_position(
    db: Session,
    course_id: int,
    user_id: int,
) -> Optional[RankingSnapshotRow]:
    return db.execute(
        select(RankingSnapshotRow).where(
            RankingSnapshotRow.course_id == course_id,
            RankingSnapshotRow.user_id == user_id,
        )
    ).scalar_one_or_none()
