"""
Ledger Store — points totals, the award log, and their purge operations.

Public API
----------
get_total(db, user_id, course_id)                    -> PointsTotal | None
lock_total(db, user_id, course_id)                   -> PointsTotal      (row lock, flush only)
upsert_increment(db, user_id, course_id, delta)      -> PointsTotal      (flush only)
append_log(db, total, completion_id, delta)          -> AwardLogEntry    (flush only)
count_prior_awards(db, user_id, course_id, cmp_id)   -> int
sum_log_in_window(db, course_id, start, end)         -> {user_id: Decimal}
course_totals(db, course_id, group_id, positive_only)-> [(user_id, points)]
courses_with_points(db)                              -> [course_id]
users_between(db, course_id, low, high, exclude, include_low) -> [user_id]
delete_all_for_course(db, course_id)                 -> int   (commits)
delete_all_for_user(db, user_id, course_id)          -> int   (commits)

The flush-only writers never commit: the Award Engine wraps
upsert_increment + append_log in one transaction so a log row never exists
without its total update.

Concurrency
-----------
Row creation uses INSERT … ON CONFLICT DO NOTHING against the unique
(user_id, course_id) constraint, and the increment is a single
UPDATE points = points + :delta. Neither step reads-then-writes in Python,
so concurrent awards from several processes cannot lose updates.
lock_total() takes a row lock (SELECT … FOR UPDATE; SQLite's database write
lock plays the same role) so checks made afterwards in the same transaction
see every committed award for that pair.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import TransactionFailureError
from app.models.award_log import AwardLogEntry
from app.models.group_member import GroupMember
from app.models.points_total import PointsTotal
from app.models.ranking_snapshot import RankingSnapshotRow

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


# ---------------------------------------------------------------------------
# Totals
# ---------------------------------------------------------------------------

def get_total(db: Session, user_id: int, course_id: int) -> Optional[PointsTotal]:
    return db.execute(
        select(PointsTotal).where(
            PointsTotal.user_id == user_id,
            PointsTotal.course_id == course_id,
        )
    ).scalar_one_or_none()


def _ensure_total_row(db: Session, user_id: int, course_id: int) -> None:
    """Create the (user, course) row if absent; a concurrent creator wins silently."""
    values = {"user_id": user_id, "course_id": course_id, "points": Decimal("0")}
    dialect = db.get_bind().dialect.name

    if dialect == "postgresql":
        stmt = postgresql.insert(PointsTotal).values(**values).on_conflict_do_nothing(
            index_elements=["user_id", "course_id"]
        )
        db.execute(stmt)
        return
    if dialect == "sqlite":
        stmt = sqlite.insert(PointsTotal).values(**values).on_conflict_do_nothing(
            index_elements=["user_id", "course_id"]
        )
        db.execute(stmt)
        return

    # Other engines: plain insert, the unique constraint still arbitrates.
    if get_total(db, user_id, course_id) is None:
        savepoint = db.begin_nested()
        try:
            db.execute(insert(PointsTotal).values(**values))
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()


def lock_total(db: Session, user_id: int, course_id: int) -> PointsTotal:
    """
    Create the (user, course) row if needed and lock it until the caller's
    transaction ends. Awards for the same pair serialize here.
    """
    _ensure_total_row(db, user_id, course_id)
    return db.execute(
        select(PointsTotal)
        .where(PointsTotal.user_id == user_id, PointsTotal.course_id == course_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one()


def upsert_increment(db: Session, user_id: int, course_id: int, delta: Decimal) -> PointsTotal:
    """Atomically add `delta` to the (user, course) total, creating it lazily."""
    lock_total(db, user_id, course_id)
    db.execute(
        update(PointsTotal)
        .where(PointsTotal.user_id == user_id, PointsTotal.course_id == course_id)
        .values(points=PointsTotal.points + delta, modified_at=func.now())
        .execution_options(synchronize_session=False)
    )
    total = get_total(db, user_id, course_id)
    # The ORM identity map may hold a stale copy from an earlier read.
    db.refresh(total)
    return total


# ---------------------------------------------------------------------------
# Log
# ---------------------------------------------------------------------------

def append_log(
    db: Session,
    total: PointsTotal,
    completion_id: Optional[int],
    delta: Decimal,
    created_at: Optional[datetime] = None,
) -> AwardLogEntry:
    entry = AwardLogEntry(
        points_total_id=total.id,
        course_id=total.course_id,
        completion_id=completion_id,
        points=delta,
        created_at=created_at or _utcnow(),
    )
    db.add(entry)
    db.flush()
    return entry


def count_prior_awards(db: Session, user_id: int, course_id: int, completion_id: int) -> int:
    """How many times this completion already paid out for this user/course."""
    return db.execute(
        select(func.count(AwardLogEntry.id))
        .join(PointsTotal, PointsTotal.id == AwardLogEntry.points_total_id)
        .where(
            PointsTotal.user_id == user_id,
            PointsTotal.course_id == course_id,
            AwardLogEntry.completion_id == completion_id,
        )
    ).scalar() or 0


def sum_log_in_window(
    db: Session,
    course_id: int,
    start: datetime,
    end: datetime,
) -> dict[int, Decimal]:
    """Per-user sum of log deltas with start <= created_at <= end."""
    rows = db.execute(
        select(PointsTotal.user_id, func.sum(AwardLogEntry.points))
        .join(PointsTotal, PointsTotal.id == AwardLogEntry.points_total_id)
        .where(
            AwardLogEntry.course_id == course_id,
            AwardLogEntry.created_at >= start,
            AwardLogEntry.created_at <= end,
        )
        .group_by(PointsTotal.user_id)
    ).all()
    return {user_id: Decimal(total or 0) for user_id, total in rows}


# ---------------------------------------------------------------------------
# Course-level reads
# ---------------------------------------------------------------------------

def course_totals(
    db: Session,
    course_id: int,
    group_id: Optional[int] = None,
    positive_only: bool = False,
) -> list[tuple[int, Decimal]]:
    q = select(PointsTotal.user_id, PointsTotal.points).where(PointsTotal.course_id == course_id)
    if group_id:
        q = q.join(GroupMember, GroupMember.user_id == PointsTotal.user_id).where(
            GroupMember.group_id == group_id
        )
    if positive_only:
        q = q.where(PointsTotal.points > 0)
    return [(user_id, Decimal(points)) for user_id, points in db.execute(q).all()]


def count_ranked(db: Session, course_id: int) -> int:
    """Users with points > 0 in the course."""
    return db.execute(
        select(func.count(PointsTotal.id)).where(
            PointsTotal.course_id == course_id,
            PointsTotal.points > 0,
        )
    ).scalar() or 0


def courses_with_points(db: Session) -> list[int]:
    return list(
        db.execute(
            select(PointsTotal.course_id)
            .where(PointsTotal.points > 0)
            .distinct()
            .order_by(PointsTotal.course_id)
        ).scalars()
    )


def users_between(
    db: Session,
    course_id: int,
    low: Decimal,
    high: Decimal,
    exclude_user_id: Optional[int] = None,
    include_low: bool = False,
) -> list[int]:
    """Users whose total lies between low and high; high is always exclusive."""
    q = select(PointsTotal.user_id).where(
        PointsTotal.course_id == course_id,
        PointsTotal.points >= low if include_low else PointsTotal.points > low,
        PointsTotal.points < high,
    )
    if exclude_user_id is not None:
        q = q.where(PointsTotal.user_id != exclude_user_id)
    return list(db.execute(q.order_by(PointsTotal.user_id)).scalars())


# ---------------------------------------------------------------------------
# Purge
# ---------------------------------------------------------------------------

def delete_all_for_course(db: Session, course_id: int) -> int:
    """Remove every total, log and snapshot row of a course in one transaction."""
    try:
        db.execute(delete(AwardLogEntry).where(AwardLogEntry.course_id == course_id))
        removed = db.execute(
            delete(PointsTotal).where(PointsTotal.course_id == course_id)
        ).rowcount
        db.execute(delete(RankingSnapshotRow).where(RankingSnapshotRow.course_id == course_id))
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("purge of course %s failed", course_id)
        raise TransactionFailureError("delete_all_for_course", reason=str(exc)) from exc

    logger.info("purged ranking data for course %s (%d totals)", course_id, removed)
    return removed


def delete_all_for_user(db: Session, user_id: int, course_id: Optional[int] = None) -> int:
    """Remove a user's totals, logs and snapshot rows, optionally for one course only."""
    total_ids = select(PointsTotal.id).where(PointsTotal.user_id == user_id)
    totals_q = delete(PointsTotal).where(PointsTotal.user_id == user_id)
    snapshot_q = delete(RankingSnapshotRow).where(RankingSnapshotRow.user_id == user_id)
    if course_id is not None:
        total_ids = total_ids.where(PointsTotal.course_id == course_id)
        totals_q = totals_q.where(PointsTotal.course_id == course_id)
        snapshot_q = snapshot_q.where(RankingSnapshotRow.course_id == course_id)

    try:
        db.execute(
            delete(AwardLogEntry)
            .where(AwardLogEntry.points_total_id.in_(total_ids))
            .execution_options(synchronize_session=False)
        )
        removed = db.execute(totals_q.execution_options(synchronize_session=False)).rowcount
        db.execute(snapshot_q)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("purge of user %s failed", user_id)
        raise TransactionFailureError("delete_all_for_user", reason=str(exc)) from exc

    logger.info(
        "purged ranking data for user %s (course=%s, %d totals)",
        user_id, course_id if course_id is not None else "all", removed,
    )
    return removed
