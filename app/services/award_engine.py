"""
Award Engine — applies one award atomically.

Rule
----
  final_points = base_points(activity_type)
               + (grade / 10 if grade > 10 else grade) * grade_multiplier

Grades above 10 are taken to be on a 0–100 scale and brought to 0–10.
Without a grade, final_points = base_points.

Transaction
-----------
upsert_increment + append_log run in one transaction, committed once.
Any SQLAlchemyError rolls both back and surfaces as TransactionFailureError.
The course's common cache keys are invalidated after the commit.

Idempotency
-----------
Not enforced here: two calls with the same completion_id produce two log
rows and a doubled total. De-duplication belongs to the event layer
(app/services/events.py). `unique_completion=True` is an opt-in guard for
deployments that never allow repeated attempts.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Mapping, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import Settings
from app.core.errors import DuplicateAwardError, InvalidCompletionError, TransactionFailureError
from app.models.completion import COMPLETION_INCOMPLETE, ActivityCompletion
from app.services import ledger
from app.services.ranking_cache import RankingCache, invalidate_course_cache

logger = logging.getLogger(__name__)

Number = Union[int, float, Decimal]

_GRADE_SCALE_THRESHOLD = Decimal("10")


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PointsPolicy:
    """Per-deployment point values. Passed in explicitly, never looked up."""
    activity_points: Mapping[str, Decimal] = field(default_factory=dict)
    default_points: Decimal = Decimal("2")
    grade_multiplier: Decimal = Decimal("1.0")

    @classmethod
    def from_settings(cls, cfg: Settings) -> "PointsPolicy":
        return cls(
            activity_points={k: Decimal(v) for k, v in cfg.ACTIVITY_POINTS.items()},
            default_points=Decimal(cfg.DEFAULT_POINTS),
            grade_multiplier=Decimal(cfg.GRADE_MULTIPLIER),
        )

    def points_for(self, activity_type: str) -> Decimal:
        return Decimal(self.activity_points.get(activity_type, self.default_points))


def normalize_grade(grade: Number) -> Decimal:
    value = Decimal(str(grade))
    if value > _GRADE_SCALE_THRESHOLD:
        return value / 10
    return value


def calculate_points(policy: PointsPolicy, activity_type: str, grade: Optional[Number] = None) -> Decimal:
    points = policy.points_for(activity_type)
    if grade is not None:
        points += normalize_grade(grade) * policy.grade_multiplier
    return points


# ---------------------------------------------------------------------------
# Result type
# ---------------------------------------------------------------------------

@dataclass
class AwardResult:
    """What the award changed; enough for callers to detect rank crossings."""
    user_id: int
    course_id: int
    completion_id: Optional[int]
    points_awarded: Decimal
    total_before: Decimal
    total_after: Decimal
    points_total_id: int
    log_id: int


# ---------------------------------------------------------------------------
# Public — main entry point
# ---------------------------------------------------------------------------

def award_points(
    db: Session,
    completion_id: int,
    grade: Optional[Number] = None,
    *,
    policy: PointsPolicy,
    cache: Optional[RankingCache] = None,
    unique_completion: bool = False,
) -> Optional[AwardResult]:
    """
    Apply the award for one completion. Returns None when the completion
    exists but is not in a completed state.
    """
    completion = db.get(ActivityCompletion, completion_id)
    if completion is None:
        logger.warning("award rejected: completion %s not found", completion_id)
        raise InvalidCompletionError(completion_id)

    if completion.completion_state == COMPLETION_INCOMPLETE:
        logger.debug("award skipped: completion %s is not completed", completion_id)
        return None

    user_id = completion.user_id
    course_id = completion.course_id
    delta = calculate_points(policy, completion.activity_type, grade)

    try:
        if unique_completion:
            # Counted under the row lock, so a concurrent award for the same
            # completion is either visible here or waits for our commit.
            ledger.lock_total(db, user_id, course_id)
            if ledger.count_prior_awards(db, user_id, course_id, completion_id):
                raise DuplicateAwardError(completion_id, user_id, course_id)

        total = ledger.upsert_increment(db, user_id, course_id, delta)
        entry = ledger.append_log(db, total, completion_id, delta)
        # Read inside the transaction: the value our own UPDATE produced.
        total_after = Decimal(total.points)
        points_total_id, log_id = total.id, entry.id
        db.commit()
    except DuplicateAwardError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception(
            "award transaction failed for completion %s (user=%s course=%s)",
            completion_id, user_id, course_id,
        )
        raise TransactionFailureError("award_points", reason=str(exc)) from exc

    if cache is not None:
        invalidate_course_cache(cache, course_id)

    result = AwardResult(
        user_id=user_id,
        course_id=course_id,
        completion_id=completion_id,
        points_awarded=delta,
        total_before=total_after - delta,
        total_after=total_after,
        points_total_id=points_total_id,
        log_id=log_id,
    )
    logger.info(
        "awarded %s points to user %s in course %s (completion %s, total %s)",
        delta, user_id, course_id, completion_id, result.total_after,
    )
    return result
