"""
Award trigger router.

POST /events   — completion / quiz event (de-duplicated, student-filtered)
POST /awards   — direct engine call for data-correction tooling
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.base import get_db
from app.schemas.common import error_responses
from app.schemas.events import (
    ActivityCompletedIn,
    AwardOutcomeResponse,
    AwardRequest,
    AwardResponse,
    CompletionEventRequest,
    EventOutcomeResponse,
    RankTransitionResponse,
)
from app.services.award_engine import AwardResult, PointsPolicy, award_points
from app.services.events import (
    ActivityCompleted,
    CompletionEvent,
    EventOutcome,
    LoggingNotifier,
    Notifier,
    QuizAttemptSubmitted,
    handle_event,
)
from app.services.ranking_cache import RankingCache, get_cache

router = APIRouter(tags=["awards"])


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_policy() -> PointsPolicy:
    return PointsPolicy.from_settings(settings)


def get_notifier() -> Notifier:
    return LoggingNotifier()


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------

def _to_event(payload) -> CompletionEvent:
    """Resolve the wire payload into its event variant, once."""
    if isinstance(payload, ActivityCompletedIn):
        return ActivityCompleted(
            completion_id=payload.completion_id,
            user_id=payload.user_id,
            course_id=payload.course_id,
            is_student=payload.is_student,
        )
    repeat = payload.repeat_attempts_allowed
    return QuizAttemptSubmitted(
        completion_id=payload.completion_id,
        user_id=payload.user_id,
        course_id=payload.course_id,
        grade=payload.grade,
        is_student=payload.is_student,
        repeat_attempts_allowed=settings.ENABLE_MULTIPLE_QUIZ_ATTEMPTS if repeat is None else repeat,
    )


def _award_to_response(award: AwardResult) -> AwardResponse:
    return AwardResponse(
        user_id=award.user_id,
        course_id=award.course_id,
        completion_id=award.completion_id,
        points_awarded=float(award.points_awarded),
        total_before=float(award.total_before),
        total_after=float(award.total_after),
        log_id=award.log_id,
    )


def _outcome_to_response(outcome: EventOutcome) -> EventOutcomeResponse:
    transition = outcome.transition
    return EventOutcomeResponse(
        status=outcome.status,
        award=_award_to_response(outcome.award) if outcome.award else None,
        transition=RankTransitionResponse(
            before_position=transition.before_position,
            after_position=transition.after_position,
            entered_top_three=transition.entered_top_three,
            overtaken_user_ids=transition.overtaken_user_ids,
        ) if transition else None,
    )


# ---------------------------------------------------------------------------
# POST /events
# ---------------------------------------------------------------------------

@router.post(
    "/events",
    response_model=EventOutcomeResponse,
    summary="Process an activity completion or quiz submission",
    responses=error_responses(404, 409, 503),
)
def post_event(
    payload: CompletionEventRequest,
    db: Session = Depends(get_db),
    cache: RankingCache = Depends(get_cache),
    policy: PointsPolicy = Depends(get_policy),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Award points for a completion event.

    Non-students, already-paid completions and repeated quiz attempts (when
    repeats are disabled) are skipped with a `skipped_*` status, not an error.
    """
    outcome = handle_event(
        db,
        _to_event(payload),
        policy=policy,
        cache=cache,
        notifier=notifier,
        unique_completion=settings.unique_completion_enabled,
    )
    return _outcome_to_response(outcome)


# ---------------------------------------------------------------------------
# POST /awards
# ---------------------------------------------------------------------------

@router.post(
    "/awards",
    response_model=AwardOutcomeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Apply one award directly (no de-duplication)",
    responses=error_responses(404, 409, 503),
)
def post_award(
    payload: AwardRequest,
    db: Session = Depends(get_db),
    cache: RankingCache = Depends(get_cache),
    policy: PointsPolicy = Depends(get_policy),
):
    """
    Call the Award Engine directly. Every call appends a log entry and
    increments the total, even for a completion that already paid out.
    """
    award: Optional[AwardResult] = award_points(
        db,
        payload.completion_id,
        payload.grade,
        policy=policy,
        cache=cache,
        unique_completion=settings.unique_completion_enabled,
    )
    return AwardOutcomeResponse(
        awarded=award is not None,
        award=_award_to_response(award) if award else None,
    )
