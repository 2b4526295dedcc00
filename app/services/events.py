"""
Award trigger — turns completion events into awards.

Event kinds (closed set)
------------------------
  ActivityCompleted     — an activity reached a completed state
  QuizAttemptSubmitted  — a graded quiz attempt was submitted

handle_event() resolves the kind once and applies, in order:

  1. student filter     — non-students are skipped, not an error
  2. de-duplication     — a completion that already paid out is skipped;
                          quizzes are re-awarded only when repeat attempts
                          are allowed for this call
  3. award              — award_engine.award_points (atomic)
  4. rank transition    — before/after position, "entered top 3", and the
                          users this award overtook
  5. notification       — best effort; failures are logged and never undo
                          the award

The repeat-attempts toggle is carried on the event, not read from settings.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Protocol, Union

from sqlalchemy.orm import Session

from app.core.errors import InvalidCompletionError
from app.models.completion import COMPLETION_INCOMPLETE, ActivityCompletion
from app.services import ledger
from app.services.award_engine import AwardResult, Number, PointsPolicy, award_points
from app.services.ranking import TOP_THREE, RankInput, position_of, rank
from app.services.ranking_cache import RankingCache

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Event variants
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ActivityCompleted:
    completion_id: int
    user_id: int
    course_id: int
    is_student: bool


@dataclass(frozen=True)
class QuizAttemptSubmitted:
    completion_id: int
    user_id: int
    course_id: int
    grade: Optional[Number]
    is_student: bool
    repeat_attempts_allowed: bool


CompletionEvent = Union[ActivityCompleted, QuizAttemptSubmitted]


class OutcomeStatus:
    AWARDED = "awarded"
    SKIPPED_NOT_STUDENT = "skipped_not_student"
    SKIPPED_DUPLICATE = "skipped_duplicate"
    SKIPPED_INCOMPLETE = "skipped_incomplete"


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class RankTransition:
    before_position: int          # 0 when the user had no points yet
    after_position: int
    entered_top_three: bool
    overtaken_user_ids: list[int] = field(default_factory=list)


@dataclass
class EventOutcome:
    status: str
    award: Optional[AwardResult] = None
    transition: Optional[RankTransition] = None

    @property
    def awarded(self) -> bool:
        return self.status == OutcomeStatus.AWARDED


class Notifier(Protocol):
    def notify_top_three(self, user_id: int, course_id: int) -> None: ...

    def notify_overtaken(self, user_id: int, overtaken_by_id: int, course_id: int) -> None: ...


class LoggingNotifier:
    """Default notifier: records the signal for the messaging collaborator to pick up."""

    def notify_top_three(self, user_id: int, course_id: int) -> None:
        logger.info("user %s reached the top %d of course %s", user_id, TOP_THREE, course_id)

    def notify_overtaken(self, user_id: int, overtaken_by_id: int, course_id: int) -> None:
        logger.info("user %s was overtaken by user %s in course %s", user_id, overtaken_by_id, course_id)


# ---------------------------------------------------------------------------
# Rank transitions
# ---------------------------------------------------------------------------

def _position_with(
    totals: list[tuple[int, Decimal]],
    user_id: int,
    points: Optional[Decimal],
) -> int:
    """Position of user_id if they held `points`; 0 when points is None."""
    if points is None:
        return 0
    rows = [RankInput(u, p) for u, p in totals if u != user_id]
    rows.append(RankInput(user_id, points))
    return position_of(rank(rows), user_id)


def compute_transition(db: Session, award: AwardResult) -> RankTransition:
    """
    Compare the awarded user's standing before and after the award.
    Other users' totals are read once, after the commit.
    """
    totals = ledger.course_totals(db, award.course_id)
    had_points = award.total_before > 0

    before = _position_with(totals, award.user_id, award.total_before if had_points else None)
    after = _position_with(totals, award.user_id, award.total_after)

    # Users tied with the old total were level before and are behind now.
    overtaken = ledger.users_between(
        db,
        award.course_id,
        low=award.total_before,
        high=award.total_after,
        exclude_user_id=award.user_id,
        include_low=had_points,
    )
    return RankTransition(
        before_position=before,
        after_position=after,
        entered_top_three=after <= TOP_THREE and (before == 0 or before > TOP_THREE),
        overtaken_user_ids=overtaken,
    )


def dispatch_notifications(notifier: Notifier, award: AwardResult, transition: RankTransition) -> None:
    """Best effort: the award is already committed whatever happens here."""
    try:
        if transition.entered_top_three:
            notifier.notify_top_three(award.user_id, award.course_id)
        for other in transition.overtaken_user_ids:
            notifier.notify_overtaken(other, award.user_id, award.course_id)
    except Exception:
        logger.warning(
            "notification dispatch failed for user %s in course %s",
            award.user_id, award.course_id, exc_info=True,
        )


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

def _resolve_completion(db: Session, event: CompletionEvent) -> ActivityCompletion:
    completion = db.get(ActivityCompletion, event.completion_id)
    if completion is None:
        logger.warning("event rejected: completion %s not found", event.completion_id)
        raise InvalidCompletionError(event.completion_id)
    if (completion.user_id, completion.course_id) != (event.user_id, event.course_id):
        logger.warning(
            "event for completion %s names user %s course %s; completion belongs to user %s course %s",
            event.completion_id, event.user_id, event.course_id,
            completion.user_id, completion.course_id,
        )
    return completion


def _already_awarded(db: Session, completion: ActivityCompletion) -> bool:
    """De-dup on the completion's own user and course, the pair award_points pays."""
    return ledger.count_prior_awards(db, completion.user_id, completion.course_id, completion.id) > 0


def _award(
    db: Session,
    event: CompletionEvent,
    grade: Optional[Number],
    policy: PointsPolicy,
    cache: Optional[RankingCache],
    notifier: Optional[Notifier],
    unique_completion: bool,
) -> EventOutcome:
    award = award_points(
        db,
        event.completion_id,
        grade,
        policy=policy,
        cache=cache,
        unique_completion=unique_completion,
    )
    if award is None:
        return EventOutcome(status=OutcomeStatus.SKIPPED_INCOMPLETE)

    transition = compute_transition(db, award)
    if notifier is not None:
        dispatch_notifications(notifier, award, transition)
    return EventOutcome(status=OutcomeStatus.AWARDED, award=award, transition=transition)


def handle_event(
    db: Session,
    event: CompletionEvent,
    *,
    policy: PointsPolicy,
    cache: Optional[RankingCache] = None,
    notifier: Optional[Notifier] = None,
    unique_completion: bool = False,
) -> EventOutcome:
    """
    Process one completion event. Raises InvalidCompletionError when the
    completion id does not resolve.
    """
    if not event.is_student:
        logger.debug("event for non-student user %s ignored", event.user_id)
        return EventOutcome(status=OutcomeStatus.SKIPPED_NOT_STUDENT)

    if not isinstance(event, (ActivityCompleted, QuizAttemptSubmitted)):
        raise TypeError(f"Unsupported event type: {type(event).__name__}")

    completion = _resolve_completion(db, event)

    if isinstance(event, QuizAttemptSubmitted):
        if not event.repeat_attempts_allowed and _already_awarded(db, completion):
            logger.debug("repeat quiz attempt for completion %s ignored", event.completion_id)
            return EventOutcome(status=OutcomeStatus.SKIPPED_DUPLICATE)
        return _award(
            db, event, event.grade, policy, cache, notifier,
            unique_completion and not event.repeat_attempts_allowed,
        )

    if completion.completion_state == COMPLETION_INCOMPLETE:
        return EventOutcome(status=OutcomeStatus.SKIPPED_INCOMPLETE)
    if _already_awarded(db, completion):
        logger.debug("completion %s already paid out", event.completion_id)
        return EventOutcome(status=OutcomeStatus.SKIPPED_DUPLICATE)
    return _award(db, event, None, policy, cache, notifier, unique_completion)
