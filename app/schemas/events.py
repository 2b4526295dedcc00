"""
Award trigger request / response schemas.

POST /events  → CompletionEventRequest (discriminated on `kind`) → EventOutcomeResponse
POST /awards  → AwardRequest → AwardResponse
"""
from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Event payloads
# ---------------------------------------------------------------------------

class ActivityCompletedIn(BaseModel):
    """An activity completion reported by the course platform."""
    kind: Literal["activity_completed"]
    completion_id: int = Field(ge=1)
    user_id: int = Field(ge=1)
    course_id: int = Field(ge=1)
    is_student: bool = Field(description="Resolved by the caller from the user's course roles.")


class QuizAttemptSubmittedIn(BaseModel):
    """A submitted quiz attempt with its raw grade (0–10 or 0–100 scale)."""
    kind: Literal["quiz_attempt_submitted"]
    completion_id: int = Field(ge=1)
    user_id: int = Field(ge=1)
    course_id: int = Field(ge=1)
    grade: Optional[Decimal] = Field(default=None, ge=0)
    is_student: bool
    repeat_attempts_allowed: Optional[bool] = Field(
        default=None,
        description="Defaults to the deployment's ENABLE_MULTIPLE_QUIZ_ATTEMPTS.",
    )


CompletionEventRequest = Annotated[
    Union[ActivityCompletedIn, QuizAttemptSubmittedIn],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class AwardResponse(BaseModel):
    user_id: int
    course_id: int
    completion_id: Optional[int] = None
    points_awarded: float
    total_before: float
    total_after: float
    log_id: int


class RankTransitionResponse(BaseModel):
    before_position: int = Field(description="0 when the user had no points before.")
    after_position: int
    entered_top_three: bool
    overtaken_user_ids: list[int]


class EventOutcomeResponse(BaseModel):
    status: str = Field(
        description='"awarded" | "skipped_not_student" | "skipped_duplicate" | "skipped_incomplete"'
    )
    award: Optional[AwardResponse] = None
    transition: Optional[RankTransitionResponse] = None


class AwardRequest(BaseModel):
    """Direct engine call. No de-duplication: every call pays out."""
    completion_id: int = Field(ge=1)
    grade: Optional[Decimal] = Field(default=None, ge=0)


class AwardOutcomeResponse(BaseModel):
    awarded: bool
    award: Optional[AwardResponse] = None
