"""
Ranking read schemas.

GET /courses/{id}/ranking                      → RankingResponse
GET /courses/{id}/ranking/window               → RankingResponse
GET /courses/{id}/users/{uid}/position         → UserPositionResponse
GET /courses/{id}/users/{uid}/history          → PointsHistoryResponse
GET /courses/{id}/users/{uid}/snapshot         → SnapshotPositionResponse
GET /courses/{id}/daily-points                 → DailyPointsResponse
"""
from typing import Optional

from pydantic import BaseModel, Field


class RankedRowOut(BaseModel):
    user_id: int
    points: float
    position: int = Field(description="Absolute position; ties share it (1, 2, 2, 4).")
    progress_percent: int = Field(description="points / max points in the view × 100.")
    is_top_three: bool
    is_gold: bool
    is_silver: bool
    is_bronze: bool


class RankingResponse(BaseModel):
    course_id: int
    period: str = Field(description='"all" | "weekly" | "monthly" | "window"')
    start: Optional[str] = None
    end: Optional[str] = None
    offset: int
    limit: int
    students: list[RankedRowOut]
    message: Optional[str] = Field(
        default=None,
        description="Set when nobody is ranked in this view.",
    )


class UserPositionResponse(BaseModel):
    course_id: int
    user_id: int
    position: int = Field(description="0 if the user has no points in the course.")
    points: float
    total_students: int


class HistoryEntryOut(BaseModel):
    id: int
    points: float
    created_at: str
    activity_type: str


class PointsHistoryResponse(BaseModel):
    course_id: int
    user_id: int
    entries: list[HistoryEntryOut]


class SnapshotPositionResponse(BaseModel):
    course_id: int
    user_id: int
    position: int
    points: float
    total_users: int
    last_updated: Optional[str] = None


class DailyPointsOut(BaseModel):
    day: str
    points: float


class DailyPointsResponse(BaseModel):
    course_id: int
    days: list[DailyPointsOut]
