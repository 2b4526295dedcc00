"""
ActivityCompletion — externally owned record of a user finishing an activity.

The ranking core only reads it: to resolve user/course/activity type for an
award and to label history rows. completion_state 0 means "not completed".
"""
from datetime import datetime

from sqlalchemy import DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base

COMPLETION_INCOMPLETE = 0


class ActivityCompletion(Base):
    __tablename__ = "activity_completions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    course_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    activity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    completion_state: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
