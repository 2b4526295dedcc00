"""
AwardLogEntry — append-only audit row, one per applied award.

Also the de-duplication key: an entry with a given completion_id under a
user's PointsTotal means that completion already paid out.
course_id is denormalized from the owning total for windowed sums.
"""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base


class AwardLogEntry(Base):
    __tablename__ = "award_logs"
    __table_args__ = (
        Index("ix_award_logs_course_created", "course_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    points_total_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("points_totals.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    course_id: Mapped[int] = mapped_column(Integer, nullable=False)
    completion_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    points: Mapped[Decimal] = mapped_column(Numeric(18, 5), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    points_total: Mapped["PointsTotal"] = relationship(back_populates="logs")  # noqa: F821
