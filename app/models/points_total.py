"""
PointsTotal — one row per (user, course), the running points balance.

The unique constraint on (user_id, course_id) is what lets concurrent award
calls create the row with INSERT … ON CONFLICT DO NOTHING and then share a
single atomic UPDATE.
"""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Index, Integer, Numeric, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base


class PointsTotal(Base):
    __tablename__ = "points_totals"
    __table_args__ = (
        UniqueConstraint("user_id", "course_id", name="uq_points_total_user_course"),
        Index("ix_points_totals_course_points", "course_id", "points"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    course_id: Mapped[int] = mapped_column(Integer, nullable=False)
    points: Mapped[Decimal] = mapped_column(Numeric(18, 5), nullable=False, default=Decimal("0"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    modified_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    logs: Mapped[list["AwardLogEntry"]] = relationship(  # noqa: F821
        back_populates="points_total",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
