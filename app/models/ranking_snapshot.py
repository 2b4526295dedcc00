"""
RankingSnapshotRow — precomputed per-course standings.

Derived data: every refresh deletes and reinserts a course's rows.
"""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Index, Integer, Numeric, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class RankingSnapshotRow(Base):
    __tablename__ = "ranking_snapshots"
    __table_args__ = (
        UniqueConstraint("course_id", "user_id", name="uq_ranking_snapshot_course_user"),
        Index("ix_ranking_snapshots_course_position", "course_id", "position"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    course_id: Mapped[int] = mapped_column(Integer, nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    points: Mapped[Decimal] = mapped_column(Numeric(18, 5), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    total_users: Mapped[int] = mapped_column(Integer, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
