"""
Tests for the ledger store: lazy row creation, windowed sums and the
privacy purge operations.
"""
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select

from app.models.award_log import AwardLogEntry
from app.models.points_total import PointsTotal
from app.models.ranking_snapshot import RankingSnapshotRow
from app.services import ledger
from app.services.snapshot import refresh_course

from conftest import add_group_member, seed_points


def _count(db, model, **filters):
    q = select(func.count()).select_from(model)
    for name, value in filters.items():
        q = q.where(getattr(model, name) == value)
    return db.execute(q).scalar()


class TestTotals:
    def test_upsert_creates_then_increments(self, db):
        seed_points(db, 1, 10, 3)
        seed_points(db, 1, 10, "4.5")
        assert Decimal(ledger.get_total(db, 1, 10).points) == Decimal("7.5")
        assert _count(db, PointsTotal, user_id=1, course_id=10) == 1

    def test_course_totals_group_filter(self, db):
        seed_points(db, 1, 10, 5)
        seed_points(db, 2, 10, 6)
        add_group_member(db, group_id=7, user_id=2)
        assert ledger.course_totals(db, 10, group_id=7) == [(2, Decimal("6"))]

    def test_count_ranked_ignores_zero(self, db):
        seed_points(db, 1, 10, 5)
        seed_points(db, 2, 10, 0)
        assert ledger.count_ranked(db, 10) == 1

    def test_users_between_is_strict(self, db):
        seed_points(db, 1, 10, 5)
        seed_points(db, 2, 10, 8)
        seed_points(db, 3, 10, 12)
        assert ledger.users_between(db, 10, Decimal("5"), Decimal("12")) == [2]
        assert ledger.users_between(db, 10, Decimal("0"), Decimal("20"), exclude_user_id=3) == [1, 2]

    def test_sum_log_in_window_inclusive(self, db):
        jan = datetime(2026, 1, 15, 12, tzinfo=timezone.utc)
        feb = datetime(2026, 2, 15, 12, tzinfo=timezone.utc)
        seed_points(db, 1, 10, 4, created_at=jan)
        seed_points(db, 1, 10, 6, created_at=feb)
        seed_points(db, 2, 10, 3, created_at=feb)

        sums = ledger.sum_log_in_window(db, 10, feb, feb)
        assert sums == {1: Decimal("6"), 2: Decimal("3")}


class TestPurge:
    def test_delete_course(self, db):
        seed_points(db, 1, 10, 5)
        seed_points(db, 2, 10, 3)
        seed_points(db, 1, 11, 9)
        refresh_course(db, 10)

        assert ledger.delete_all_for_course(db, 10) == 2

        assert _count(db, PointsTotal, course_id=10) == 0
        assert _count(db, AwardLogEntry, course_id=10) == 0
        assert _count(db, RankingSnapshotRow, course_id=10) == 0
        assert _count(db, PointsTotal, course_id=11) == 1
        assert _count(db, AwardLogEntry, course_id=11) == 1

    def test_delete_user_in_one_course(self, db):
        seed_points(db, 1, 10, 5)
        seed_points(db, 1, 11, 9)
        seed_points(db, 2, 10, 3)

        assert ledger.delete_all_for_user(db, 1, course_id=10) == 1

        assert ledger.get_total(db, 1, 10) is None
        assert ledger.get_total(db, 1, 11) is not None
        assert ledger.get_total(db, 2, 10) is not None
        assert _count(db, AwardLogEntry, course_id=10) == 1

    def test_delete_user_everywhere(self, db):
        seed_points(db, 1, 10, 5)
        seed_points(db, 1, 11, 9)
        seed_points(db, 2, 11, 1)

        assert ledger.delete_all_for_user(db, 1) == 2

        assert _count(db, PointsTotal, user_id=1) == 0
        assert _count(db, AwardLogEntry) == 1

    def test_delete_unknown_user_is_noop(self, db):
        assert ledger.delete_all_for_user(db, 404) == 0
