"""
Tests for the Award Engine: the points rule, atomic totals + log writes,
rollback on failure, and post-commit cache invalidation.
"""
import threading
import time
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from app.core.config import Settings
from app.core.errors import DuplicateAwardError, InvalidCompletionError, TransactionFailureError
from app.models.award_log import AwardLogEntry
from app.models.points_total import PointsTotal
from app.services import award_engine, ledger
from app.services.award_engine import PointsPolicy, award_points, calculate_points, normalize_grade
from app.services.ranking_cache import general_key

from conftest import TestingSessionLocal, make_completion


def _log_sum(db, user_id, course_id):
    return db.execute(
        select(func.coalesce(func.sum(AwardLogEntry.points), 0))
        .join(PointsTotal, PointsTotal.id == AwardLogEntry.points_total_id)
        .where(PointsTotal.user_id == user_id, PointsTotal.course_id == course_id)
    ).scalar()


# ---------------------------------------------------------------------------
# Points rule
# ---------------------------------------------------------------------------

class TestPointsRule:
    def test_base_points_without_grade(self, policy):
        assert calculate_points(policy, "forum") == Decimal("5")

    def test_unknown_activity_uses_default(self, policy):
        assert calculate_points(policy, "glossary") == Decimal("1")

    def test_grade_on_ten_scale_added(self, policy):
        assert calculate_points(policy, "quiz", 8) == Decimal("10")

    def test_grade_on_hundred_scale_normalized(self, policy):
        assert calculate_points(policy, "quiz", 80) == Decimal("10")

    def test_grade_of_exactly_ten_is_not_rescaled(self):
        assert normalize_grade(10) == Decimal("10")
        assert normalize_grade(Decimal("10.5")) == Decimal("1.05")

    def test_multiplier(self):
        p = PointsPolicy(activity_points={"quiz": Decimal("2")}, grade_multiplier=Decimal("1.5"))
        assert calculate_points(p, "quiz", 8) == Decimal("14.0")

    def test_zero_grade(self, policy):
        assert calculate_points(policy, "quiz", 0) == Decimal("2")

    def test_policy_from_settings(self):
        cfg = Settings(ACTIVITY_POINTS={"quiz": 3}, DEFAULT_POINTS=4, GRADE_MULTIPLIER=2)
        p = PointsPolicy.from_settings(cfg)
        assert p.points_for("quiz") == Decimal("3")
        assert p.points_for("page") == Decimal("4")
        assert p.grade_multiplier == Decimal("2")


# ---------------------------------------------------------------------------
# Awards
# ---------------------------------------------------------------------------

class TestAwardPoints:
    def test_first_award_creates_total_and_log(self, db, policy):
        c = make_completion(db, user_id=1, course_id=10, activity_type="quiz")
        result = award_points(db, c.id, 8, policy=policy)

        assert result.points_awarded == Decimal("10")
        assert result.total_before == Decimal("0")
        assert result.total_after == Decimal("10")
        assert result.completion_id == c.id

        total = ledger.get_total(db, 1, 10)
        assert Decimal(total.points) == Decimal("10")
        assert Decimal(_log_sum(db, 1, 10)) == Decimal("10")

    def test_repeated_award_is_not_deduplicated(self, db, policy):
        c = make_completion(db, user_id=1, course_id=10, activity_type="assign")
        award_points(db, c.id, policy=policy)
        second = award_points(db, c.id, policy=policy)

        assert second.total_before == Decimal("2")
        assert second.total_after == Decimal("4")
        assert ledger.count_prior_awards(db, 1, 10, c.id) == 2

    def test_total_equals_sum_of_logs(self, db, policy):
        quiz = make_completion(db, user_id=2, course_id=10, activity_type="quiz")
        forum = make_completion(db, user_id=2, course_id=10, activity_type="forum")
        award_points(db, quiz.id, 75, policy=policy)
        award_points(db, forum.id, policy=policy)
        award_points(db, quiz.id, 3, policy=policy)

        db.expire_all()
        total = ledger.get_total(db, 2, 10)
        assert Decimal(total.points) == Decimal(_log_sum(db, 2, 10))
        assert Decimal(total.points) == Decimal("19.5")

    def test_unknown_completion_raises(self, db, policy):
        with pytest.raises(InvalidCompletionError) as exc:
            award_points(db, 9999, policy=policy)
        assert exc.value.details["completion_id"] == 9999
        assert db.execute(select(func.count(PointsTotal.id))).scalar() == 0

    def test_incomplete_completion_awards_nothing(self, db, policy):
        c = make_completion(db, user_id=1, course_id=10, completion_state=0)
        assert award_points(db, c.id, policy=policy) is None
        assert ledger.get_total(db, 1, 10) is None

    def test_totals_are_per_course(self, db, policy):
        a = make_completion(db, user_id=1, course_id=10, activity_type="forum")
        b = make_completion(db, user_id=1, course_id=11, activity_type="assign")
        award_points(db, a.id, policy=policy)
        award_points(db, b.id, policy=policy)
        assert Decimal(ledger.get_total(db, 1, 10).points) == Decimal("5")
        assert Decimal(ledger.get_total(db, 1, 11).points) == Decimal("2")

    def test_failed_log_write_rolls_back_total(self, db, policy, monkeypatch):
        c = make_completion(db, user_id=3, course_id=10, activity_type="quiz")
        award_points(db, c.id, policy=policy)

        def broken_append(*args, **kwargs):
            raise OperationalError("INSERT INTO award_logs", {}, Exception("disk I/O error"))

        monkeypatch.setattr(award_engine.ledger, "append_log", broken_append)
        with pytest.raises(TransactionFailureError) as exc:
            award_points(db, c.id, 5, policy=policy)
        assert exc.value.http_status == 503

        db.expire_all()
        assert Decimal(ledger.get_total(db, 3, 10).points) == Decimal("2")
        assert ledger.count_prior_awards(db, 3, 10, c.id) == 1

    def test_unique_completion_guard(self, db, policy):
        c = make_completion(db, user_id=4, course_id=10, activity_type="assign")
        award_points(db, c.id, policy=policy, unique_completion=True)
        with pytest.raises(DuplicateAwardError):
            award_points(db, c.id, policy=policy, unique_completion=True)
        assert Decimal(ledger.get_total(db, 4, 10).points) == Decimal("2")


class TestCacheInvalidation:
    def test_award_drops_course_general_keys(self, db, policy, cache):
        cache.set(general_key(10, 10), [])
        cache.set(general_key(10, 50), [])
        cache.set(general_key(11, 10), [])

        c = make_completion(db, user_id=1, course_id=10)
        award_points(db, c.id, policy=policy, cache=cache)

        assert cache.get(general_key(10, 10)) is None
        assert cache.get(general_key(10, 50)) is None
        assert cache.get(general_key(11, 10)) == []

    def test_failed_award_leaves_cache(self, db, policy, cache, monkeypatch):
        c = make_completion(db, user_id=1, course_id=10)
        cache.set(general_key(10, 10), ["stale"])

        def broken_upsert(*args, **kwargs):
            raise OperationalError("UPDATE points_totals", {}, Exception("locked"))

        monkeypatch.setattr(award_engine.ledger, "upsert_increment", broken_upsert)
        with pytest.raises(TransactionFailureError):
            award_points(db, c.id, policy=policy, cache=cache)
        assert cache.get(general_key(10, 10)) == ["stale"]


# ---------------------------------------------------------------------------
# Concurrent sessions
# ---------------------------------------------------------------------------

class TestConcurrentAwards:
    def test_stale_session_does_not_lose_updates(self, db, policy):
        c = make_completion(db, user_id=6, course_id=20, activity_type="assign")
        award_points(db, c.id, policy=policy)
        stale = ledger.get_total(db, 6, 20)
        assert Decimal(stale.points) == Decimal("2")

        other = TestingSessionLocal()
        try:
            award_points(other, c.id, policy=policy)
            award_points(other, c.id, policy=policy)
        finally:
            other.close()

        result = award_points(db, c.id, policy=policy)

        assert result.total_before == Decimal("6")
        assert result.total_after == Decimal("8")
        db.expire_all()
        assert Decimal(ledger.get_total(db, 6, 20).points) == Decimal(_log_sum(db, 6, 20))

    def test_threaded_awards_all_land(self, db, policy):
        c = make_completion(db, user_id=7, course_id=20, activity_type="assign")
        completion_id = c.id
        errors = []

        def worker():
            for _ in range(5):
                session = TestingSessionLocal()
                try:
                    award_points(session, completion_id, policy=policy)
                except Exception as exc:  # surfaced through `errors`
                    errors.append(exc)
                finally:
                    session.close()

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert errors == []
        db.expire_all()
        assert ledger.count_prior_awards(db, 7, 20, completion_id) == 20
        assert Decimal(ledger.get_total(db, 7, 20).points) == Decimal("40")
        assert Decimal(_log_sum(db, 7, 20)) == Decimal("40")

    def test_unique_guard_holds_when_second_call_races_the_check(self, db, policy, monkeypatch):
        c = make_completion(db, user_id=8, course_id=20, activity_type="assign")
        completion_id = c.id
        real_count = ledger.count_prior_awards
        racers = []
        outcome = {}

        def second_award():
            session = TestingSessionLocal()
            try:
                award_points(session, completion_id, policy=policy, unique_completion=True)
                outcome["second"] = "awarded"
            except DuplicateAwardError:
                outcome["second"] = "duplicate"
            finally:
                session.close()

        def count_then_start_racer(session, *args):
            counted = real_count(session, *args)
            if not racers:
                # First caller has counted; start a rival before it writes.
                racers.append(threading.Thread(target=second_award))
                racers[0].start()
                time.sleep(0.3)
            return counted

        monkeypatch.setattr(award_engine.ledger, "count_prior_awards", count_then_start_racer)
        first = award_points(db, completion_id, policy=policy, unique_completion=True)
        racers[0].join(timeout=10)

        assert first is not None
        assert outcome["second"] == "duplicate"
        db.expire_all()
        assert real_count(db, 8, 20, completion_id) == 1
        assert Decimal(ledger.get_total(db, 8, 20).points) == Decimal("2")
