"""
HTTP-level tests for the award, ranking and maintenance endpoints.
"""
from datetime import datetime, timezone

from app.services.ranking_cache import general_key

from conftest import make_completion, seed_points


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


# ---------------------------------------------------------------------------
# POST /events, POST /awards
# ---------------------------------------------------------------------------

class TestEvents:
    def test_activity_completed(self, client, db):
        c = make_completion(db, user_id=1, course_id=10, activity_type="forum")
        r = client.post("/events", json={
            "kind": "activity_completed",
            "completion_id": c.id,
            "user_id": 1,
            "course_id": 10,
            "is_student": True,
        })
        assert r.status_code == 200
        body = r.json()
        assert body["status"] == "awarded"
        assert body["award"]["points_awarded"] == 2.0
        assert body["transition"]["after_position"] == 1
        assert body["transition"]["entered_top_three"] is True

    def test_duplicate_activity_skipped(self, client, db):
        c = make_completion(db, user_id=1, course_id=10, activity_type="page")
        payload = {
            "kind": "activity_completed",
            "completion_id": c.id,
            "user_id": 1,
            "course_id": 10,
            "is_student": True,
        }
        client.post("/events", json=payload)
        r = client.post("/events", json=payload)
        assert r.json()["status"] == "skipped_duplicate"
        assert r.json()["award"] is None

    def test_quiz_with_percentage_grade(self, client, db):
        c = make_completion(db, user_id=2, course_id=10, activity_type="quiz")
        r = client.post("/events", json={
            "kind": "quiz_attempt_submitted",
            "completion_id": c.id,
            "user_id": 2,
            "course_id": 10,
            "grade": 80,
            "is_student": True,
            "repeat_attempts_allowed": False,
        })
        assert r.status_code == 200
        assert r.json()["award"]["total_after"] == 10.0

    def test_non_student(self, client, db):
        c = make_completion(db, user_id=3, course_id=10)
        r = client.post("/events", json={
            "kind": "quiz_attempt_submitted",
            "completion_id": c.id,
            "user_id": 3,
            "course_id": 10,
            "grade": 5,
            "is_student": False,
        })
        assert r.json() == {"status": "skipped_not_student", "award": None, "transition": None}

    def test_event_invalidates_cache(self, client, db, cache):
        cache.set(general_key(10, 10), [])
        c = make_completion(db, user_id=1, course_id=10, activity_type="forum")
        client.post("/events", json={
            "kind": "activity_completed",
            "completion_id": c.id,
            "user_id": 1,
            "course_id": 10,
            "is_student": True,
        })
        assert cache.get(general_key(10, 10)) is None


class TestAwards:
    def test_direct_award_pays_every_call(self, client, db):
        c = make_completion(db, user_id=1, course_id=10, activity_type="assign")
        first = client.post("/awards", json={"completion_id": c.id})
        second = client.post("/awards", json={"completion_id": c.id})
        assert first.status_code == 201
        assert second.json()["award"]["total_before"] == 2.0
        assert second.json()["award"]["total_after"] == 4.0

    def test_incomplete_completion(self, client, db):
        c = make_completion(db, user_id=1, course_id=10, completion_state=0)
        r = client.post("/awards", json={"completion_id": c.id})
        assert r.status_code == 201
        assert r.json() == {"awarded": False, "award": None}


# ---------------------------------------------------------------------------
# Ranking reads
# ---------------------------------------------------------------------------

class TestRankingReads:
    def test_ranking(self, client, db):
        seed_points(db, 1, 10, 30)
        seed_points(db, 2, 10, 50)
        seed_points(db, 3, 10, 10)
        r = client.get("/courses/10/ranking")
        assert r.status_code == 200
        body = r.json()
        assert body["limit"] == 10
        assert body["message"] is None
        assert [(s["user_id"], s["position"]) for s in body["students"]] == [(2, 1), (1, 2), (3, 3)]
        assert body["students"][0]["is_gold"] is True
        assert body["students"][1]["progress_percent"] == 60

    def test_empty_ranking_message(self, client):
        body = client.get("/courses/404/ranking").json()
        assert body["students"] == []
        assert body["message"] == "No students to show"

    def test_pagination(self, client, db):
        for u in range(1, 13):
            seed_points(db, u, 10, 100 - u)
        body = client.get("/courses/10/ranking", params={"limit": 5, "offset": 10}).json()
        assert [s["position"] for s in body["students"]] == [11, 12]

    def test_weekly_period(self, client, db):
        seed_points(db, 1, 10, 5)
        seed_points(db, 2, 10, 9, created_at=datetime(2020, 1, 1, tzinfo=timezone.utc))
        body = client.get("/courses/10/ranking", params={"period": "weekly"}).json()
        assert body["period"] == "weekly"
        assert body["start"] is not None
        assert [s["user_id"] for s in body["students"]] == [1]

    def test_custom_window(self, client, db):
        seed_points(db, 1, 10, 5, created_at=datetime(2026, 5, 5, tzinfo=timezone.utc))
        r = client.get("/courses/10/ranking/window", params={
            "start": "2026-05-01T00:00:00Z",
            "end": "2026-05-31T23:59:59Z",
        })
        assert r.status_code == 200
        assert r.json()["students"][0]["points"] == 5.0

    def test_user_position(self, client, db):
        seed_points(db, 1, 10, 50)
        seed_points(db, 2, 10, 50)
        seed_points(db, 3, 10, 30)
        body = client.get("/courses/10/users/3/position").json()
        assert body["position"] == 3
        assert body["total_students"] == 3

    def test_user_without_points(self, client):
        body = client.get("/courses/10/users/3/position").json()
        assert (body["position"], body["points"]) == (0, 0.0)

    def test_history(self, client, db):
        c = make_completion(db, user_id=1, course_id=10, activity_type="forum")
        client.post("/awards", json={"completion_id": c.id})
        body = client.get("/courses/10/users/1/history").json()
        assert len(body["entries"]) == 1
        assert body["entries"][0]["activity_type"] == "forum"

    def test_daily_points(self, client, db):
        seed_points(db, 1, 10, 2, created_at=datetime(2026, 4, 1, 9, tzinfo=timezone.utc))
        body = client.get("/courses/10/daily-points").json()
        assert body["days"] == [{"day": "2026-04-01", "points": 2.0}]


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------

class TestAdmin:
    def test_snapshot_refresh_and_lookup(self, client, db):
        seed_points(db, 1, 10, 5)
        seed_points(db, 2, 10, 8)

        r = client.post("/snapshots/refresh")
        assert r.json() == {"refreshed": [10], "failed": [], "rows_written": 2}

        body = client.get("/courses/10/users/1/snapshot").json()
        assert body["position"] == 2
        assert body["total_users"] == 2

    def test_snapshot_missing_user(self, client):
        assert client.get("/courses/10/users/1/snapshot").status_code == 404

    def test_invalidate_cache(self, client, cache):
        cache.set(general_key(10, 20), [])
        body = client.post("/courses/10/cache/invalidate").json()
        assert general_key(10, 20) in body["deleted_keys"]
        assert cache.get(general_key(10, 20)) is None

    def test_purge_course(self, client, db):
        seed_points(db, 1, 10, 5)
        seed_points(db, 2, 10, 5)
        r = client.delete("/courses/10/data")
        assert r.json()["totals_deleted"] == 2
        assert client.get("/courses/10/ranking").json()["students"] == []

    def test_purge_user(self, client, db):
        seed_points(db, 1, 10, 5)
        seed_points(db, 1, 11, 5)
        r = client.delete("/users/1/data", params={"course_id": 10})
        assert r.json() == {"course_id": 10, "user_id": 1, "totals_deleted": 1}
        assert client.get("/courses/11/users/1/position").json()["position"] == 1
