"""
Shared pytest fixtures.

Uses a file-backed SQLite database so no Postgres is required for tests.
Every test starts from empty tables and an empty in-process ranking cache.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_ranking.db")
os.environ.setdefault("CACHE_BACKEND", "memory")

from datetime import datetime
from decimal import Decimal
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, delete
from sqlalchemy.orm import sessionmaker

from app.db.base import Base, get_db
from app.main import app
from app.models.completion import ActivityCompletion
from app.models.group_member import GroupMember
from app.services import ledger
from app.services.award_engine import PointsPolicy
from app.services.ranking_cache import MemoryRankingCache, get_cache

SQLITE_URL = "sqlite:///./test_ranking.db"

engine = create_engine(SQLITE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(scope="session", autouse=True)
def create_tables():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clean_tables():
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(delete(table))


@pytest.fixture()
def db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def cache():
    return MemoryRankingCache(default_ttl=300)


@pytest.fixture()
def policy():
    """quiz/assign = 2, forum = 5, anything else = 1, grades counted 1:1."""
    return PointsPolicy(
        activity_points={"quiz": Decimal("2"), "assign": Decimal("2"), "forum": Decimal("5")},
        default_points=Decimal("1"),
        grade_multiplier=Decimal("1"),
    )


@pytest.fixture()
def client(db, cache):
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache] = lambda: cache
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Data helpers
# ---------------------------------------------------------------------------

def make_completion(
    db,
    user_id: int,
    course_id: int,
    activity_type: str = "quiz",
    completion_state: int = 1,
) -> ActivityCompletion:
    completion = ActivityCompletion(
        user_id=user_id,
        course_id=course_id,
        activity_type=activity_type,
        completion_state=completion_state,
    )
    db.add(completion)
    db.commit()
    db.refresh(completion)
    return completion


def seed_points(
    db,
    user_id: int,
    course_id: int,
    points,
    created_at: Optional[datetime] = None,
    completion_id: Optional[int] = None,
):
    """Write a total increment plus its log row, bypassing the award rules."""
    delta = Decimal(str(points))
    total = ledger.upsert_increment(db, user_id, course_id, delta)
    ledger.append_log(db, total, completion_id, delta, created_at=created_at)
    db.commit()
    return total


def add_group_member(db, group_id: int, user_id: int) -> None:
    db.add(GroupMember(group_id=group_id, user_id=user_id))
    db.commit()


class FakeRedis:
    """Just enough of redis.Redis for the cache backend."""

    def __init__(self):
        self.store = {}
        self.expiry = {}

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value, ex=None):
        self.store[key] = value
        self.expiry[key] = ex

    def delete(self, *keys):
        for k in keys:
            self.store.pop(k, None)
        return len(keys)
