"""
Maintenance schemas.

POST   /courses/{id}/cache/invalidate → CacheInvalidationResponse
POST   /snapshots/refresh             → SnapshotRefreshResponse
DELETE /courses/{id}/data             → PurgeResponse
DELETE /users/{uid}/data              → PurgeResponse
"""
from typing import Optional

from pydantic import BaseModel


class CacheInvalidationResponse(BaseModel):
    course_id: int
    deleted_keys: list[str]


class SnapshotRefreshResponse(BaseModel):
    refreshed: list[int]
    failed: list[int]
    rows_written: int


class PurgeResponse(BaseModel):
    course_id: Optional[int] = None
    user_id: Optional[int] = None
    totals_deleted: int
