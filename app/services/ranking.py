"""
Ranking Calculator — turns (user_id, points) rows into ranked rows.

Pure: no DB, no cache, no clock. Safe to call from any thread.

Ordering
--------
points DESC, then user_id ASC. Point ties are common, so the secondary key
must be deterministic; user_id is the only stable identity the service holds.

Positions (competition / gap ranking)
-------------------------------------
Equal points share a position and consume ranks:

    50, 50, 30  →  1, 1, 3      (not 1, 1, 2)

A row's position is the 1-based index of the first row carrying its score
in the fully sorted set.

Pagination
----------
Positions, max points and progress are computed over the FULL input, then
rows[offset : offset + limit] is returned. A page starting at offset 50
therefore reports absolute positions (51+).
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, Optional, Protocol

TOP_THREE = 3


class _PointsRow(Protocol):
    user_id: int
    points: Decimal


@dataclass(frozen=True)
class RankInput:
    user_id: int
    points: Decimal


@dataclass(frozen=True)
class RankedRow:
    user_id: int
    points: Decimal
    position: int
    progress_percent: int

    @property
    def is_gold(self) -> bool:
        return self.position == 1

    @property
    def is_silver(self) -> bool:
        return self.position == 2

    @property
    def is_bronze(self) -> bool:
        return self.position == 3

    @property
    def is_top_three(self) -> bool:
        return self.position <= TOP_THREE

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe form used as the cache payload."""
        data = asdict(self)
        data["points"] = str(self.points)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RankedRow":
        return cls(
            user_id=int(data["user_id"]),
            points=Decimal(str(data["points"])),
            position=int(data["position"]),
            progress_percent=int(data["progress_percent"]),
        )


def _progress(points: Decimal, max_points: Decimal) -> int:
    if max_points <= 0:
        return 0
    pct = (Decimal(points) / max_points) * 100
    return int(pct.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def rank(
    rows: Iterable[_PointsRow],
    offset: int = 0,
    limit: Optional[int] = None,
) -> list[RankedRow]:
    """Rank the whole input, then return the requested page."""
    if offset < 0:
        raise ValueError("offset must be >= 0")

    ordered = sorted(
        (RankInput(user_id=r.user_id, points=Decimal(r.points)) for r in rows),
        key=lambda r: (-r.points, r.user_id),
    )
    if not ordered:
        return []

    max_points = ordered[0].points

    ranked: list[RankedRow] = []
    position = 1
    previous: Optional[Decimal] = None
    for index, row in enumerate(ordered):
        if previous is not None and row.points != previous:
            position = index + 1
        previous = row.points
        ranked.append(RankedRow(
            user_id=row.user_id,
            points=row.points,
            position=position,
            progress_percent=_progress(row.points, max_points),
        ))

    end = None if limit is None else offset + limit
    return ranked[offset:end]


def position_of(ranked: Iterable[RankedRow], user_id: int) -> int:
    """Position of user_id in an already ranked sequence, 0 when absent."""
    for row in ranked:
        if row.user_id == user_id:
            return row.position
    return 0
