from .points_total import PointsTotal
from .award_log import AwardLogEntry
from .ranking_snapshot import RankingSnapshotRow
from .completion import ActivityCompletion
from .group_member import GroupMember

__all__ = [
    "PointsTotal",
    "AwardLogEntry",
    "RankingSnapshotRow",
    "ActivityCompletion",
    "GroupMember",
]
