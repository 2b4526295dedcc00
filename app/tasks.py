"""
Scheduler entry points.

    python -m app.tasks refresh-snapshots
    python -m app.tasks invalidate-cache --course-id 42   (needs CACHE_BACKEND=redis)

Cron (or any external runner) owns the schedule; these commands run one
cycle and exit non-zero when any course failed.
"""
from __future__ import annotations

import argparse
import logging
import sys

from app.core.config import settings
from app.db.base import SessionLocal
from app.middleware.logging import setup_logging
from app.services.ranking_cache import MemoryRankingCache, get_cache, invalidate_course_cache
from app.services.snapshot import refresh_all

logger = logging.getLogger("ranking.tasks")


def _refresh_snapshots(args: argparse.Namespace) -> int:
    db = SessionLocal()
    try:
        report = refresh_all(db)
    finally:
        db.close()
    return 1 if report.failed else 0


def _invalidate_cache(args: argparse.Namespace) -> int:
    cache = get_cache()
    if isinstance(cache, MemoryRankingCache):
        # This process's cache is not the one the API workers read.
        logger.warning(
            "CACHE_BACKEND=%s is per process; nothing shared was invalidated for course %s",
            settings.CACHE_BACKEND, args.course_id,
        )
        return 1
    keys = invalidate_course_cache(cache, args.course_id)
    logger.info("deleted %d cache keys for course %s", len(keys), args.course_id)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ranking-tasks", description=__doc__.splitlines()[1])
    sub = parser.add_subparsers(dest="command", required=True)

    refresh = sub.add_parser("refresh-snapshots", help="Rebuild the ranking snapshot of every course.")
    refresh.set_defaults(func=_refresh_snapshots)

    invalidate = sub.add_parser("invalidate-cache", help="Drop a course's common ranking cache keys.")
    invalidate.add_argument("--course-id", type=int, required=True)
    invalidate.set_defaults(func=_invalidate_cache)
    return parser


def main(argv: list[str] | None = None) -> int:
    setup_logging(settings.LOG_LEVEL)
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
