"""
Reconciliation pass entrypoint.

Invoked by the external scheduler once per pass:

    python -m ingest.main live_sync --sport-id 1
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

# Ensure backend root is on path when run as python -m ingest.main
_backend = Path(__file__).resolve().parent.parent
if str(_backend) not in sys.path:
    sys.path.insert(0, str(_backend))

from shared.config import get_settings
from shared.models.domain import BatchOutcome
from shared.storage.matches import SqlMatchRepository
from shared.storage.teams import SqlTeamRepository
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import start_metrics_server
from shared.utils.redis_manager import RedisManager
from shared.utils.startup import connect_with_retry

from ingest.cache.match_cache import MatchCache
from ingest.feeds import build_feeds
from ingest.service import ReconciliationService
from ingest.teams.resolver import TeamResolver

logger = get_logger(__name__)

DEFAULT_SPORT_ID = 1


async def run_pass(task: str, sport_id: int = DEFAULT_SPORT_ID) -> BatchOutcome:
    """
    Fetch every configured provider and reconcile one pass.

    Raises:
        Exception: infrastructure failure (DB/Redis), after logging reconciliation_pass_failed.
    """
    settings = get_settings()
    db = DatabaseManager(settings)
    redis = RedisManager(settings)
    feeds = build_feeds(settings)
    try:
        await connect_with_retry(redis.connect, "Redis")
        await connect_with_retry(db.connect, "Database")
        for feed in feeds.values():
            await feed.start()

        service = ReconciliationService(
            matches=SqlMatchRepository(db),
            resolver=TeamResolver(SqlTeamRepository(db), redis, settings),
            cache=MatchCache(redis, settings),
            settings=settings,
        )
        return await service.run(task, sport_id, feeds)
    except Exception as exc:
        logger.exception("reconciliation_pass_failed", task=task, sport_id=sport_id, error=str(exc))
        raise
    finally:
        for feed in feeds.values():
            await feed.close()
        await redis.disconnect()
        await db.disconnect()


def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="ingest", description="Match reconciliation pass")
    parser.add_argument("task", help="logical task name, e.g. live_sync or prematch_sync")
    parser.add_argument("--sport-id", type=int, default=DEFAULT_SPORT_ID)
    parser.add_argument("--log-level", default=None, help="overrides MR_LOG_LEVEL")
    return parser.parse_args(argv)


async def main(argv: Optional[list[str]] = None) -> None:
    args = _parse_args(argv)
    setup_logging("ingest", level=args.log_level)
    start_metrics_server()
    outcome = await run_pass(args.task, args.sport_id)
    logger.info("reconciliation_pass_finished", task=args.task, sport_id=args.sport_id, **outcome.model_dump())


if __name__ == "__main__":
    asyncio.run(main())
