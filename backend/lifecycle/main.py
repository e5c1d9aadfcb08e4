"""
Finished-match detection entrypoint.

Invoked by the external scheduler with an operation name, an optional sport id
and the aggressive flag:

    python -m lifecycle.main comprehensive --sport-id 1 --aggressive
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

# Ensure backend root is on path when run as python -m lifecycle.main
_backend = Path(__file__).resolve().parent.parent
if str(_backend) not in sys.path:
    sys.path.insert(0, str(_backend))

from shared.config import get_settings
from shared.models.domain import DetectionReport
from shared.models.enums import DetectionOperation
from shared.storage.matches import SqlMatchRepository
from shared.utils.circuit_breaker import CircuitBreaker
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger, setup_logging
from shared.utils.redis_manager import RedisManager
from shared.utils.startup import connect_with_retry

from ingest.cache.match_cache import MatchCache
from lifecycle.config import get_lifecycle_settings
from lifecycle.detection import FinishedMatchDetector
from lifecycle.sources import ApiFootballFinishedSource, PinnacleEventFeed

logger = get_logger(__name__)

FEED_BREAKER_NAME = "feed_verification"


async def run_trigger(
    operation: str,
    sport_id: Optional[int] = None,
    aggressive: bool = False,
) -> DetectionReport:
    """
    Run one detection trigger end to end.

    Raises:
        ValueError: unknown operation name.
        Exception: infrastructure failure (DB/Redis), after logging finished_detection_failed.
    """
    op = DetectionOperation(operation)
    settings = get_settings()
    lifecycle_settings = get_lifecycle_settings()
    sport_id = sport_id or lifecycle_settings.default_sport_id

    db = DatabaseManager(settings)
    redis = RedisManager(settings)
    fixtures = ApiFootballFinishedSource(settings)
    feed = PinnacleEventFeed(settings)
    try:
        await connect_with_retry(redis.connect, "Redis")
        await connect_with_retry(db.connect, "Database")
        await fixtures.start()
        await feed.start()

        detector = FinishedMatchDetector(
            matches=SqlMatchRepository(db),
            cache=MatchCache(redis, settings),
            fixtures_source=fixtures,
            event_feed=feed,
            breaker=CircuitBreaker(FEED_BREAKER_NAME, redis, settings),
            settings=settings,
            lifecycle_settings=lifecycle_settings,
        )
        return await detector.run(op, sport_id, aggressive=aggressive)
    except Exception as exc:
        logger.exception(
            "finished_detection_failed",
            operation=op.value,
            sport_id=sport_id,
            error=str(exc),
        )
        raise
    finally:
        await feed.close()
        await fixtures.close()
        await redis.disconnect()
        await db.disconnect()


def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="lifecycle", description="Finished-match detection trigger")
    parser.add_argument("operation", choices=[op.value for op in DetectionOperation])
    parser.add_argument("--sport-id", type=int, default=None)
    parser.add_argument("--aggressive", action="store_true")
    parser.add_argument("--log-level", default=None, help="overrides MR_LOG_LEVEL")
    return parser.parse_args(argv)


async def main(argv: Optional[list[str]] = None) -> None:
    args = _parse_args(argv)
    setup_logging("lifecycle", level=args.log_level)
    report = await run_trigger(args.operation, args.sport_id, args.aggressive)
    logger.info(
        "lifecycle_trigger_finished",
        operation=report.operation.value,
        sport_id=report.sport_id,
        total_retired=report.total_retired,
    )


if __name__ == "__main__":
    asyncio.run(main())
