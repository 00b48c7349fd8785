"""Operator commands: ``shortlinks-cli clear-cache`` and ``shortlinks-cli aggregate``.

Aggregation runs here, from a scheduler, and never on the redirect path.
"""

import argparse
import asyncio
import logging
from datetime import UTC, date, datetime, timedelta

from shortlinks.core.config import settings
from shortlinks.db.session import async_session_factory, engine
from shortlinks.services.aggregator import Aggregator
from shortlinks.services.cache import RedisCache
from shortlinks.services.link_cache import LinkCache
from shortlinks.services.store import SqlAlchemyStore

logger = logging.getLogger(__name__)


async def clear_cache() -> int:
    if not settings.CACHE_ENABLED:
        logger.info("Cache is disabled; nothing to clear")
        return 0
    cache = RedisCache.from_url(settings.REDIS_URL, timeout=settings.CACHE_TIMEOUT_SECONDS)
    try:
        removed = await LinkCache(cache, settings.CACHE_PREFIX, settings.CACHE_TTL).clear()
    finally:
        await cache.aclose()
    logger.info("Cleared %d cached links", removed)
    return removed


async def aggregate(day: date, prune: bool = False) -> int:
    async with async_session_factory() as session:
        aggregator = Aggregator(SqlAlchemyStore(session))
        count = await aggregator.aggregate_all(day)
        if prune:
            await aggregator.prune(datetime.now(UTC), settings.ANALYTICS_RETENTION_DAYS)
        await session.commit()
    await engine.dispose()
    logger.info("Aggregated %d links for %s", count, day.isoformat())
    return count


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="shortlinks-cli")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("clear-cache", help="Drop every cached link")

    agg = commands.add_parser("aggregate", help="Roll raw visits up into daily analytics")
    agg.add_argument(
        "--date",
        type=date.fromisoformat,
        default=None,
        help="UTC day to aggregate (YYYY-MM-DD); defaults to yesterday",
    )
    agg.add_argument(
        "--prune",
        action="store_true",
        help="Also delete raw visits older than ANALYTICS_RETENTION_DAYS",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(
        level=logging.DEBUG if settings.DEBUG else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args = build_parser().parse_args(argv)

    if args.command == "clear-cache":
        asyncio.run(clear_cache())
    elif args.command == "aggregate":
        day = args.date or datetime.now(UTC).date() - timedelta(days=1)
        asyncio.run(aggregate(day, prune=args.prune))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
