"""Daily rollups of raw visits.

``aggregate_day`` recomputes a (link, date) row from scratch and upserts it,
so a re-run or a backfill replaces the previous rollup instead of adding to
it. Days are UTC calendar days; the hour histogram uses UTC hours.

Runs from the batch job (``shortlinks-cli aggregate``), never from the
redirect path.
"""

import logging
import uuid
from collections import Counter
from collections.abc import Iterable
from datetime import UTC, date, datetime, time, timedelta
from typing import Any

from shortlinks.models.visit import ShortLinkVisit
from shortlinks.services.store import SqlAlchemyStore

logger = logging.getLogger(__name__)

# rollup column -> visit attribute
BREAKDOWNS = {
    "clicks_by_country": "country_code",
    "clicks_by_city": "city",
    "clicks_by_device": "device_type",
    "clicks_by_platform": "platform",
    "clicks_by_browser": "browser",
    "clicks_by_referer": "referer_domain",
    "clicks_by_utm_source": "utm_source",
    "clicks_by_utm_medium": "utm_medium",
    "clicks_by_utm_campaign": "utm_campaign",
}


def day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=UTC)
    return start, start + timedelta(days=1)


def frequencies(values: Iterable[Any]) -> dict[str, int]:
    """Count non-null values. Nulls are skipped, not counted as a category."""
    counts = Counter(str(v) for v in values if v is not None and v != "")
    return dict(sorted(counts.items(), key=lambda item: (-item[1], item[0])))


def summarize(visits: list[ShortLinkVisit]) -> dict[str, Any]:
    distinct_ips = {v.ip_address for v in visits if v.ip_address}
    hours = Counter(v.visited_at.astimezone(UTC).hour for v in visits)

    fields: dict[str, Any] = {
        "total_clicks": len(visits),
        "unique_clicks": len(distinct_ips),
        "unique_visitors": len(distinct_ips),
    }
    for column, attribute in BREAKDOWNS.items():
        fields[column] = frequencies(getattr(v, attribute) for v in visits)
    fields["clicks_by_hour"] = {str(hour): hours.get(hour, 0) for hour in range(24)}
    return fields


class Aggregator:
    def __init__(self, store: SqlAlchemyStore):
        self.store = store

    async def aggregate_day(self, link_id: uuid.UUID, day: date) -> dict[str, Any]:
        start, end = day_bounds(day)
        visits = await self.store.query_visits(link_id, start, end)
        fields = summarize(visits)
        await self.store.upsert_daily_analytics(link_id, day, fields)
        logger.info(
            "Aggregated link %s for %s: %d clicks", link_id, day.isoformat(), fields["total_clicks"]
        )
        return fields

    async def aggregate_all(self, day: date) -> int:
        """Roll up every link that has visits on ``day``. Returns the link count."""
        start, end = day_bounds(day)
        link_ids = await self.store.link_ids_with_visits(start, end)
        for link_id in link_ids:
            await self.aggregate_day(link_id, day)
        return len(link_ids)

    async def prune(self, now: datetime, retention_days: int) -> int:
        """Delete raw visits older than the retention window."""
        removed = await self.store.prune_visits(now - timedelta(days=retention_days))
        logger.info("Pruned %d visits older than %d days", removed, retention_days)
        return removed
