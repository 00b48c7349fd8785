"""Read-side analytics for reporting endpoints.

``link_summary`` answers "how is this link doing right now" from raw visits;
``daily_series`` reads the precomputed rollups for charts over longer ranges.
"""

from datetime import UTC, date, datetime, time, timedelta
from typing import Any

from shortlinks.models.daily_analytics import BREAKDOWN_COLUMNS, ShortLinkAnalytics
from shortlinks.models.link import ShortLink
from shortlinks.services.store import SqlAlchemyStore

HIDDEN_UTM_COLUMNS = frozenset(
    {"clicks_by_utm_source", "clicks_by_utm_medium", "clicks_by_utm_campaign"}
)


def _start_of_day(now: datetime) -> datetime:
    return datetime.combine(now.astimezone(UTC).date(), time.min, tzinfo=UTC)


async def link_summary(store: SqlAlchemyStore, link: ShortLink, now: datetime) -> dict[str, Any]:
    today = _start_of_day(now)
    week_start = today - timedelta(days=today.weekday())
    month_start = today.replace(day=1)

    return {
        "total_clicks": link.clicks_count,
        "unique_clicks": await store.count_distinct_ips(link.id),
        "clicks_today": await store.count_visits(link.id, since=today),
        "clicks_this_week": await store.count_visits(link.id, since=week_start),
        "clicks_this_month": await store.count_visits(link.id, since=month_start),
        "first_clicked_at": link.first_clicked_at,
        "last_clicked_at": link.last_clicked_at,
        "top_countries": await store.top_values(link.id, ("country", "country_code")),
        "top_browsers": await store.top_values(link.id, ("browser",)),
        "top_platforms": await store.top_values(link.id, ("platform",)),
        "device_types": await store.top_values(link.id, ("device_type",), limit=None),
    }


def rollup_to_dict(row: ShortLinkAnalytics, include_utm: bool) -> dict[str, Any]:
    data: dict[str, Any] = {
        "date": row.date,
        "total_clicks": row.total_clicks,
        "unique_clicks": row.unique_clicks,
        "unique_visitors": row.unique_visitors,
    }
    for column in BREAKDOWN_COLUMNS:
        if column in HIDDEN_UTM_COLUMNS and not include_utm:
            continue
        data[column] = getattr(row, column) or {}
    return data


async def daily_series(
    store: SqlAlchemyStore,
    link: ShortLink,
    start: date,
    end: date,
    *,
    include_hidden: bool = False,
) -> list[dict[str, Any]]:
    """Rollups for ``start..end`` inclusive.

    UTM breakdowns of a link with ``utm_hidden`` are tracked but only
    surfaced when ``include_hidden`` is set.
    """
    include_utm = include_hidden or not link.utm_hidden
    rows = await store.get_daily_analytics(link.id, start, end)
    return [rollup_to_dict(row, include_utm) for row in rows]
