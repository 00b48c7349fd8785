"""Visit tracking pipeline.

A visit row is assembled column group by column group, each group gated by
its own tracking flag on the link. After the row is written the link's
counters move in one atomic UPDATE and the cached copy of the link is dropped.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

import user_agents
from sqlalchemy.orm.attributes import set_committed_value

from shortlinks.core.config import Settings
from shortlinks.models.link import ShortLink
from shortlinks.models.visit import ShortLinkVisit
from shortlinks.services.clock import Clock, SystemClock
from shortlinks.services.geo import GeoLookup
from shortlinks.services.ip_hash import hash_ip
from shortlinks.services.link_cache import LinkCache
from shortlinks.services.store import SqlAlchemyStore

logger = logging.getLogger(__name__)

UTM_FIELDS = ("utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content")


@dataclass
class RequestContext:
    """What the HTTP layer knows about an incoming redirect request."""

    ip: str | None = None
    user_agent: str | None = None
    referer: str | None = None
    query_params: dict[str, str] = field(default_factory=dict)
    language: str | None = None
    timezone: str | None = None
    session_id: str | None = None


@dataclass(frozen=True)
class TrackingConfig:
    geo_enabled: bool = False
    utm_hidden: bool = True
    hash_ip: bool = False
    ip_hash_salt: str = ""
    geo_timeout: float = 2.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "TrackingConfig":
        return cls(
            geo_enabled=settings.TRACK_GEO,
            utm_hidden=settings.UTM_HIDDEN,
            hash_ip=settings.HASH_IP_ADDRESSES,
            ip_hash_salt=settings.IP_HASH_SALT,
            geo_timeout=settings.GEO_TIMEOUT_SECONDS,
        )


def device_type(is_mobile: bool, is_tablet: bool) -> str:
    if is_mobile:
        return "mobile"
    if is_tablet:
        return "tablet"
    return "desktop"


def _known(value: str | None, limit: int) -> str | None:
    """Drop the parser's "Other" placeholder and clip to the column width."""
    if not value or value == "Other":
        return None
    return value[:limit]


def describe_user_agent(raw: str) -> dict[str, Any]:
    ua = user_agents.parse(raw)
    return {
        "device_type": device_type(ua.is_mobile, ua.is_tablet),
        "device_name": _known(ua.device.family, 100),
        "platform": _known(ua.os.family, 100),
        "platform_version": _known(ua.os.version_string, 50),
        "browser": _known(ua.browser.family, 100),
        "browser_version": _known(ua.browser.version_string, 50),
        "is_bot": ua.is_bot,
        "is_mobile": ua.is_mobile,
        "is_tablet": ua.is_tablet,
    }


def _clip(value: str | None, size: int) -> str | None:
    return value[:size] if value else None


def referer_domain(url: str) -> str | None:
    try:
        host = urlparse(url).hostname
    except ValueError:
        # Unbalanced IPv6 brackets and the like; the raw referer is still kept.
        return None
    return host[:255] if host else None


class VisitRecorder:
    def __init__(
        self,
        store: SqlAlchemyStore,
        link_cache: LinkCache,
        *,
        config: TrackingConfig | None = None,
        clock: Clock | None = None,
        geo: GeoLookup | None = None,
    ):
        self.store = store
        self.link_cache = link_cache
        self.config = config or TrackingConfig()
        self.clock = clock or SystemClock()
        self.geo = geo

    async def record(self, link: ShortLink, ctx: RequestContext) -> ShortLinkVisit | None:
        if not link.track_visits:
            return None

        now = self.clock.now()
        fields = await self.build_visit(link, ctx)
        fields["visited_at"] = now
        visit = await self.store.insert_visit(fields)

        counters = await self.store.atomic_increment_clicks(link.id, now)
        set_committed_value(link, "clicks_count", counters.clicks_count)
        set_committed_value(link, "first_clicked_at", counters.first_clicked_at)
        set_committed_value(link, "last_clicked_at", counters.last_clicked_at)

        await self._drop_cached(link.key)
        return visit

    async def _drop_cached(self, key: str) -> None:
        await self.link_cache.invalidate(key)
        self.store.mark_stale(key)

    async def build_visit(self, link: ShortLink, ctx: RequestContext) -> dict[str, Any]:
        fields: dict[str, Any] = {"short_link_id": link.id}

        if link.track_ip_address and ctx.ip:
            if self.config.hash_ip:
                fields["ip_address"] = hash_ip(ctx.ip, self.config.ip_hash_salt)
            else:
                fields["ip_address"] = _clip(ctx.ip, 64)

        if link.track_user_agent:
            fields["user_agent"] = ctx.user_agent
            if ctx.user_agent:
                fields.update(describe_user_agent(ctx.user_agent))
            fields["language"] = _clip(ctx.language, 10)

        if link.track_referer and ctx.referer:
            fields["referer_url"] = ctx.referer
            fields["referer_domain"] = referer_domain(ctx.referer)

        # Both the link and the system must allow hidden UTM capture.
        if link.utm_hidden and self.config.utm_hidden:
            for name in UTM_FIELDS:
                fields[name] = ctx.query_params.get(name)

        if link.track_geo and self.config.geo_enabled and self.geo is not None and ctx.ip:
            fields.update(await self._locate(ctx.ip))

        if ctx.query_params:
            fields["query_parameters"] = dict(ctx.query_params)
        fields["timezone"] = _clip(ctx.timezone, 64)
        fields["session_id"] = _clip(ctx.session_id, 255)
        return fields

    async def _locate(self, ip: str) -> dict[str, Any]:
        try:
            location = await asyncio.wait_for(self.geo.lookup(ip), self.config.geo_timeout)
        except Exception:
            logger.warning(
                "Geo lookup for %s failed; recording visit without location", ip, exc_info=True
            )
            return {}
        if location is None:
            return {}
        return {
            "country": location.country,
            "country_code": location.country_code,
            "city": location.city,
            "region": location.region,
            "latitude": location.latitude,
            "longitude": location.longitude,
        }
