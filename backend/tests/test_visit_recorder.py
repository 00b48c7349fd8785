"""Visit recording: gating, counters, concurrency."""

import asyncio
from datetime import UTC, datetime

from sqlalchemy import select

from shortlinks.db.session import async_session_factory
from shortlinks.models.link import ShortLink
from shortlinks.models.visit import ShortLinkVisit
from shortlinks.services.clock import FrozenClock
from shortlinks.services.geo import Location
from shortlinks.services.ip_hash import hash_ip
from shortlinks.services.link_cache import LinkCache
from shortlinks.services.link_manager import LinkSpec
from shortlinks.services.store import SqlAlchemyStore
from shortlinks.services.visit_recorder import (
    RequestContext,
    TrackingConfig,
    VisitRecorder,
    describe_user_agent,
    device_type,
    referer_domain,
)

CHROME_MAC = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
SAFARI_IPHONE = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)


class FakeGeo:
    def __init__(self, location: Location | None = None, fail: bool = False):
        self.location = location
        self.fail = fail

    async def lookup(self, ip: str) -> Location | None:
        if self.fail:
            raise ConnectionError("geo service down")
        return self.location


def full_context(**overrides) -> RequestContext:
    values = {
        "ip": "203.0.113.7",
        "user_agent": CHROME_MAC,
        "referer": "https://news.example.org/story?id=9",
        "query_params": {"utm_source": "newsletter", "utm_campaign": "spring"},
        "language": "en-US",
        "timezone": "Europe/Berlin",
        "session_id": "sess-1",
    }
    values.update(overrides)
    return RequestContext(**values)


def test_device_type():
    assert device_type(True, False) == "mobile"
    assert device_type(False, True) == "tablet"
    assert device_type(False, False) == "desktop"


def test_describe_user_agent():
    info = describe_user_agent(SAFARI_IPHONE)
    assert info["device_type"] == "mobile"
    assert info["is_mobile"] is True
    assert info["platform"] == "iOS"
    assert info["browser"] == "Mobile Safari"


def test_referer_domain():
    assert referer_domain("https://news.example.org/story?id=9") == "news.example.org"
    assert referer_domain("not a url") is None
    assert referer_domain("http://[broken") is None


async def test_record_writes_visit_and_counts(manager, recorder, db, clock):
    link = await manager.create(LinkSpec(destination_url="https://example.com"))

    visit = await recorder.record(link, full_context())

    assert visit is not None
    assert visit.ip_address == "203.0.113.7"
    assert visit.browser == "Chrome"
    assert visit.referer_domain == "news.example.org"
    assert visit.utm_source == "newsletter"
    assert visit.utm_campaign == "spring"
    assert visit.language == "en-US"
    assert visit.visited_at == clock.now()
    assert link.clicks_count == 1
    assert link.last_clicked_at == clock.now()


async def test_oversized_request_values_are_clipped(manager, recorder):
    link = await manager.create(LinkSpec(destination_url="https://example.com"))

    visit = await recorder.record(
        link,
        full_context(
            ip="9" * 100,
            referer="http://[broken",
            timezone="T" * 200,
            session_id="s" * 400,
            language="x" * 50,
        ),
    )

    assert len(visit.ip_address) == 64
    assert len(visit.timezone) == 64
    assert len(visit.session_id) == 255
    assert len(visit.language) == 10
    assert visit.referer_url == "http://[broken"
    assert visit.referer_domain is None
    assert link.clicks_count == 1


async def test_first_clicked_at_is_kept(manager, recorder, clock):
    link = await manager.create(LinkSpec(destination_url="https://example.com"))
    first = clock.now()

    await recorder.record(link, full_context())
    clock.advance(minutes=5)
    await recorder.record(link, full_context())

    assert link.clicks_count == 2
    assert link.first_clicked_at == first
    assert link.last_clicked_at == clock.now()


async def test_untracked_link_records_nothing(manager, recorder, db):
    link = await manager.create(
        LinkSpec(destination_url="https://example.com", track_visits=False)
    )
    assert await recorder.record(link, full_context()) is None
    assert link.clicks_count == 0

    result = await db.execute(select(ShortLinkVisit).where(ShortLinkVisit.short_link_id == link.id))
    assert result.first() is None


async def test_column_groups_follow_flags(manager, recorder):
    link = await manager.create(
        LinkSpec(
            destination_url="https://example.com",
            track_ip_address=False,
            track_user_agent=False,
            track_referer=False,
            utm_hidden=False,
        )
    )
    visit = await recorder.record(link, full_context())

    assert visit.ip_address is None
    assert visit.user_agent is None
    assert visit.browser is None
    assert visit.language is None
    assert visit.referer_url is None
    assert visit.utm_source is None
    # Counting does not depend on the column flags.
    assert link.clicks_count == 1


async def test_hidden_utm_needs_system_switch(manager, store, link_cache, clock):
    recorder = VisitRecorder(
        store, link_cache, config=TrackingConfig(utm_hidden=False), clock=clock
    )
    link = await manager.create(LinkSpec(destination_url="https://example.com"))
    visit = await recorder.record(link, full_context())
    assert visit.utm_source is None


async def test_ip_hashing(manager, store, link_cache, clock):
    recorder = VisitRecorder(
        store,
        link_cache,
        config=TrackingConfig(hash_ip=True, ip_hash_salt="pepper"),
        clock=clock,
    )
    link = await manager.create(LinkSpec(destination_url="https://example.com"))
    visit = await recorder.record(link, full_context())
    assert visit.ip_address == hash_ip("203.0.113.7", "pepper")
    assert visit.ip_address != "203.0.113.7"


async def test_geo_fields(manager, store, link_cache, clock):
    geo = FakeGeo(Location(country="Germany", country_code="DE", city="Berlin"))
    recorder = VisitRecorder(
        store, link_cache, config=TrackingConfig(geo_enabled=True), clock=clock, geo=geo
    )
    link = await manager.create(LinkSpec(destination_url="https://example.com", track_geo=True))
    visit = await recorder.record(link, full_context())
    assert (visit.country, visit.country_code, visit.city) == ("Germany", "DE", "Berlin")


async def test_geo_failure_still_records(manager, store, link_cache, clock, caplog):
    recorder = VisitRecorder(
        store,
        link_cache,
        config=TrackingConfig(geo_enabled=True),
        clock=clock,
        geo=FakeGeo(fail=True),
    )
    link = await manager.create(LinkSpec(destination_url="https://example.com", track_geo=True))
    visit = await recorder.record(link, full_context())

    assert visit is not None
    assert visit.country is None
    assert link.clicks_count == 1
    assert "Geo lookup for 203.0.113.7 failed" in caplog.text


async def test_record_invalidates_cached_link(manager, recorder, cache, link_cache):
    link = await manager.create(LinkSpec(destination_url="https://example.com", key="hot"))
    await manager.find_by_key("hot")
    assert link_cache.key_for("hot") in cache.data

    await recorder.record(link, full_context())
    assert link_cache.key_for("hot") not in cache.data


async def test_concurrent_records_do_not_lose_clicks():
    clock = FrozenClock(datetime(2026, 3, 10, 12, 0, tzinfo=UTC))
    async with async_session_factory() as session:
        link = ShortLink(key="busy", destination_url="https://example.com", created_at=clock.now())
        session.add(link)
        await session.commit()

    async def one_click(n: int) -> None:
        async with async_session_factory() as session:
            recorder = VisitRecorder(
                SqlAlchemyStore(session), LinkCache(None, "url_shortener", 60), clock=clock
            )
            await recorder.record(link, RequestContext(ip=f"198.51.100.{n}"))
            await session.commit()

    clicks = 10
    await asyncio.gather(*(one_click(n) for n in range(clicks)))

    async with async_session_factory() as session:
        stored = await session.get(ShortLink, link.id)
        assert stored.clicks_count == clicks
        result = await session.execute(
            select(ShortLinkVisit).where(ShortLinkVisit.short_link_id == link.id)
        )
        assert len(result.scalars().all()) == clicks
