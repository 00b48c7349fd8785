"""LinkManager tests against the SQLite store."""

from dataclasses import dataclass
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest
from sqlalchemy.exc import OperationalError

from shortlinks.core.exceptions import (
    CredentialError,
    DuplicateKeyError,
    InaccessibleError,
    KeyExhaustionError,
    NotFoundError,
    StoreUnavailableError,
)
from shortlinks.models.link import ShortLink
from shortlinks.services.link_manager import (
    INSERT_ATTEMPTS,
    EntityRef,
    LinkDefaults,
    LinkManager,
    LinkSpec,
    ManagerConfig,
    UtmConfig,
)
from shortlinks.services.qr_code import QrOptions
from shortlinks.services.store import SqlAlchemyStore
from shortlinks.services.visit_recorder import RequestContext


@dataclass
class Article:
    title: str
    slug: str

    def get_key_seed(self) -> str:
        return self.title

    def get_default_destination(self) -> str:
        return f"https://blog.example.com/{self.slug}"


class FakeRenderer:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.rendered: list[str] = []

    def render(self, url: str, options: QrOptions) -> bytes:
        if self.fail:
            raise RuntimeError("renderer exploded")
        self.rendered.append(url)
        return b"<svg/>"


class FakeQrStorage:
    def __init__(self):
        self.saved: dict[str, bytes] = {}

    def save(self, link_key: str, fmt: str, body: bytes) -> str:
        path = f"qr-codes/{link_key}.{fmt}"
        self.saved[path] = body
        return path

    def url(self, key: str) -> str:
        return f"https://cdn.example.com/{key}"


async def test_scenario_click_limit(manager, recorder):
    link = await manager.create(LinkSpec(destination_url="https://example.com", key="abc123"))
    assert link.key == "abc123"
    assert link.password_protected is False
    assert link.expires_at is None
    assert manager.is_accessible(link)

    link = await manager.update(link, {"click_limit": 1})
    await recorder.record(link, RequestContext(ip="203.0.113.7"))

    assert link.clicks_count == 1
    assert not manager.is_accessible(link)
    with pytest.raises(InaccessibleError) as exc_info:
        await manager.resolve("abc123")
    assert exc_info.value.reason == "limit_reached"


async def test_create_applies_defaults(manager, clock):
    link = await manager.create(LinkSpec(destination_url="https://example.com"))
    assert len(link.key) == 6
    assert link.track_visits is True
    assert link.track_geo is False
    assert link.redirect_status_code == 302
    assert link.activated_at == clock.now()
    assert link.created_at == clock.now()


async def test_create_with_explicit_defaults(manager):
    defaults = LinkDefaults(track_ip_address=False, redirect_status_code=301)
    link = await manager.create(
        LinkSpec(destination_url="https://example.com", track_referer=False), defaults
    )
    assert link.track_ip_address is False
    assert link.track_referer is False
    assert link.redirect_status_code == 301


async def test_create_expires_in_days(manager, clock):
    link = await manager.create(LinkSpec(destination_url="https://example.com", expires_in_days=7))
    assert link.expires_at == clock.now() + timedelta(days=7)


async def test_default_expiry_from_config(store, link_cache, hasher, clock):
    manager = LinkManager(
        store, link_cache, hasher, config=ManagerConfig(default_expiry_days=30), clock=clock
    )
    link = await manager.create(LinkSpec(destination_url="https://example.com"))
    assert link.expires_at == clock.now() + timedelta(days=30)


async def test_duplicate_custom_key(manager):
    await manager.create(LinkSpec(destination_url="https://example.com", key="promo"))
    with pytest.raises(DuplicateKeyError):
        await manager.create(LinkSpec(destination_url="https://other.example.com", key="promo"))


async def test_deleted_key_is_never_reissued(manager):
    link = await manager.create(LinkSpec(destination_url="https://example.com", key="gone"))
    await manager.delete(link)

    assert await manager.find_by_key("gone") is None
    with pytest.raises(DuplicateKeyError):
        await manager.create(LinkSpec(destination_url="https://example.com", key="gone"))


async def test_password_is_hashed_and_verified(manager):
    link = await manager.create(
        LinkSpec(destination_url="https://example.com", password="s3cret")
    )
    assert link.password_protected is True
    assert link.password != "s3cret"
    assert manager.verify_password(link, "s3cret")
    assert not manager.verify_password(link, "wrong")
    assert not manager.verify_password(link, None)

    with pytest.raises(CredentialError):
        manager.check_password(link, "wrong")


async def test_unprotected_link_accepts_any_password(manager):
    link = await manager.create(LinkSpec(destination_url="https://example.com"))
    assert manager.verify_password(link, None)
    assert manager.verify_password(link, "anything")


async def test_find_by_key_populates_cache(manager, cache, link_cache):
    link = await manager.create(LinkSpec(destination_url="https://example.com", key="cached"))
    assert link_cache.key_for("cached") not in cache.data

    found = await manager.find_by_key("cached")
    assert found.id == link.id
    assert link_cache.key_for("cached") in cache.data

    hit = await manager.find_by_key("cached")
    assert hit.id == link.id
    assert hit.destination_url == "https://example.com"


async def test_get_by_key_missing(manager):
    with pytest.raises(NotFoundError):
        await manager.get_by_key("nope")


async def test_update_invalidates_cache(manager, cache, link_cache):
    link = await manager.create(LinkSpec(destination_url="https://example.com", key="edit-me"))
    await manager.find_by_key("edit-me")
    assert link_cache.key_for("edit-me") in cache.data

    updated = await manager.update(link, {"destination_url": "https://new.example.com"})
    assert updated.destination_url == "https://new.example.com"
    assert link_cache.key_for("edit-me") not in cache.data


async def test_update_password_removal(manager):
    link = await manager.create(
        LinkSpec(destination_url="https://example.com", password="s3cret")
    )
    link = await manager.update(link, {"password": None})
    assert link.password_protected is False
    assert link.password is None


async def test_expired_link_is_rejected(manager, clock):
    await manager.create(
        LinkSpec(destination_url="https://example.com", key="soon", expires_in_days=1)
    )
    clock.advance(days=1)
    assert (await manager.resolve("soon")).key == "soon"

    clock.advance(seconds=1)
    with pytest.raises(InaccessibleError) as exc_info:
        await manager.resolve("soon")
    assert exc_info.value.reason == "expired"


async def test_short_url(manager):
    link = ShortLink(key="abc123")
    assert manager.get_short_url(link) == "https://sho.rt/s/abc123"

    link.custom_domain = "https://go.brand.com/"
    assert manager.get_short_url(link) == "https://go.brand.com/s/abc123"


async def test_destination_url_merges_utm_with_existing_query(manager):
    link = ShortLink(destination_url="https://x.com/a?b=1", utm_parameters={"utm_source": "news"})
    url = manager.get_destination_url(link)

    assert url.startswith("https://x.com/a?b=1&")
    query = parse_qs(urlparse(url).query)
    assert query["b"] == ["1"]
    assert query["utm_source"] == ["news"]
    assert query["utm_medium"] == ["short-link"]


async def test_destination_url_extra_params_win(manager):
    link = ShortLink(destination_url="https://x.com/", utm_parameters={"utm_source": "news"})
    url = manager.get_destination_url(link, {"utm_source": "override", "ref": "qr"})
    query = parse_qs(urlparse(url).query)
    assert query["utm_source"] == ["override"]
    assert query["ref"] == ["qr"]
    assert "?" in url and "&" in url


async def test_destination_url_without_utm(store, link_cache, hasher, clock):
    manager = LinkManager(
        store,
        link_cache,
        hasher,
        config=ManagerConfig(utm=UtmConfig(enabled=False)),
        clock=clock,
    )
    link = ShortLink(destination_url="https://x.com/a", utm_parameters={"utm_source": "news"})
    assert manager.get_destination_url(link) == "https://x.com/a"


async def test_create_for_linkable(manager):
    article = Article(title="BlogPost", slug="hello")
    ref = EntityRef(kind="article", id="42")

    link = await manager.create_for(article, ref)
    assert link.key.startswith("blog-post-")
    assert len(link.key) == len("blog-post-") + 4
    assert link.destination_url == "https://blog.example.com/hello"
    assert (link.attached_kind, link.attached_id) == ("article", "42")

    again = await manager.create_for(article, ref)
    assert again.id == link.id


async def test_owner_is_stored_as_tagged_reference(manager):
    link = await manager.create(
        LinkSpec(destination_url="https://example.com", owner=EntityRef("user", "u-1"))
    )
    assert (link.owner_kind, link.owner_id) == ("user", "u-1")


async def test_qr_code_generated_on_create(store, link_cache, hasher, clock):
    storage = FakeQrStorage()
    renderer = FakeRenderer()
    manager = LinkManager(
        store,
        link_cache,
        hasher,
        config=ManagerConfig(domain="https://sho.rt"),
        clock=clock,
        qr_renderer=renderer,
        qr_storage=storage,
    )
    link = await manager.create(LinkSpec(destination_url="https://example.com", key="qr1"))

    assert renderer.rendered == ["https://sho.rt/s/qr1"]
    assert link.qr_code_path == "qr-codes/qr1.svg"
    assert storage.saved["qr-codes/qr1.svg"] == b"<svg/>"


async def test_qr_failure_does_not_block_creation(store, link_cache, hasher, clock, caplog):
    manager = LinkManager(
        store,
        link_cache,
        hasher,
        clock=clock,
        qr_renderer=FakeRenderer(fail=True),
        qr_storage=FakeQrStorage(),
    )
    link = await manager.create(LinkSpec(destination_url="https://example.com", key="qr2"))

    assert link.key == "qr2"
    assert link.qr_code_path is None
    assert "QR code generation failed for link qr2" in caplog.text


class RacingStore(SqlAlchemyStore):
    """Loses the first ``losses`` inserts to a concurrent writer."""

    def __init__(self, session, losses: int):
        super().__init__(session)
        self.losses = losses
        self.attempted: list[str] = []

    async def insert_link(self, fields):
        self.attempted.append(fields["key"])
        if self.losses > 0:
            self.losses -= 1
            raise DuplicateKeyError(fields["key"])
        return await super().insert_link(fields)


class BrokenSession:
    info: dict = {}

    async def execute(self, *args, **kwargs):
        raise OperationalError("SELECT", {}, ConnectionRefusedError("db down"))


def manager_on(store, link_cache, hasher, clock) -> LinkManager:
    return LinkManager(
        store,
        link_cache,
        hasher,
        config=ManagerConfig(domain="https://sho.rt", prefix="s"),
        clock=clock,
    )


async def test_lost_insert_race_draws_a_new_key(db, link_cache, hasher, clock):
    store = RacingStore(db, losses=1)
    manager = manager_on(store, link_cache, hasher, clock)

    link = await manager.create(LinkSpec(destination_url="https://example.com"))

    assert len(store.attempted) == 2
    assert link.key == store.attempted[-1]
    assert await store.find_link_by_key(link.key) is not None


async def test_insert_races_exhaust_retries(db, link_cache, hasher, clock):
    store = RacingStore(db, losses=INSERT_ATTEMPTS)
    manager = manager_on(store, link_cache, hasher, clock)

    with pytest.raises(KeyExhaustionError):
        await manager.create(LinkSpec(destination_url="https://example.com"))
    assert len(store.attempted) == INSERT_ATTEMPTS


async def test_custom_key_lost_race_is_not_retried(db, link_cache, hasher, clock):
    store = RacingStore(db, losses=1)
    manager = manager_on(store, link_cache, hasher, clock)

    with pytest.raises(DuplicateKeyError):
        await manager.create(LinkSpec(destination_url="https://example.com", key="mine"))
    assert store.attempted == ["mine"]


async def test_store_failure_is_not_reported_as_missing(link_cache, hasher, clock):
    manager = manager_on(SqlAlchemyStore(BrokenSession()), link_cache, hasher, clock)

    with pytest.raises(StoreUnavailableError):
        await manager.find_by_key("abc123")
    with pytest.raises(StoreUnavailableError):
        await manager.resolve("abc123")


async def test_long_multibyte_password(manager):
    password = "é" * 40
    link = await manager.create(
        LinkSpec(destination_url="https://example.com", key="accents", password=password)
    )
    assert link.password_protected is True
    assert manager.verify_password(link, password)
    assert not manager.verify_password(link, "é" * 39)

    link = await manager.update(link, {"password": "ü" * 64})
    assert manager.verify_password(link, "ü" * 64)
