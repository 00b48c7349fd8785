"""Shared test fixtures.

Tests run against a throwaway SQLite file (aiosqlite) so the store's
atomic statements execute for real; no external services are needed.
"""

import os
import tempfile
from collections.abc import AsyncGenerator, Iterator
from datetime import UTC, datetime
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession

_DB_DIR = tempfile.mkdtemp(prefix="shortlinks-tests-")
_DB_PATH = Path(_DB_DIR) / "shortlinks.db"

os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-jwt")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_DB_PATH}")
os.environ.setdefault("CACHE_ENABLED", "false")
os.environ.setdefault("QR_ENABLED", "false")
os.environ.setdefault("TRACK_GEO", "false")
os.environ.setdefault("SHORT_DOMAIN", "https://sho.rt")

import shortlinks.models  # noqa: E402, F401
from shortlinks.db.base import Base  # noqa: E402
from shortlinks.db.session import async_session_factory  # noqa: E402
from shortlinks.db.session import engine as app_engine  # noqa: E402
from shortlinks.main import app  # noqa: E402
from shortlinks.services.clock import FrozenClock  # noqa: E402
from shortlinks.services.credentials import BcryptHasher  # noqa: E402
from shortlinks.services.link_cache import LinkCache  # noqa: E402
from shortlinks.services.link_manager import LinkManager, ManagerConfig  # noqa: E402
from shortlinks.services.store import SqlAlchemyStore  # noqa: E402
from shortlinks.services.visit_recorder import VisitRecorder  # noqa: E402

_sync_engine = create_engine(f"sqlite:///{_DB_PATH}")


class DictCache:
    """In-memory stand-in for the Redis cache."""

    def __init__(self):
        self.data: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def set(self, key: str, value: str, ttl: int) -> None:
        self.data[key] = value

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)

    async def clear(self, prefix: str) -> int:
        keys = [k for k in self.data if k.startswith(f"{prefix}:")]
        for k in keys:
            del self.data[k]
        return len(keys)

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        return None


@pytest.fixture(scope="session", autouse=True)
def schema() -> Iterator[None]:
    Base.metadata.create_all(_sync_engine)
    yield
    Base.metadata.drop_all(_sync_engine)
    _sync_engine.dispose()


@pytest.fixture(autouse=True)
def clean_tables() -> Iterator[None]:
    """Empty every table after each test; data committed by the app persists otherwise."""
    yield
    with _sync_engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    """Async DB session; uncommitted work is rolled back after each test."""
    async with async_session_factory() as session:
        yield session
        await session.rollback()
    await app_engine.dispose()


@pytest.fixture
def store(db: AsyncSession) -> SqlAlchemyStore:
    return SqlAlchemyStore(db)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 3, 10, 12, 0, tzinfo=UTC))


@pytest.fixture
def cache() -> DictCache:
    return DictCache()


@pytest.fixture
def link_cache(cache: DictCache) -> LinkCache:
    return LinkCache(cache, "url_shortener", 3600)


@pytest.fixture
def hasher() -> BcryptHasher:
    # Minimum cost keeps the suite fast.
    return BcryptHasher(rounds=4)


@pytest.fixture
def manager(
    store: SqlAlchemyStore, link_cache: LinkCache, hasher: BcryptHasher, clock: FrozenClock
) -> LinkManager:
    return LinkManager(
        store,
        link_cache,
        hasher,
        config=ManagerConfig(domain="https://sho.rt", prefix="s"),
        clock=clock,
    )


@pytest.fixture
def recorder(store: SqlAlchemyStore, link_cache: LinkCache, clock: FrozenClock) -> VisitRecorder:
    return VisitRecorder(store, link_cache, clock=clock)


@pytest.fixture
async def client(cache: DictCache) -> AsyncGenerator[AsyncClient, None]:
    """HTTP test client for the FastAPI app.

    ASGITransport does not run the lifespan, so the state it would set up is
    assigned here.
    """
    app.state.cache = cache
    app.state.geo = None
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    await app_engine.dispose()

