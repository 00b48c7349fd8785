"""FastAPI dependency chain: session → store → link services, bearer → owner."""

from collections.abc import AsyncGenerator

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from shortlinks.core.config import settings
from shortlinks.core.security import decode_access_token
from shortlinks.db.session import async_session_factory
from shortlinks.services.clock import SystemClock
from shortlinks.services.credentials import BcryptHasher
from shortlinks.services.link_cache import LinkCache
from shortlinks.services.link_manager import (
    EntityRef,
    LinkDefaults,
    LinkManager,
    ManagerConfig,
)
from shortlinks.services.qr_code import SegnoRenderer
from shortlinks.services.storage import S3QrStorage
from shortlinks.services.store import STALE_LINK_KEYS, SqlAlchemyStore
from shortlinks.services.visit_recorder import TrackingConfig, VisitRecorder

bearer_scheme = HTTPBearer(auto_error=False)

_hasher = BcryptHasher()
_clock = SystemClock()


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async DB session. Commits on success, rolls back on error.

    Link keys the request marked stale are dropped from the cache once more
    after the commit.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        stale = session.info.pop(STALE_LINK_KEYS, set())
    if stale:
        link_cache = get_link_cache(request)
        for key in stale:
            await link_cache.invalidate(key)


async def get_store(db: AsyncSession = Depends(get_db)) -> SqlAlchemyStore:
    return SqlAlchemyStore(db)


def get_link_cache(request: Request) -> LinkCache:
    """Link cache over the cache client the application opened at startup."""
    return LinkCache(request.app.state.cache, settings.CACHE_PREFIX, settings.CACHE_TTL)


async def get_link_manager(
    store: SqlAlchemyStore = Depends(get_store),
    link_cache: LinkCache = Depends(get_link_cache),
) -> LinkManager:
    qr_enabled = settings.QR_ENABLED and bool(settings.S3_BUCKET)
    return LinkManager(
        store,
        link_cache,
        _hasher,
        config=ManagerConfig.from_settings(settings),
        defaults=LinkDefaults.from_settings(settings),
        clock=_clock,
        qr_renderer=SegnoRenderer() if qr_enabled else None,
        qr_storage=S3QrStorage() if qr_enabled else None,
    )


async def get_visit_recorder(
    request: Request,
    store: SqlAlchemyStore = Depends(get_store),
    link_cache: LinkCache = Depends(get_link_cache),
) -> VisitRecorder:
    return VisitRecorder(
        store,
        link_cache,
        config=TrackingConfig.from_settings(settings),
        clock=_clock,
        geo=getattr(request.app.state, "geo", None),
    )


async def get_current_owner(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> EntityRef:
    """Verify the Bearer token and return the caller as a link owner reference."""
    if credentials is None:
        raise HTTPException(status_code=401, detail="Missing authorization header")

    try:
        claims = decode_access_token(credentials.credentials)
    except JWTError as e:
        raise HTTPException(status_code=401, detail=f"Invalid token: {e}") from e

    sub = claims.get("sub")
    if not sub:
        raise HTTPException(status_code=401, detail="Token missing sub claim")
    return EntityRef(kind="user", id=sub)
