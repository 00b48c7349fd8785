"""FastAPI application entry point."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from shortlinks.api.redirect import router as redirect_router
from shortlinks.api.v1.router import api_v1_router
from shortlinks.core.config import settings
from shortlinks.core.exceptions import (
    ProblemDetailError,
    ShortLinkError,
    http_exception_handler,
    problem_detail_handler,
    short_link_error_handler,
    validation_exception_handler,
)
from shortlinks.core.middleware.cors import get_cors_config
from shortlinks.core.middleware.request_id import RequestIdMiddleware
from shortlinks.db.session import engine
from shortlinks.services.cache import NullCache, RedisCache
from shortlinks.services.geo import HttpGeoLookup


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    if settings.CACHE_ENABLED:
        app.state.cache = RedisCache.from_url(
            settings.REDIS_URL, timeout=settings.CACHE_TIMEOUT_SECONDS
        )
    else:
        app.state.cache = NullCache()
    app.state.geo = (
        HttpGeoLookup(settings.GEO_LOOKUP_URL, timeout=settings.GEO_TIMEOUT_SECONDS)
        if settings.TRACK_GEO
        else None
    )
    yield
    await app.state.cache.aclose()
    await engine.dispose()


app = FastAPI(
    title="URL Shortener API",
    version="0.1.0",
    docs_url="/docs",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# Middleware (last added = first executed)
app.add_middleware(RequestIdMiddleware)
app.add_middleware(CORSMiddleware, **get_cors_config())

# Exception handlers (RFC 7807)
app.add_exception_handler(ProblemDetailError, problem_detail_handler)
app.add_exception_handler(ShortLinkError, short_link_error_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)

# Routes
app.include_router(api_v1_router, prefix="/api/v1")
app.include_router(
    redirect_router, prefix=f"/{settings.SHORT_PREFIX.strip('/')}", tags=["redirect"]
)
