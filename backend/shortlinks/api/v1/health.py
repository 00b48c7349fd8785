"""Health check endpoint."""

from fastapi import APIRouter, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from shortlinks.db.session import engine

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Check DB and cache connectivity."""
    db_status = "ok"
    cache_status = "disabled"

    # Check database
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError):
        db_status = "error"

    # Check cache
    ping = getattr(request.app.state.cache, "ping", None)
    if ping is not None:
        cache_status = "ok" if await ping() else "error"

    status = "ok" if db_status == "ok" and cache_status != "error" else "degraded"
    return {
        "status": status,
        "db": db_status,
        "cache": cache_status,
        "version": "0.1.0",
    }
