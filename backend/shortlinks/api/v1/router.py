"""Aggregate all v1 sub-routers."""

from fastapi import APIRouter

from shortlinks.api.v1.health import router as health_router
from shortlinks.api.v1.links import router as links_router

api_v1_router = APIRouter()

api_v1_router.include_router(health_router, tags=["health"])
api_v1_router.include_router(links_router, prefix="/links", tags=["links"])
