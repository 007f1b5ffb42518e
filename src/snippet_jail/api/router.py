"""Route aggregation -- combines all API sub-routers into a single router."""

from fastapi import APIRouter

from snippet_jail.api.health import router as health_router
from snippet_jail.api.sessions import router as sessions_router

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(sessions_router)
