"""Health and readiness probes."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict:
    """Liveness probe -- always returns OK if the process is running."""
    return {"status": "ok"}


@router.get("/ready")
async def ready(request: Request) -> JSONResponse:
    """Readiness probe -- checks that the session manager is up.

    Returns HTTP 200 with ``{"status": "ready", "sessions": n}`` once the
    lifespan has created the manager, or HTTP 503 with
    ``{"status": "not_ready"}`` otherwise.
    """
    manager = getattr(request.app.state, "sessions", None)
    if manager is not None:
        return JSONResponse(content={"status": "ready", "sessions": len(manager)}, status_code=200)
    return JSONResponse(content={"status": "not_ready"}, status_code=503)
