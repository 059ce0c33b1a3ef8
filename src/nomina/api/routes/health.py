"""Health check endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from nomina.core.exceptions import CacheError

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "healthy"}


@router.get("/ready")
def ready(request: Request):
    cache = request.app.state.cache
    if cache is not None and hasattr(cache, "ping"):
        try:
            cache.ping()
        except CacheError as exc:
            return JSONResponse(status_code=503, content={"status": "unavailable", "detail": str(exc)})
    return {"status": "ready"}
