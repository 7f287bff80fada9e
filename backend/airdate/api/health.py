"""Health and system status endpoints."""

from fastapi import APIRouter, Request
from datetime import datetime, timezone

from airdate.config import settings

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Service health check. Reports integration status."""
    store = getattr(request.app.state, "store", None)
    engine = getattr(request.app.state, "sync_engine", None)
    return {
        "status": "ok",
        "version": "0.1.0",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "integrations": {
            "tmdb": settings.has_tmdb,
            "cloud": settings.has_cloud,
        },
        "library_size": len(store.tracked_items()) if store else 0,
        "sync_running": bool(engine and engine.is_running),
    }


@router.get("/health/catalog")
async def catalog_check(request: Request):
    """Probe the TMDB API with the configured key."""
    catalog = request.app.state.catalog
    return {"tmdb": {"configured": settings.has_tmdb, "reachable": await catalog.test_connection()}}
