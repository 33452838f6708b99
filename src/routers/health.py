"""Health check endpoint — public, no auth required."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Request

from src.config import get_settings
from src.services.supabase import ping

router = APIRouter(tags=["system"])


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    Also reports database reachability and whether auto-sync is running.
    """
    settings = get_settings()
    db_ok = await ping()
    scheduler = getattr(request.app.state, "auto_sync", None)

    return {
        "status": "healthy" if db_ok else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "database": "connected" if db_ok else "unreachable",
        "auto_sync": "running" if scheduler is not None and scheduler.running else "stopped",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
