"""Health check endpoint. Public, no auth required."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from src.config import get_settings

router = APIRouter(tags=["system"])
logger = logging.getLogger("releaseboard.health")


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Liveness check. Returns 200 if the API process is up.

    Reports ``degraded`` while the sync session is not loaded or the last
    flush failed.
    """
    settings = getattr(request.app.state, "settings", None) or get_settings()
    session = getattr(request.app.state, "sync_session", None)
    ready = session is not None and session.started
    sync: dict = {"state": None, "pending": 0, "last_error": None}
    if ready:
        status = session.status()
        sync = {
            "state": status.state.value,
            "pending": status.pending,
            "last_error": status.last_error,
        }

    healthy = ready and sync["last_error"] is None
    return {
        "status": "healthy" if healthy else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "backend": settings.storage_backend,
        "sync": sync,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
