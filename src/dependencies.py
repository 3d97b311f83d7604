"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from src.config import Settings, get_settings
from src.tracker.sync.session import SyncSession


async def get_session(request: Request) -> SyncSession:
    """Return the sync session created by the app lifespan."""
    session: SyncSession | None = getattr(request.app.state, "sync_session", None)
    if session is None or not session.started:
        raise HTTPException(status_code=503, detail="Sync session not ready")
    return session


def get_app_settings(request: Request) -> Settings:
    """Settings the app was created with (falls back to the environment)."""
    return getattr(request.app.state, "settings", None) or get_settings()


# Annotated shortcuts for route signatures
CurrentSession = Annotated[SyncSession, Depends(get_session)]
AppSettings = Annotated[Settings, Depends(get_app_settings)]
