"""Sync endpoints: status, explicit flush, reload, and a status event stream."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import StreamingResponse

from src.dependencies import CurrentSession
from src.models.apps import ReloadRead, StatusEventRead, SyncStatusRead
from src.tracker.base import (
    RecordNotFoundError,
    RecordValidationError,
    TransientError,
    UnsavedChangesError,
    utc_now,
)

router = APIRouter(prefix="/sync", tags=["sync"])
logger = logging.getLogger("releaseboard.sync")


@router.get("/status", response_model=SyncStatusRead)
async def sync_status(session: CurrentSession) -> Any:
    return SyncStatusRead.from_status(session.status())


@router.post("/flush", response_model=SyncStatusRead)
async def flush(session: CurrentSession) -> Any:
    """Write pending edits now instead of waiting for the quiescence window."""
    status = await session.flush_now()
    return SyncStatusRead.from_status(status)


@router.post("/reload", response_model=ReloadRead)
async def reload(
    session: CurrentSession,
    force: bool = Query(default=False),
) -> Any:
    """Refetch the collection from the store, replacing in-memory state."""
    try:
        loaded = await session.reload(force=force)
    except UnsavedChangesError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except RecordValidationError as exc:
        logger.warning("Reload rejected, keeping current state: %s", exc)
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except TransientError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return ReloadRead(loaded=loaded, sync=SyncStatusRead.from_status(session.status()))


@router.get("/events")
async def sync_events(request: Request, session: CurrentSession) -> StreamingResponse:
    """Server-sent events: one ``status`` event per scheduler transition."""

    async def stream() -> AsyncIterator[str]:
        status = session.status()
        yield _sse(StatusEventRead(state=status.state, pending=status.pending, at=utc_now()))
        async for event in session.status_changes():
            if await request.is_disconnected():
                break
            yield _sse(StatusEventRead.from_event(event))

    return StreamingResponse(
        stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


def _sse(event: StatusEventRead) -> str:
    return f"event: status\ndata: {event.model_dump_json()}\n\n"
