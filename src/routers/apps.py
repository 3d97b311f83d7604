"""App endpoints: list with filters, read, edit, add."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Query

from src.dependencies import CurrentSession
from src.models.apps import AppCreate, AppListRead, AppRead, AppUpdate, SyncStatusRead
from src.models.base import ErrorDetail
from src.tracker.base import RecordNotFoundError, RecordValidationError
from src.tracker.filters import AppFilter, count_by_filter, filter_apps

router = APIRouter(prefix="/apps", tags=["apps"])


@router.get("", response_model=AppListRead)
async def list_apps(
    session: CurrentSession,
    filter: AppFilter = Query(default=AppFilter.ALL),
    q: str = Query(default="", max_length=200),
) -> Any:
    records = session.records()
    items = filter_apps(records, filter, q)
    return AppListRead(
        items=[AppRead.from_record(r) for r in items],
        total=len(items),
        counts=count_by_filter(records),
        sync=SyncStatusRead.from_status(session.status()),
    )


@router.get("/{app_id}", response_model=AppRead, responses={404: {"model": ErrorDetail}})
async def get_app(app_id: int, session: CurrentSession) -> Any:
    try:
        return AppRead.from_record(session.get(app_id))
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.patch(
    "/{app_id}",
    response_model=AppRead,
    responses={400: {"model": ErrorDetail}, 404: {"model": ErrorDetail}},
)
async def update_app(app_id: int, session: CurrentSession, body: AppUpdate) -> Any:
    patch = body.model_dump(exclude_unset=True)
    if not patch:
        raise HTTPException(status_code=400, detail="No fields to update")
    try:
        record = session.submit_edit(app_id, patch)
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except RecordValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return AppRead.from_record(record)


@router.post("", response_model=AppRead, status_code=201, responses={409: {"model": ErrorDetail}})
async def create_app(session: CurrentSession, body: AppCreate) -> Any:
    try:
        record = session.add_record(body.to_record())
    except RecordValidationError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return AppRead.from_record(record)
