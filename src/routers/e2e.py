"""E2E results endpoint. Reads the published apps.json, not the live store."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException

from src.dependencies import AppSettings
from src.models.apps import E2ESummaryRead
from src.tracker.base import RecordNotFoundError, RecordValidationError
from src.tracker.e2e import load_e2e_results

router = APIRouter(prefix="/e2e", tags=["e2e"])


@router.get("", response_model=E2ESummaryRead)
async def e2e_results(settings: AppSettings) -> Any:
    try:
        summary = load_e2e_results(settings.e2e_results_path)
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except RecordValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return E2ESummaryRead.from_summary(summary)
