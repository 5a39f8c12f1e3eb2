from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from dbvault.api.schemas.history import HistoryEntryResponse, HistoryListResponse
from dbvault.db.repositories import HistoryRepository

router = APIRouter(prefix="/history", tags=["history"])


def get_history_repository(request: Request) -> HistoryRepository:
    return request.app.state.services.history


@router.get("", response_model=HistoryListResponse)
def list_history(
    schedule_id: str | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    repository: HistoryRepository = Depends(get_history_repository),
) -> HistoryListResponse:
    entries = repository.list(schedule_id=schedule_id, limit=limit)
    return HistoryListResponse(items=[HistoryEntryResponse.model_validate(entry.model_dump()) for entry in entries])
