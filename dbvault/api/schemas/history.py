from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from dbvault.db.models import RunOrigin


class HistoryEntryResponse(BaseModel):
    id: str
    schedule_id: str
    schedule_name: str
    connection_profile_id: str
    database_name: str
    origin: RunOrigin
    started_at: datetime
    completed_at: datetime | None
    success: bool
    message: str
    output_path: str
    file_size_bytes: int
    content_hash: str
    hash_algorithm: str
    health_passed: bool
    health_details: str


class HistoryListResponse(BaseModel):
    items: list[HistoryEntryResponse]
