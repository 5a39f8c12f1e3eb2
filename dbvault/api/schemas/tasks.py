from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from dbvault.backups.types import TaskState
from dbvault.db.models import RunOrigin


class TaskResponse(BaseModel):
    task_id: str
    schedule_id: str
    schedule_name: str
    database_name: str
    connection_label: str
    mode: str
    origin: RunOrigin
    state: TaskState
    cancelable: bool
    paused: bool
    started_at: datetime
    finished_at: datetime | None
    processed_tables: int
    total_tables: int
    current_table: str | None
    current_table_processed_rows: int
    current_table_total_rows: int
    percent: float
    stage: str
    message: str


class TaskListResponse(BaseModel):
    active: list[TaskResponse]
    recent: list[TaskResponse]
