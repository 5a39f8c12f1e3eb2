from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable

from dbvault.db.models import RunOrigin


class TaskState(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(slots=True)
class ProgressUpdate:
    message: str = ""
    total_tables: int = 0
    processed_tables: int = -1
    stage: str | None = None
    current_table: str | None = None
    current_table_index: int = 0
    current_table_total_rows: int = 0
    current_table_processed_rows: int = 0


ProgressSink = Callable[[ProgressUpdate], None]


@dataclass(slots=True)
class BackupResult:
    output_path: str
    bytes_written: int
    content_hash: str
    hash_algorithm: str
    table_count: int
    row_count: int
    is_compressed: bool


@dataclass(slots=True)
class HealthReport:
    healthy: bool
    details: str
    algorithm: str


@dataclass(slots=True)
class TaskStatus:
    task_id: str
    schedule_id: str
    schedule_name: str
    database_name: str
    connection_label: str
    mode: str
    origin: RunOrigin
    started_at: datetime
    state: TaskState = TaskState.RUNNING
    cancelable: bool = True
    paused: bool = False
    finished_at: datetime | None = None
    processed_tables: int = 0
    total_tables: int = 0
    current_table: str | None = None
    current_table_processed_rows: int = 0
    current_table_total_rows: int = 0
    percent: float = 0.0
    stage: str = "Queued"
    message: str = ""


@dataclass(frozen=True, slots=True)
class TaskEvent:
    kind: str
    task: TaskStatus
    message: str = ""
    is_error: bool = False

