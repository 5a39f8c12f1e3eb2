from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable
from uuid import uuid4

from dbvault.backups.pause import PauseToken
from dbvault.backups.types import ProgressUpdate, TaskEvent, TaskState, TaskStatus
from dbvault.core.errors import BackupConflictError, TaskNotFoundError
from dbvault.db.models import RunOrigin, Schedule

logger = logging.getLogger(__name__)

TaskListener = Callable[[TaskEvent], None]


@dataclass(slots=True)
class TaskHandle:
    task_id: str
    cancel_event: threading.Event = field(default_factory=threading.Event)


@dataclass(slots=True)
class _Registration:
    status: TaskStatus
    handle: TaskHandle
    pause_token: PauseToken | None = None


class TaskMonitor:
    def __init__(self, recent_capacity: int = 50):
        self._lock = threading.RLock()
        self._registrations: dict[str, _Registration] = {}
        self._active: list[TaskStatus] = []
        self._recent: deque[TaskStatus] = deque(maxlen=recent_capacity)
        self._listeners: list[TaskListener] = []

    def _now(self) -> datetime:
        return datetime.now(tz=timezone.utc)

    def add_listener(self, listener: TaskListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _remove() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _remove

    def start_task(
        self,
        schedule: Schedule,
        connection_label: str,
        *,
        cancelable: bool = True,
        origin: RunOrigin = RunOrigin.MANUAL,
    ) -> TaskHandle:
        status = TaskStatus(
            task_id=str(uuid4()),
            schedule_id=schedule.id,
            schedule_name=schedule.name,
            database_name=schedule.database_name,
            connection_label=connection_label,
            mode=schedule.backup_mode.value,
            origin=origin,
            started_at=self._now(),
            cancelable=cancelable,
            stage="Starting",
        )
        handle = TaskHandle(task_id=status.task_id)
        with self._lock:
            self._registrations[status.task_id] = _Registration(status=status, handle=handle)
            self._active.insert(0, status)
            snapshot = replace(status)

        self._emit(TaskEvent(kind="started", task=snapshot))
        self._emit(TaskEvent(kind="log", task=snapshot, message=f"Started backup '{status.schedule_name}' ({status.mode})."))
        return handle

    def attach_pause_token(self, task_id: str, token: PauseToken) -> None:
        with self._lock:
            registration = self._registrations.get(task_id)
            if registration is not None:
                registration.pause_token = token
                registration.status.paused = token.is_paused

    def pause_task(self, task_id: str) -> TaskStatus:
        with self._lock:
            registration = self._require(task_id)
            if registration.pause_token is None or not registration.status.cancelable:
                raise BackupConflictError(f"Task cannot be paused: {task_id}")
            registration.pause_token.pause()
            registration.status.paused = True
            registration.status.stage = "Paused"
            snapshot = replace(registration.status)

        self._emit(TaskEvent(kind="paused", task=snapshot, message=f"Paused '{snapshot.schedule_name}'."))
        return snapshot

    def resume_task(self, task_id: str) -> TaskStatus:
        with self._lock:
            registration = self._require(task_id)
            if registration.pause_token is None:
                raise BackupConflictError(f"Task cannot be resumed: {task_id}")
            registration.pause_token.resume()
            registration.status.paused = False
            registration.status.stage = "Resuming"
            snapshot = replace(registration.status)

        self._emit(TaskEvent(kind="resumed", task=snapshot, message=f"Resumed '{snapshot.schedule_name}'."))
        return snapshot

    def update_progress(self, task_id: str, update: ProgressUpdate) -> None:
        with self._lock:
            registration = self._registrations.get(task_id)
            if registration is None:
                return
            status = registration.status
            if update.total_tables > 0:
                status.total_tables = update.total_tables
            if update.processed_tables >= 0:
                status.processed_tables = update.processed_tables

            if update.stage and update.stage.strip():
                status.stage = update.stage
            elif update.message and update.message.strip():
                status.stage = update.message

            if update.current_table and update.current_table.strip():
                status.current_table = update.current_table
            status.current_table_processed_rows = update.current_table_processed_rows
            status.current_table_total_rows = update.current_table_total_rows

            if status.total_tables > 0:
                status.percent = min(100.0, max(0.0, status.processed_tables / status.total_tables * 100.0))
            snapshot = replace(status)

        self._emit(TaskEvent(kind="progress", task=snapshot))

    def complete_task(self, task_id: str, message: str) -> None:
        self._finish(task_id, TaskState.COMPLETED, message, is_error=False)

    def fail_task(self, task_id: str, message: str) -> None:
        self._finish(task_id, TaskState.FAILED, message, is_error=True)

    def mark_cancelled(self, task_id: str, message: str) -> None:
        self._finish(task_id, TaskState.CANCELLED, message, is_error=False)

    def cancel_task(self, task_id: str) -> TaskStatus:
        with self._lock:
            registration = self._require(task_id)
            if not registration.status.cancelable:
                return replace(registration.status)
            registration.status.cancelable = False
            registration.status.stage = "Cancel requested…"
            # Resume first: a run left paused would never reach its next checkpoint.
            if registration.pause_token is not None:
                registration.pause_token.resume()
                registration.status.paused = False
            registration.handle.cancel_event.set()
            snapshot = replace(registration.status)

        self._emit(TaskEvent(kind="log", task=snapshot, message=f"Cancel requested for '{snapshot.schedule_name}'."))
        return snapshot

    def get_task(self, task_id: str) -> TaskStatus:
        with self._lock:
            registration = self._registrations.get(task_id)
            if registration is not None:
                return replace(registration.status)
            for status in self._recent:
                if status.task_id == task_id:
                    return replace(status)
        raise TaskNotFoundError(task_id)

    def active_tasks(self) -> list[TaskStatus]:
        with self._lock:
            return [replace(status) for status in self._active]

    def recent_tasks(self) -> list[TaskStatus]:
        with self._lock:
            return [replace(status) for status in self._recent]

    def _require(self, task_id: str) -> _Registration:
        registration = self._registrations.get(task_id)
        if registration is None:
            raise TaskNotFoundError(task_id)
        return registration

    def _finish(self, task_id: str, state: TaskState, message: str, *, is_error: bool) -> None:
        with self._lock:
            registration = self._registrations.pop(task_id, None)
            if registration is None:
                return
            status = registration.status
            status.state = state
            status.cancelable = False
            status.paused = False
            status.stage = message
            status.message = message
            status.finished_at = self._now()
            status.percent = 100.0
            self._active = [item for item in self._active if item.task_id != task_id]
            self._recent.appendleft(status)
            snapshot = replace(status)

        self._emit(TaskEvent(kind=state.value, task=snapshot))
        self._emit(TaskEvent(kind="log", task=snapshot, message=message, is_error=is_error))

    def _emit(self, event: TaskEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Task listener failed for %s event", event.kind)
