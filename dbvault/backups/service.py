from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from datetime import datetime, timezone

from dbvault.backups.executor import BackupExecutor
from dbvault.backups.health import HealthVerifier
from dbvault.backups.monitor import TaskHandle, TaskMonitor
from dbvault.backups.notifications import Notifier, deliver
from dbvault.backups.pause import PauseToken
from dbvault.backups.planner import refresh_next_run
from dbvault.backups.types import BackupResult, HealthReport, TaskStatus
from dbvault.core.config import Settings
from dbvault.core.errors import BackupConflictError, CanceledOperation, ScheduleNotFoundError
from dbvault.core.path_safety import validate_output_directory
from dbvault.db.models import CompressionFormat, HistoryEntry, RunOrigin, Schedule
from dbvault.db.repositories import HistoryRepository, ScheduleRepository
from dbvault.sources.profiles import ConnectionProfile, ProfileProvider

logger = logging.getLogger(__name__)

_SIZE_UNITS = ["B", "KB", "MB", "GB", "TB"]


def format_bytes(size: int) -> str:
    if size <= 0:
        return "0 B"
    order = min(len(_SIZE_UNITS) - 1, int(math.floor(math.log(size, 1024))))
    adjusted = size / (1024**order)
    text = f"{adjusted:.2f}".rstrip("0").rstrip(".")
    return f"{text} {_SIZE_UNITS[order]}"


def artifact_label(schedule: Schedule) -> str:
    if not schedule.compress_output:
        return "sql"
    return "tar.gz" if schedule.compression_format == CompressionFormat.TAR_GZ else "zip"


@dataclass(slots=True)
class _PreparedRun:
    schedule: Schedule
    profile: ConnectionProfile | None
    handle: TaskHandle
    pause_token: PauseToken
    origin: RunOrigin
    started_at: datetime

    @property
    def origin_label(self) -> str:
        return "Manual" if self.origin == RunOrigin.MANUAL else "Scheduled"


class BackupService:
    def __init__(
        self,
        settings: Settings,
        *,
        schedules: ScheduleRepository,
        history: HistoryRepository,
        profiles: ProfileProvider,
        monitor: TaskMonitor,
        executor: BackupExecutor,
        health: HealthVerifier,
        notifier: Notifier | None = None,
    ):
        self._settings = settings
        self._schedules = schedules
        self._history = history
        self._profiles = profiles
        self._monitor = monitor
        self._executor = executor
        self._health = health
        self._notifier = notifier
        self._locks_guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._workers: dict[str, threading.Thread] = {}

    def _now(self) -> datetime:
        return datetime.now(tz=timezone.utc)

    @property
    def monitor(self) -> TaskMonitor:
        return self._monitor

    def save_schedule(self, schedule: Schedule) -> Schedule:
        if schedule.output_directory.strip():
            validate_output_directory(schedule.output_directory.strip())
        refresh_next_run(schedule, self._now(), tz=self._settings.timezone)
        return self._schedules.upsert(schedule)

    def delete_schedule(self, schedule_id: str) -> None:
        self._schedules.delete(schedule_id)

    def is_running(self, schedule_id: str) -> bool:
        with self._locks_guard:
            lock = self._locks.get(schedule_id)
        return lock is not None and lock.locked()

    def run_schedule(
        self,
        schedule_id: str,
        origin: RunOrigin = RunOrigin.MANUAL,
        pause_token: PauseToken | None = None,
    ) -> HistoryEntry:
        schedule = self._schedules.get(schedule_id)
        lock = self._acquire(schedule_id)
        try:
            run = self._begin(schedule, origin, pause_token)
            return self._execute(run)
        finally:
            lock.release()

    def start_manual_run(self, schedule_id: str) -> TaskStatus:
        schedule = self._schedules.get(schedule_id)
        lock = self._acquire(schedule_id)
        try:
            run = self._begin(schedule, RunOrigin.MANUAL, None)
        except BaseException:
            lock.release()
            raise

        worker = threading.Thread(
            target=self._execute_and_release,
            args=(run, lock),
            name=f"dbvault-backup-{schedule.id[:8]}",
            daemon=True,
        )
        with self._locks_guard:
            self._workers[run.handle.task_id] = worker
        worker.start()
        return self._monitor.get_task(run.handle.task_id)

    def wait_for_task(self, task_id: str, timeout: float | None = None) -> bool:
        with self._locks_guard:
            worker = self._workers.get(task_id)
        if worker is None:
            return True
        worker.join(timeout)
        return not worker.is_alive()

    def _acquire(self, schedule_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.setdefault(schedule_id, threading.Lock())
        if not lock.acquire(blocking=False):
            raise BackupConflictError(f"A backup of schedule {schedule_id} is already running")
        return lock

    def _execute_and_release(self, run: _PreparedRun, lock: threading.Lock) -> None:
        try:
            self._execute(run)
        finally:
            lock.release()
            with self._locks_guard:
                self._workers.pop(run.handle.task_id, None)

    def _begin(self, schedule: Schedule, origin: RunOrigin, pause_token: PauseToken | None) -> _PreparedRun:
        profile = self._profiles.get_profile(schedule.connection_profile_id)
        label = profile.label if profile is not None else "(missing profile)"
        handle = self._monitor.start_task(schedule, label, cancelable=profile is not None, origin=origin)
        token = pause_token or PauseToken(self._settings.pause_poll_interval_seconds)
        self._monitor.attach_pause_token(handle.task_id, token)
        return _PreparedRun(
            schedule=schedule,
            profile=profile,
            handle=handle,
            pause_token=token,
            origin=origin,
            started_at=self._now(),
        )

    def _execute(self, run: _PreparedRun) -> HistoryEntry:
        schedule = run.schedule
        task_id = run.handle.task_id
        try:
            if run.profile is None:
                return self._record_missing_profile(run)

            try:
                result = self._executor.run(
                    run.profile,
                    schedule,
                    progress=lambda update: self._monitor.update_progress(task_id, update),
                    cancel_event=run.handle.cancel_event,
                    pause_token=run.pause_token,
                )
            except CanceledOperation:
                entry = self._record(run, success=False, message="Canceled by user.")
                self._monitor.mark_cancelled(task_id, f"[{schedule.name}] {run.origin_label} backup canceled.")
                return entry
            except Exception as exc:
                message = str(exc) or type(exc).__name__
                logger.warning("Backup of %s failed: %s", schedule.name, message)
                entry = self._record(run, success=False, message=message)
                self._monitor.fail_task(task_id, f"[{schedule.name}] {run.origin_label} backup failed: {message}")
                deliver(self._notifier, "Backup failed", f"{schedule.name}: {message}")
                return entry

            health = self._health.verify(result.output_path, result.is_compressed)
            entry = self._record_success(run, result, health)
            self._monitor.complete_task(
                task_id,
                f"[{schedule.name}] {run.origin_label} backup finished ({format_bytes(result.bytes_written)}).",
            )
            deliver(self._notifier, "Backup completed", f"{schedule.name} finished successfully.")
            return entry
        except Exception as exc:
            logger.exception("Recording backup outcome for %s failed", schedule.name)
            self._monitor.fail_task(task_id, f"[{schedule.name}] {run.origin_label} backup failed: {exc}")
            return self._build_entry(run, success=False, message=str(exc) or type(exc).__name__)

    def _record_missing_profile(self, run: _PreparedRun) -> HistoryEntry:
        schedule = run.schedule
        entry = self._record(run, success=False, message="Connection profile missing")
        self._monitor.fail_task(run.handle.task_id, f"[{schedule.name}] Connection profile missing.")
        deliver(self._notifier, "Backup skipped", f"Profile missing for {schedule.name}.")
        return entry

    def _record_success(self, run: _PreparedRun, result: BackupResult, health: HealthReport) -> HistoryEntry:
        health_label = "passed" if health.healthy else "FAILED"
        message = (
            f"Created {artifact_label(run.schedule)} ({format_bytes(result.bytes_written)}) · Health {health_label}."
        )
        return self._record(
            run,
            success=True,
            message=message,
            output_path=result.output_path,
            file_size_bytes=result.bytes_written,
            content_hash=result.content_hash,
            hash_algorithm=result.hash_algorithm,
            health_passed=health.healthy,
            health_details=health.details,
        )

    def _build_entry(self, run: _PreparedRun, *, success: bool, message: str, **fields: object) -> HistoryEntry:
        schedule = run.schedule
        return HistoryEntry(
            schedule_id=schedule.id,
            schedule_name=schedule.name,
            connection_profile_id=schedule.connection_profile_id,
            database_name=schedule.database_name,
            origin=run.origin,
            started_at=run.started_at,
            completed_at=self._now(),
            success=success,
            message=message,
            **fields,
        )

    def _record(self, run: _PreparedRun, *, success: bool, message: str, **fields: object) -> HistoryEntry:
        entry = self._build_entry(run, success=success, message=message, **fields)
        self._finalize_schedule(run.schedule.id, entry.completed_at if success else None)
        self._history.add(entry)
        return entry

    def _finalize_schedule(self, schedule_id: str, completed_at: datetime | None) -> None:
        try:
            current = self._schedules.get(schedule_id)
        except ScheduleNotFoundError:
            logger.info("Schedule %s was removed while its backup ran", schedule_id)
            return

        if completed_at is not None:
            current.last_run_at = completed_at
        refresh_next_run(current, self._now(), tz=self._settings.timezone)
        self._schedules.upsert(current, notify=False)
