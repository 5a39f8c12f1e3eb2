from dbvault.backups.executor import BackupExecutor
from dbvault.backups.health import HealthVerifier, verify_backup
from dbvault.backups.monitor import TaskHandle, TaskMonitor
from dbvault.backups.notifications import CallbackNotifier, LoggingNotifier, Notifier
from dbvault.backups.pause import PauseToken
from dbvault.backups.planner import next_run, refresh_next_run
from dbvault.backups.runner import SchedulerRunner
from dbvault.backups.service import BackupService
from dbvault.backups.types import BackupResult, HealthReport, ProgressUpdate, TaskEvent, TaskState, TaskStatus

__all__ = [
    "BackupExecutor",
    "BackupResult",
    "BackupService",
    "CallbackNotifier",
    "HealthReport",
    "HealthVerifier",
    "LoggingNotifier",
    "Notifier",
    "PauseToken",
    "ProgressUpdate",
    "SchedulerRunner",
    "TaskEvent",
    "TaskHandle",
    "TaskMonitor",
    "TaskState",
    "TaskStatus",
    "next_run",
    "refresh_next_run",
    "verify_backup",
]
