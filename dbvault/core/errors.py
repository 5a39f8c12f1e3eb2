from __future__ import annotations


class BackupError(RuntimeError):
    pass


class PreconditionError(BackupError):
    pass


class BackupConnectionError(BackupError):
    pass


class StreamingError(BackupError):
    pass


class ExternalToolError(BackupError):
    def __init__(self, message: str, *, exit_code: int | None = None, stderr: str = ""):
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(message)


class CanceledOperation(Exception):
    """Raised at a checkpoint once the run's cancellation signal is set.

    Not a BackupError: a cancelled run is reported as cancelled, never as failed.
    """


class HealthCheckFailure(BackupError):
    pass


class BackupConflictError(BackupError):
    pass


class ScheduleNotFoundError(BackupError):
    def __init__(self, schedule_id: str):
        self.schedule_id = schedule_id
        super().__init__(f"Schedule not found: {schedule_id}")


class TaskNotFoundError(BackupError):
    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}")
