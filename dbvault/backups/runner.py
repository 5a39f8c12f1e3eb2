from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Callable

from dbvault.backups.planner import refresh_next_run
from dbvault.backups.service import BackupService
from dbvault.core.config import Settings
from dbvault.core.errors import BackupConflictError, ScheduleNotFoundError
from dbvault.db.models import RunOrigin
from dbvault.db.repositories import ScheduleRepository

logger = logging.getLogger(__name__)


class SchedulerRunner:
    def __init__(self, settings: Settings, *, schedules: ScheduleRepository, service: BackupService):
        self._settings = settings
        self._schedules = schedules
        self._service = service
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._gate = threading.Lock()
        self._checking = False
        self._thread: threading.Thread | None = None
        self._unsubscribe: Callable[[], None] | None = None

    def _now(self) -> datetime:
        return datetime.now(tz=timezone.utc)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._wake.clear()
        self._unsubscribe = self._schedules.subscribe(self.force_check)
        self._thread = threading.Thread(target=self._loop, name="dbvault-scheduler", daemon=True)
        self._thread.start()
        logger.info(
            "Scheduler started (first check in %ss, then every %ss)",
            self._settings.scheduler_initial_delay_seconds,
            self._settings.scheduler_poll_seconds,
        )

    def stop(self, timeout: float | None = 5.0) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._stop.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Scheduler stopped")

    def force_check(self) -> None:
        self._wake.set()

    def _loop(self) -> None:
        delay: float = self._settings.scheduler_initial_delay_seconds
        while not self._stop.is_set():
            self._wake.wait(delay)
            self._wake.clear()
            if self._stop.is_set():
                break
            self.check_once()
            delay = self._settings.scheduler_poll_seconds

    def check_once(self) -> int:
        with self._gate:
            if self._checking:
                logger.debug("Schedule check already in progress, skipping tick")
                return 0
            self._checking = True

        ran = 0
        try:
            for listed in self._schedules.list():
                if self._stop.is_set():
                    break
                # Re-read: an earlier run in this pass may have changed it.
                schedule = self._schedules.find(listed.id)
                if schedule is None or not schedule.enabled:
                    continue

                if schedule.next_run_at is None:
                    refresh_next_run(schedule, self._now(), tz=self._settings.timezone)
                    self._schedules.upsert(schedule, notify=False)
                    continue

                if self._now() < schedule.next_run_at:
                    continue

                try:
                    self._service.run_schedule(schedule.id, RunOrigin.SCHEDULED)
                    ran += 1
                except BackupConflictError:
                    logger.info("Schedule %s is already running, skipping", schedule.name)
                except ScheduleNotFoundError:
                    logger.info("Schedule %s was removed before it could run", schedule.name)
        except Exception:
            logger.exception("Scheduled backup check failed")
        finally:
            with self._gate:
                self._checking = False
        return ran
