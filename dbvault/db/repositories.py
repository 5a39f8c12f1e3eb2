from __future__ import annotations

import logging
import threading
from typing import Callable

from dbvault.core.config import Settings
from dbvault.core.errors import ScheduleNotFoundError
from dbvault.db.models import BackupState, HistoryEntry, Schedule
from dbvault.db.store import StateStore

logger = logging.getLogger(__name__)

SchedulesChangedListener = Callable[[], None]


class ScheduleRepository:
    def __init__(self, store: StateStore):
        self._store = store
        self._listeners: list[SchedulesChangedListener] = []
        self._listeners_lock = threading.Lock()

    def list(self) -> list[Schedule]:
        return self._store.load().backup_schedules

    def get(self, schedule_id: str) -> Schedule:
        for schedule in self.list():
            if schedule.id == schedule_id:
                return schedule
        raise ScheduleNotFoundError(schedule_id)

    def find(self, schedule_id: str) -> Schedule | None:
        try:
            return self.get(schedule_id)
        except ScheduleNotFoundError:
            return None

    def save_all(self, schedules: list[Schedule]) -> None:
        def _replace(state: BackupState) -> None:
            state.backup_schedules = [item.model_copy(deep=True) for item in schedules]

        self._store.mutate(_replace)
        self._notify()

    def upsert(self, schedule: Schedule, *, notify: bool = True) -> Schedule:
        stored = schedule.model_copy(deep=True)

        def _upsert(state: BackupState) -> None:
            for index, existing in enumerate(state.backup_schedules):
                if existing.id == stored.id:
                    state.backup_schedules[index] = stored
                    return
            state.backup_schedules.append(stored)

        self._store.mutate(_upsert)
        if notify:
            self._notify()
        return stored.model_copy(deep=True)

    def delete(self, schedule_id: str) -> None:
        def _delete(state: BackupState) -> bool:
            before = len(state.backup_schedules)
            state.backup_schedules = [item for item in state.backup_schedules if item.id != schedule_id]
            return len(state.backup_schedules) != before

        if not self._store.mutate(_delete):
            raise ScheduleNotFoundError(schedule_id)
        self._notify()

    def subscribe(self, listener: SchedulesChangedListener) -> Callable[[], None]:
        with self._listeners_lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._listeners_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener()
            except Exception:
                logger.exception("Schedules-changed listener failed")


class HistoryRepository:
    def __init__(self, settings: Settings, store: StateStore):
        self._settings = settings
        self._store = store

    def list(self, *, schedule_id: str | None = None, limit: int | None = None) -> list[HistoryEntry]:
        entries = self._store.load().backup_history
        if schedule_id:
            entries = [entry for entry in entries if entry.schedule_id == schedule_id]
        entries.sort(key=lambda entry: entry.started_at, reverse=True)
        if limit is not None:
            entries = entries[: max(0, limit)]
        return entries

    def add(self, entry: HistoryEntry) -> HistoryEntry:
        cap = self._settings.history_max_entries

        def _add(state: BackupState) -> None:
            state.backup_history.insert(0, entry)
            if len(state.backup_history) > cap:
                state.backup_history.sort(key=lambda item: item.started_at, reverse=True)
                del state.backup_history[cap:]

        self._store.mutate(_add)
        return entry
