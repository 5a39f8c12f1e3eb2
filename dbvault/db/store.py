from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable, TypeVar

from pydantic import ValidationError

from dbvault.core.config import Settings
from dbvault.db.migrations import apply_migrations, extract_legacy_collections, to_snake_case
from dbvault.db.models import BackupState, HistoryEntry, Schedule

logger = logging.getLogger(__name__)

T = TypeVar("T")


def atomic_write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class StateStore:
    def __init__(self, settings: Settings, *, path: Path | None = None):
        self._settings = settings
        self._path = path or settings.state_file
        self._lock = threading.RLock()
        self._cache: BackupState | None = None

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> BackupState:
        with self._lock:
            if self._cache is None:
                self._cache = self._read_from_disk()
            return self._cache.model_copy(deep=True)

    def save(self, state: BackupState) -> None:
        with self._lock:
            snapshot = state.model_copy(deep=True)
            atomic_write_text(self._path, snapshot.model_dump_json(indent=2))
            self._cache = snapshot

    def mutate(self, mutator: Callable[[BackupState], T]) -> T:
        with self._lock:
            state = self.load()
            result = mutator(state)
            self.save(state)
            return result

    def invalidate(self) -> None:
        with self._lock:
            self._cache = None

    def _read_from_disk(self) -> BackupState:
        if not self._path.exists():
            state = BackupState()
            self._import_legacy(state)
            atomic_write_text(self._path, state.model_dump_json(indent=2))
            return state

        try:
            document = json.loads(self._path.read_text(encoding="utf-8"))
            if not isinstance(document, dict):
                raise ValueError("State document must be a JSON object")
            return BackupState.model_validate(apply_migrations(document))
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning("Backup state at %s is unreadable, starting empty: %s", self._path, exc)
            return BackupState()

    def _import_legacy(self, state: BackupState) -> None:
        legacy_path = self._settings.legacy_config_path
        if legacy_path is None or not legacy_path.is_file():
            return

        try:
            document = json.loads(legacy_path.read_text(encoding="utf-8"))
            if not isinstance(document, dict):
                return
            raw_schedules, raw_history = extract_legacy_collections(document)
            state.backup_schedules = _validate_records(Schedule, raw_schedules)
            state.backup_history = _validate_records(HistoryEntry, raw_history)[: self._settings.history_max_entries]

            if raw_schedules or raw_history:
                for key in list(document):
                    if to_snake_case(str(key)) in {"backup_schedules", "backup_history"}:
                        document[key] = []
                atomic_write_text(legacy_path, json.dumps(document, indent=2))
                logger.info(
                    "Imported %d schedules and %d history entries from %s",
                    len(state.backup_schedules),
                    len(state.backup_history),
                    legacy_path,
                )
        except (OSError, ValueError) as exc:
            logger.warning("Legacy backup import from %s failed: %s", legacy_path, exc)


def _validate_records(model: type[Any], records: list[dict[str, Any]]) -> list[Any]:
    items: list[Any] = []
    for record in records:
        try:
            items.append(model.model_validate(record))
        except ValidationError as exc:
            logger.warning("Skipping legacy %s record: %s", model.__name__, exc.errors()[:1])
    return items
