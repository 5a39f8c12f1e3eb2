from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable

from dbvault.db.models import CURRENT_SCHEMA_VERSION

logger = logging.getLogger(__name__)

Document = dict[str, Any]

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")

_LEGACY_FIELD_RENAMES = {
    "sha256": "content_hash",
    "started_utc": "started_at",
    "completed_utc": "completed_at",
    "last_run_utc": "last_run_at",
    "next_run_utc": "next_run_at",
}

# Positional enum values as the legacy document stored them.
_LEGACY_FREQUENCIES = ["once", "daily", "weekly", "monthly", "custom_interval"]
_LEGACY_COMPRESSION = ["zip", "tar_gz"]
_LEGACY_MODES = ["standard", "fast", "external_tool"]
_LEGACY_WEEKDAYS = ["sunday", "monday", "tuesday", "wednesday", "thursday", "friday", "saturday"]


@dataclass(frozen=True)
class MigrationStep:
    version: int
    name: str
    apply: Callable[[Document], None]


def to_snake_case(key: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", key).lower()


def _normalize_enum(value: Any, positional: list[str]) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if 0 <= value < len(positional):
            return positional[value]
        return value
    if isinstance(value, str):
        return to_snake_case(value.strip())
    return value


def normalize_legacy_record(record: dict[str, Any]) -> dict[str, Any]:
    normalized: dict[str, Any] = {}
    for key, value in record.items():
        snake = to_snake_case(str(key))
        normalized[_LEGACY_FIELD_RENAMES.get(snake, snake)] = value

    if "frequency" in normalized:
        normalized["frequency"] = _normalize_enum(normalized["frequency"], _LEGACY_FREQUENCIES)
    if "compression_format" in normalized:
        normalized["compression_format"] = _normalize_enum(normalized["compression_format"], _LEGACY_COMPRESSION)
    if "backup_mode" in normalized:
        normalized["backup_mode"] = _normalize_enum(normalized["backup_mode"], _LEGACY_MODES)
    if isinstance(normalized.get("days_of_week"), list):
        normalized["days_of_week"] = [
            _normalize_enum(day, _LEGACY_WEEKDAYS) for day in normalized["days_of_week"]
        ]
    if "content_hash" in normalized and "hash_algorithm" not in normalized:
        normalized["hash_algorithm"] = "sha256" if normalized["content_hash"] else ""
    return normalized


def extract_legacy_collections(document: Document) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    schedules: list[dict[str, Any]] = []
    history: list[dict[str, Any]] = []
    for key, value in document.items():
        snake = to_snake_case(str(key))
        if not isinstance(value, list):
            continue
        if snake == "backup_schedules":
            schedules = [normalize_legacy_record(item) for item in value if isinstance(item, dict)]
        elif snake == "backup_history":
            history = [normalize_legacy_record(item) for item in value if isinstance(item, dict)]
    return schedules, history


def _migration_0001_snake_case_records(document: Document) -> None:
    schedules, history = extract_legacy_collections(document)
    for key in list(document):
        if to_snake_case(str(key)) in {"backup_schedules", "backup_history"}:
            del document[key]
    document["backup_schedules"] = schedules
    document["backup_history"] = history


MIGRATIONS: list[MigrationStep] = [
    MigrationStep(version=1, name="0001_snake_case_records", apply=_migration_0001_snake_case_records),
]


def apply_migrations(document: Document) -> Document:
    raw_version = document.get("schema_version", 0)
    current = raw_version if isinstance(raw_version, int) else 0

    for step in sorted(MIGRATIONS, key=lambda item: item.version):
        if step.version <= current:
            continue
        logger.info("Applying state migration %s", step.name)
        step.apply(document)
        current = step.version
        document["schema_version"] = current

    if current > CURRENT_SCHEMA_VERSION:
        raise ValueError(f"State document version {current} is newer than supported {CURRENT_SCHEMA_VERSION}")
    document["schema_version"] = current or CURRENT_SCHEMA_VERSION
    return document
