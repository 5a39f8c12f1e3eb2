from __future__ import annotations

from datetime import datetime, time, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

CURRENT_SCHEMA_VERSION = 1


def _new_id() -> str:
    return str(uuid4())


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _coerce_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class BackupFrequency(str, Enum):
    ONCE = "once"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CUSTOM_INTERVAL = "custom_interval"


class CompressionFormat(str, Enum):
    ZIP = "zip"
    TAR_GZ = "tar_gz"


class BackupMode(str, Enum):
    STANDARD = "standard"
    FAST = "fast"
    EXTERNAL_TOOL = "external_tool"


class RunOrigin(str, Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"


class Weekday(str, Enum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @property
    def index(self) -> int:
        return _WEEKDAY_ORDER.index(self)

    @classmethod
    def from_index(cls, index: int) -> "Weekday":
        return _WEEKDAY_ORDER[index % 7]


_WEEKDAY_ORDER = list(Weekday)


class Schedule(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=_new_id)
    name: str = "New backup schedule"
    connection_profile_id: str = ""
    database_name: str = ""
    enabled: bool = True
    frequency: BackupFrequency = BackupFrequency.DAILY
    local_run_time: time = time(hour=2)
    days_of_week: list[Weekday] = Field(default_factory=lambda: [Weekday.MONDAY])
    day_of_month: int = 1
    custom_interval_minutes: int = 1440
    output_directory: str = ""
    compress_output: bool = True
    compression_format: CompressionFormat = CompressionFormat.ZIP
    retention_count: int = 10
    backup_mode: BackupMode = BackupMode.STANDARD
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _default_blank_id(cls, value: str | None) -> str:
        if value is None or not str(value).strip():
            return _new_id()
        return str(value)

    @field_validator("days_of_week", mode="before")
    @classmethod
    def _normalize_days(cls, value: object) -> object:
        if value is None:
            return []
        if isinstance(value, (list, tuple, set)):
            normalized: list[object] = []
            for item in value:
                if isinstance(item, int) and not isinstance(item, bool):
                    normalized.append(Weekday.from_index(item))
                elif isinstance(item, str):
                    normalized.append(item.strip().lower())
                else:
                    normalized.append(item)
            return normalized
        return value

    @field_validator("last_run_at", "next_run_at")
    @classmethod
    def _normalize_instant(cls, value: datetime | None) -> datetime | None:
        return _coerce_utc(value)


class HistoryEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    schedule_id: str = ""
    schedule_name: str = ""
    connection_profile_id: str = ""
    database_name: str = ""
    origin: RunOrigin = RunOrigin.SCHEDULED
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: datetime | None = None
    success: bool = False
    message: str = ""
    output_path: str = ""
    file_size_bytes: int = 0
    content_hash: str = ""
    hash_algorithm: str = ""
    health_passed: bool = False
    health_details: str = ""

    @field_validator("started_at", "completed_at")
    @classmethod
    def _normalize_instant(cls, value: datetime | None) -> datetime | None:
        return _coerce_utc(value)


class BackupState(BaseModel):
    schema_version: int = CURRENT_SCHEMA_VERSION
    backup_schedules: list[Schedule] = Field(default_factory=list)
    backup_history: list[HistoryEntry] = Field(default_factory=list)
