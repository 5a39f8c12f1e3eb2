from __future__ import annotations

from datetime import datetime, time

from pydantic import BaseModel, ConfigDict, Field

from dbvault.db.models import BackupFrequency, BackupMode, CompressionFormat, Weekday


class ScheduleRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(default="New backup schedule", min_length=1, max_length=200)
    connection_profile_id: str = Field(min_length=1, max_length=128)
    database_name: str = ""
    enabled: bool = True
    frequency: BackupFrequency = BackupFrequency.DAILY
    local_run_time: time = time(hour=2)
    days_of_week: list[Weekday] = Field(default_factory=lambda: [Weekday.MONDAY])
    day_of_month: int = Field(default=1, ge=1, le=31)
    custom_interval_minutes: int = Field(default=1440, ge=1)
    output_directory: str = ""
    compress_output: bool = True
    compression_format: CompressionFormat = CompressionFormat.ZIP
    retention_count: int = Field(default=10, ge=1)
    backup_mode: BackupMode = BackupMode.STANDARD


class ScheduleResponse(BaseModel):
    id: str
    name: str
    connection_profile_id: str
    database_name: str
    enabled: bool
    frequency: BackupFrequency
    local_run_time: time
    days_of_week: list[Weekday]
    day_of_month: int
    custom_interval_minutes: int
    output_directory: str
    compress_output: bool
    compression_format: CompressionFormat
    retention_count: int
    backup_mode: BackupMode
    last_run_at: datetime | None
    next_run_at: datetime | None
    running: bool = False


class ScheduleListResponse(BaseModel):
    items: list[ScheduleResponse]
