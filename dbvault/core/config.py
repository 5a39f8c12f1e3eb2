from __future__ import annotations

import hashlib
from functools import lru_cache
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, PositiveInt, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SUPPORTED_HASH_ALGORITHMS = {"sha256", "sha512", "blake2b"}
DEFAULT_HEADER_TOKENS = ["dbvault", "MySQL dump", "PostgreSQL database dump"]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="DBVAULT_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "dbvault"
    environment: str = "production"
    api_host: str = "127.0.0.1"
    api_port: int = 8765
    log_level: str = "INFO"

    state_root: Path = Field(default=Path("/var/lib/dbvault"))
    default_output_root: Path | None = None
    legacy_config_path: Path | None = None
    profiles_path: Path | None = None

    scheduler_enabled: bool = True
    scheduler_timezone: str | None = None
    scheduler_poll_seconds: PositiveInt = 60
    scheduler_initial_delay_seconds: int = Field(default=10, ge=0)

    insert_batch_size: PositiveInt = 500
    pause_poll_interval_ms: PositiveInt = 150
    history_max_entries: PositiveInt = 200
    recent_tasks_capacity: PositiveInt = 50

    external_chunk_bytes: PositiveInt = 81920
    mysqldump_bin: str = "mysqldump"
    pg_dump_bin: str = "pg_dump"

    hash_algorithm: str = "sha256"
    hash_read_chunk_bytes: PositiveInt = 4 * 1024 * 1024

    health_min_bytes: PositiveInt = 32
    health_tail_bytes: PositiveInt = 4096
    health_header_tokens: list[str] = Field(default_factory=lambda: list(DEFAULT_HEADER_TOKENS))

    @field_validator("state_root", "default_output_root", "legacy_config_path", "profiles_path", mode="before")
    @classmethod
    def _normalize_path(cls, value: str | Path | None) -> Path | None:
        if value is None or value == "":
            return None
        raw = str(value)
        if "~" in raw:
            raise ValueError("Home expansion syntax is not allowed in paths")
        if "$" in raw:
            raise ValueError("Environment variable syntax is not allowed in paths")
        path = Path(raw)
        if not path.is_absolute():
            raise ValueError("Path settings must be absolute")
        return path

    @model_validator(mode="after")
    def _validate_runtime_constraints(self) -> "Settings":
        self.state_root = self.state_root.resolve(strict=False)
        self.state_root.mkdir(parents=True, exist_ok=True)

        if self.default_output_root is None:
            self.default_output_root = self.state_root / "backups"
        self.default_output_root = self.default_output_root.resolve(strict=False)

        normalized_algorithm = self.hash_algorithm.lower().strip()
        if normalized_algorithm not in SUPPORTED_HASH_ALGORITHMS:
            raise ValueError(f"hash_algorithm must be one of {sorted(SUPPORTED_HASH_ALGORITHMS)}")
        if normalized_algorithm not in hashlib.algorithms_available:
            raise ValueError(f"hash_algorithm {normalized_algorithm} is not available in this interpreter")
        self.hash_algorithm = normalized_algorithm

        if self.scheduler_timezone is not None:
            token = self.scheduler_timezone.strip()
            if not token:
                self.scheduler_timezone = None
            else:
                try:
                    ZoneInfo(token)
                except (ZoneInfoNotFoundError, ValueError) as exc:
                    raise ValueError(f"Unknown scheduler_timezone: {token}") from exc
                self.scheduler_timezone = token

        tokens = [token.strip() for token in self.health_header_tokens if token.strip()]
        if not tokens:
            raise ValueError("health_header_tokens must contain at least one token")
        self.health_header_tokens = tokens

        return self

    @property
    def state_file(self) -> Path:
        return self.state_root / "backup_state.json"

    @property
    def timezone(self) -> ZoneInfo | None:
        if self.scheduler_timezone is None:
            return None
        return ZoneInfo(self.scheduler_timezone)

    @property
    def pause_poll_interval_seconds(self) -> float:
        return self.pause_poll_interval_ms / 1000.0


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
