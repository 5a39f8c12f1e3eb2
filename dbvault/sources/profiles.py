from __future__ import annotations

import json
import logging
import threading
from enum import Enum
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy.engine import URL, make_url

logger = logging.getLogger(__name__)


class DatabaseEngine(str, Enum):
    MYSQL = "mysql"
    POSTGRESQL = "postgresql"
    SQLITE = "sqlite"


_DEFAULT_DRIVERS = {
    DatabaseEngine.MYSQL: "pymysql",
    DatabaseEngine.POSTGRESQL: "psycopg",
    DatabaseEngine.SQLITE: None,
}

_DEFAULT_PORTS = {
    DatabaseEngine.MYSQL: 3306,
    DatabaseEngine.POSTGRESQL: 5432,
    DatabaseEngine.SQLITE: None,
}


class ConnectionProfile(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str = ""
    display_name: str = ""
    engine: DatabaseEngine = DatabaseEngine.MYSQL
    driver: str | None = None
    host: str = "localhost"
    port: int | None = None
    username: str = "root"
    password: str = Field(default="", repr=False)
    database: str = ""
    url: str | None = Field(default=None, repr=False)

    @property
    def label(self) -> str:
        base = self.display_name or self.name or self.id
        if self.engine == DatabaseEngine.SQLITE:
            return base
        return f"{base} ({self.username}@{self.host}:{self.effective_port})"

    @property
    def effective_port(self) -> int | None:
        return self.port or _DEFAULT_PORTS[self.engine]

    def to_url(self, database: str | None = None) -> URL:
        if self.url:
            url = make_url(self.url)
            if database and self.engine != DatabaseEngine.SQLITE:
                url = url.set(database=database)
            return url

        target = database or self.database
        driver = self.driver or _DEFAULT_DRIVERS[self.engine]
        drivername = self.engine.value if driver is None else f"{self.engine.value}+{driver}"
        if self.engine == DatabaseEngine.SQLITE:
            return URL.create(drivername, database=target or None)

        return URL.create(
            drivername,
            username=self.username or None,
            password=self.password or None,
            host=self.host or None,
            port=self.effective_port,
            database=target or None,
        )


class ProfileProvider(Protocol):
    def get_profile(self, profile_id: str) -> ConnectionProfile | None: ...


class InMemoryProfileProvider:
    def __init__(self, profiles: list[ConnectionProfile] | None = None):
        self._lock = threading.Lock()
        self._profiles: dict[str, ConnectionProfile] = {}
        for profile in profiles or []:
            self.add(profile)

    def add(self, profile: ConnectionProfile) -> None:
        with self._lock:
            self._profiles[profile.id] = profile

    def remove(self, profile_id: str) -> None:
        with self._lock:
            self._profiles.pop(profile_id, None)

    def get_profile(self, profile_id: str) -> ConnectionProfile | None:
        with self._lock:
            profile = self._profiles.get(profile_id)
        return None if profile is None else profile.model_copy()


class JsonProfileProvider:
    """Read-only profiles from a JSON file: a list, or an object with a ``profiles`` list.

    The file is re-read whenever its modification time changes, so profiles
    edited by another tool are picked up without a restart.
    """

    def __init__(self, path: Path):
        self._path = path
        self._lock = threading.Lock()
        self._mtime_ns: int | None = None
        self._profiles: dict[str, ConnectionProfile] = {}

    def get_profile(self, profile_id: str) -> ConnectionProfile | None:
        with self._lock:
            self._reload_if_changed()
            profile = self._profiles.get(profile_id)
        return None if profile is None else profile.model_copy()

    def _reload_if_changed(self) -> None:
        try:
            mtime_ns = self._path.stat().st_mtime_ns
        except FileNotFoundError:
            self._profiles = {}
            self._mtime_ns = None
            return

        if mtime_ns == self._mtime_ns:
            return

        try:
            document = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Cannot read connection profiles from %s: %s", self._path, exc)
            return

        records = document.get("profiles", []) if isinstance(document, dict) else document
        profiles: dict[str, ConnectionProfile] = {}
        for record in records if isinstance(records, list) else []:
            try:
                profile = ConnectionProfile.model_validate(record)
            except ValidationError as exc:
                logger.warning("Skipping invalid connection profile: %s", exc.errors()[:1])
                continue
            profiles[profile.id] = profile

        self._profiles = profiles
        self._mtime_ns = mtime_ns
