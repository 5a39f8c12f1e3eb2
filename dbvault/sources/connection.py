from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterator

from sqlalchemy import Connection, Engine, MetaData, Table, create_engine, inspect, text
from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.schema import CreateTable

from dbvault.core.errors import BackupConnectionError
from dbvault.sources.profiles import ConnectionProfile

logger = logging.getLogger(__name__)

EngineFactory = Callable[[URL], Engine]

_MYSQL_SESSION_VARIABLES = {
    "sql_mode": "@@sql_mode",
    "time_zone": "@@time_zone",
    "character_set_client": "@@character_set_client",
    "character_set_results": "@@character_set_results",
    "collation_connection": "@@collation_connection",
    "sql_notes": "@@sql_notes",
    "unique_checks": "@@unique_checks",
    "foreign_key_checks": "@@foreign_key_checks",
}


@dataclass(slots=True)
class RowBatch:
    columns: tuple[str, ...]
    rows: list[tuple[Any, ...]]


def default_engine_factory(url: URL) -> Engine:
    connect_args: dict[str, object] = {}
    if url.drivername.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(url, pool_pre_ping=True, connect_args=connect_args)


class DatabaseConnection:
    def __init__(
        self,
        profile: ConnectionProfile,
        database: str,
        *,
        engine_factory: EngineFactory | None = None,
    ):
        self._profile = profile
        self._database = database
        self._engine_factory = engine_factory or default_engine_factory
        self._engine: Engine | None = None
        self._conn: Connection | None = None

    def __enter__(self) -> "DatabaseConnection":
        self.connect()
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()

    @property
    def database(self) -> str:
        return self._database

    @property
    def dialect_name(self) -> str:
        return self._require_engine().dialect.name

    @property
    def server_version(self) -> str:
        info = self._require_engine().dialect.server_version_info
        if not info:
            return ""
        return ".".join(str(part) for part in info)

    def connect(self) -> None:
        if self._conn is not None:
            return
        try:
            self._engine = self._engine_factory(self._profile.to_url(self._database))
            self._conn = self._engine.connect()
        except SQLAlchemyError as exc:
            self.close()
            raise BackupConnectionError(f"Cannot connect to {self._profile.label}: {exc}") from exc

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    def quote(self, name: str) -> str:
        return self._require_engine().dialect.identifier_preparer.quote_identifier(name)

    def list_tables(self) -> list[str]:
        return list(inspect(self._require_conn()).get_table_names())

    def get_create_statement(self, table: str) -> str:
        conn = self._require_conn()
        dialect = self.dialect_name
        if dialect == "mysql":
            row = conn.execute(text(f"SHOW CREATE TABLE {self.quote(table)}")).first()
            return "" if row is None else str(row[1])
        if dialect == "sqlite":
            statement = conn.execute(
                text("SELECT sql FROM sqlite_master WHERE type = 'table' AND name = :name"),
                {"name": table},
            ).scalar()
            return "" if statement is None else str(statement)

        reflected = Table(table, MetaData(), autoload_with=conn)
        return str(CreateTable(reflected).compile(dialect=conn.dialect)).strip()

    def get_row_count(self, table: str) -> int:
        count = self._require_conn().execute(text(f"SELECT COUNT(*) FROM {self.quote(table)}")).scalar()
        return int(count or 0)

    def get_approx_row_count(self, table: str) -> int:
        conn = self._require_conn()
        dialect = self.dialect_name
        try:
            if dialect == "mysql":
                value = conn.execute(
                    text(
                        "SELECT TABLE_ROWS FROM INFORMATION_SCHEMA.TABLES "
                        "WHERE TABLE_SCHEMA = :schema AND TABLE_NAME = :table"
                    ),
                    {"schema": self._database, "table": table},
                ).scalar()
            elif dialect == "postgresql":
                value = conn.execute(
                    text("SELECT reltuples::bigint FROM pg_class WHERE oid = to_regclass(:table)"),
                    {"table": table},
                ).scalar()
            else:
                return 0
        except SQLAlchemyError as exc:
            logger.debug("Row estimate for %s unavailable: %s", table, exc)
            return 0
        return max(0, int(value or 0))

    def get_server_session_variables(self) -> dict[str, str]:
        if self.dialect_name != "mysql":
            return {}
        conn = self._require_conn()
        columns = ", ".join(f"{expr} AS {key}" for key, expr in _MYSQL_SESSION_VARIABLES.items())
        row = conn.execute(text(f"SELECT {columns}")).mappings().first()
        if row is None:
            return {}
        return {key: str(value) for key, value in row.items() if value is not None}

    def stream_rows(self, table: str, batch_size: int) -> Iterator[RowBatch]:
        statement = text(f"SELECT * FROM {self.quote(table)}").execution_options(
            stream_results=True,
            yield_per=batch_size,
        )
        result = self._require_conn().execute(statement)
        try:
            columns = tuple(str(key) for key in result.keys())
            for partition in result.partitions(batch_size):
                yield RowBatch(columns=columns, rows=[tuple(row) for row in partition])
        finally:
            result.close()

    def _require_engine(self) -> Engine:
        if self._engine is None:
            raise BackupConnectionError("Database connection is not open")
        return self._engine

    def _require_conn(self) -> Connection:
        if self._conn is None:
            raise BackupConnectionError("Database connection is not open")
        return self._conn
