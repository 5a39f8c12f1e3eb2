from __future__ import annotations

import logging
import threading
from contextlib import closing
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError

from dbvault.backups.artifacts import (
    apply_retention,
    compress_folder,
    compute_content_hash,
    create_working_folder,
    schedule_root,
)
from dbvault.backups.external import ExternalDumpRunner
from dbvault.backups.pause import PauseToken, checkpoint
from dbvault.backups.sqldump import DumpContext, SqlDumpWriter
from dbvault.backups.types import BackupResult, ProgressSink, ProgressUpdate
from dbvault.core.config import Settings
from dbvault.core.errors import BackupConnectionError, PreconditionError, StreamingError
from dbvault.core.path_safety import PathSafetyError, sanitize_file_name
from dbvault.db.models import BackupMode, Schedule
from dbvault.sources.connection import DatabaseConnection, EngineFactory
from dbvault.sources.profiles import ConnectionProfile

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _RunContext:
    schedule: Schedule
    progress: ProgressSink | None
    cancel_event: threading.Event
    pause_token: PauseToken | None

    def report(self, update: ProgressUpdate) -> None:
        if self.progress is not None:
            self.progress(update)

    def checkpoint(self) -> None:
        checkpoint(self.cancel_event, self.pause_token)


@dataclass(slots=True)
class _DumpOutcome:
    working_folder: Path
    sql_path: Path
    table_count: int = 0
    row_count: int = 0


class BackupExecutor:
    def __init__(
        self,
        settings: Settings,
        *,
        engine_factory: EngineFactory | None = None,
        external_runner: ExternalDumpRunner | None = None,
    ):
        self._settings = settings
        self._engine_factory = engine_factory
        self._external_runner = external_runner or ExternalDumpRunner(settings)

    def _now(self) -> datetime:
        return datetime.now(tz=self._settings.timezone) if self._settings.timezone else datetime.now()

    def run(
        self,
        profile: ConnectionProfile,
        schedule: Schedule,
        progress: ProgressSink | None = None,
        cancel_event: threading.Event | None = None,
        pause_token: PauseToken | None = None,
    ) -> BackupResult:
        ctx = _RunContext(
            schedule=schedule,
            progress=progress,
            cancel_event=cancel_event or threading.Event(),
            pause_token=pause_token,
        )

        database = schedule.database_name.strip() or profile.database.strip()
        if not database:
            raise PreconditionError("Select a database name before running the backup.")

        try:
            root = schedule_root(schedule, self._settings.default_output_root or self._settings.state_root)
        except PathSafetyError as exc:
            raise PreconditionError(f"Invalid output directory: {exc}") from exc

        ctx.report(ProgressUpdate(message=f"Connecting to {database} …"))
        ctx.checkpoint()

        if schedule.backup_mode == BackupMode.EXTERNAL_TOOL:
            outcome = self._run_external(ctx, profile, database, root)
        else:
            outcome = self._run_dump(ctx, profile, database, root)

        final_path = outcome.sql_path
        if schedule.compress_output:
            ctx.report(
                ProgressUpdate(
                    message="Compressing output …",
                    total_tables=outcome.table_count,
                    processed_tables=outcome.table_count,
                    stage="Compressing",
                )
            )
            try:
                final_path = compress_folder(
                    outcome.working_folder,
                    schedule.compression_format,
                    checkpoint=ctx.checkpoint,
                )
            except OSError as exc:
                raise StreamingError(f"Compressing {outcome.working_folder.name} failed: {exc}") from exc

        removed = apply_retention(root, schedule.retention_count)
        if removed:
            logger.info("Retention removed %d old backups under %s", len(removed), root)

        algorithm = self._settings.hash_algorithm
        try:
            content_hash = compute_content_hash(
                final_path,
                algorithm,
                chunk_bytes=self._settings.hash_read_chunk_bytes,
            )
            size = final_path.stat().st_size
        except OSError as exc:
            raise StreamingError(f"Reading {final_path.name} failed: {exc}") from exc

        return BackupResult(
            output_path=str(final_path),
            bytes_written=size,
            content_hash=content_hash,
            hash_algorithm=algorithm,
            table_count=outcome.table_count,
            row_count=outcome.row_count,
            is_compressed=schedule.compress_output,
        )

    def _run_external(
        self,
        ctx: _RunContext,
        profile: ConnectionProfile,
        database: str,
        root: Path,
    ) -> _DumpOutcome:
        working = create_working_folder(root, self._now())
        sql_path = working / f"{sanitize_file_name(database, fallback='database')}.sql"
        ctx.report(ProgressUpdate(message=f"Running external dump of {database} …", stage="External"))

        def _on_chunk(written: int) -> None:
            ctx.report(ProgressUpdate(message=f"Received {written:,} bytes", stage="External"))

        self._external_runner.dump(
            profile,
            database,
            sql_path,
            cancel_event=ctx.cancel_event,
            pause_token=ctx.pause_token,
            on_chunk=_on_chunk,
        )
        return _DumpOutcome(working_folder=working, sql_path=sql_path)

    def _run_dump(
        self,
        ctx: _RunContext,
        profile: ConnectionProfile,
        database: str,
        root: Path,
    ) -> _DumpOutcome:
        fast = ctx.schedule.backup_mode == BackupMode.FAST
        connection = DatabaseConnection(profile, database, engine_factory=self._engine_factory)
        connection.connect()
        try:
            try:
                session_variables = connection.get_server_session_variables()
                tables = connection.list_tables()
                context = DumpContext(
                    host=profile.host or "localhost",
                    database=database,
                    server_version=connection.server_version,
                    dialect=connection.dialect_name,
                    session_variables=session_variables,
                )
            except SQLAlchemyError as exc:
                raise BackupConnectionError(f"Reading catalog of {database} failed: {exc}") from exc

            total = len(tables)
            ctx.report(
                ProgressUpdate(
                    message=f"Preparing backup ({total} table{'' if total == 1 else 's'}) …",
                    total_tables=total,
                    processed_tables=0,
                )
            )

            working = create_working_folder(root, self._now())
            outcome = _DumpOutcome(
                working_folder=working,
                sql_path=working / f"{sanitize_file_name(database, fallback='database')}.sql",
                table_count=total,
            )
            try:
                with outcome.sql_path.open("w", encoding="utf-8", newline="\n") as handle:
                    writer = SqlDumpWriter(handle)
                    writer.write_header(context)
                    writer.write_database_preamble(database)
                    for index, table in enumerate(tables):
                        outcome.row_count += self._dump_table(ctx, connection, writer, context, table, index, total, fast)
                    writer.write_footer()
            except (OSError, SQLAlchemyError) as exc:
                raise StreamingError(f"Dump of {database} failed: {exc}") from exc
            return outcome
        finally:
            connection.close()

    def _dump_table(
        self,
        ctx: _RunContext,
        connection: DatabaseConnection,
        writer: SqlDumpWriter,
        context: DumpContext,
        table: str,
        index: int,
        total: int,
        fast: bool,
    ) -> int:
        ctx.checkpoint()
        estimate = connection.get_approx_row_count(table) if fast else connection.get_row_count(table)
        ctx.report(
            ProgressUpdate(
                message=f"Exporting {table} …",
                total_tables=total,
                processed_tables=index,
                stage="TableStart",
                current_table=table,
                current_table_index=index + 1,
                current_table_total_rows=estimate,
            )
        )
        writer.write_table_schema(table, connection.get_create_statement(table), context.charset)

        label = "(Fast)" if fast else "Writing"
        interval = max(1, max(1, estimate) // 50)
        last_reported = 0

        def _after_batch(rows: int) -> None:
            nonlocal last_reported
            if estimate > 0 and rows // interval == last_reported // interval:
                return
            last_reported = rows
            ctx.report(
                ProgressUpdate(
                    message=f"{label} {table}: {rows:,}/{estimate:,}",
                    total_tables=total,
                    processed_tables=index,
                    stage="TableProgress",
                    current_table=table,
                    current_table_index=index + 1,
                    current_table_total_rows=estimate,
                    current_table_processed_rows=rows,
                )
            )

        with closing(connection.stream_rows(table, self._settings.insert_batch_size)) as batches:
            rows = writer.write_table_data(
                table,
                batches,
                before_batch=ctx.checkpoint,
                after_batch=_after_batch,
            )

        ctx.report(
            ProgressUpdate(
                message=f"Finished {table}",
                total_tables=total,
                processed_tables=index + 1,
                stage="TableComplete",
                current_table=table,
                current_table_index=index + 1,
                current_table_total_rows=rows,
                current_table_processed_rows=rows,
            )
        )
        return rows
