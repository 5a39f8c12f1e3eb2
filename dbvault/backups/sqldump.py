from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterable, TextIO

from dbvault.backups.literals import render_row
from dbvault.sources.connection import RowBatch

DEFAULT_CHARSET = "utf8mb4"


def quote_identifier(name: str) -> str:
    return "`" + name.replace("`", "``") + "`"


@dataclass(slots=True)
class DumpContext:
    host: str
    database: str
    server_version: str = ""
    dialect: str = ""
    session_variables: dict[str, str] = field(default_factory=dict)

    @property
    def charset(self) -> str:
        return self.session_variables.get("character_set_client") or DEFAULT_CHARSET


class SqlDumpWriter:
    def __init__(self, handle: TextIO):
        self._handle = handle

    def _lines(self, *lines: str) -> None:
        for line in lines:
            self._handle.write(line)
            self._handle.write("\n")

    def write_header(self, context: DumpContext) -> None:
        source = f"{context.dialect} {context.server_version}".strip() or "unknown"
        self._lines(
            f"-- dbvault SQL dump ({source})",
            f"-- Host: {context.host}    Database: {context.database}",
            "-- ------------------------------------------------------",
            f"-- Server version\t{context.server_version or 'unknown'}",
            "",
            "/*!40101 SET @OLD_CHARACTER_SET_CLIENT=@@CHARACTER_SET_CLIENT */;",
            "/*!40101 SET @OLD_CHARACTER_SET_RESULTS=@@CHARACTER_SET_RESULTS */;",
            "/*!40101 SET @OLD_COLLATION_CONNECTION=@@COLLATION_CONNECTION */;",
            f"/*!40101 SET NAMES {context.charset} */;",
            "/*!40103 SET @OLD_TIME_ZONE=@@TIME_ZONE */;",
            "/*!40103 SET TIME_ZONE='+00:00' */;",
            "/*!40014 SET @OLD_UNIQUE_CHECKS=@@UNIQUE_CHECKS, UNIQUE_CHECKS=0 */;",
            "/*!40014 SET @OLD_FOREIGN_KEY_CHECKS=@@FOREIGN_KEY_CHECKS, FOREIGN_KEY_CHECKS=0 */;",
            "/*!40101 SET @OLD_SQL_MODE=@@SQL_MODE, SQL_MODE='NO_AUTO_VALUE_ON_ZERO' */;",
            "/*!40111 SET @OLD_SQL_NOTES=@@SQL_NOTES, SQL_NOTES=0 */;",
            "",
        )

    def write_database_preamble(self, database: str) -> None:
        quoted = quote_identifier(database)
        self._lines(
            f"CREATE DATABASE IF NOT EXISTS {quoted};",
            f"USE {quoted};",
            "",
        )

    def write_table_schema(self, table: str, create_statement: str, charset: str = DEFAULT_CHARSET) -> None:
        quoted = quote_identifier(table)
        statement = create_statement.strip().rstrip(";")
        self._lines(
            "--",
            f"-- Table structure for table {quoted}",
            "--",
            "",
            f"DROP TABLE IF EXISTS {quoted};",
            "/*!40101 SET @saved_cs_client     = @@character_set_client */;",
            f"/*!40101 SET character_set_client = {charset} */;",
        )
        if statement:
            self._lines(statement + ";")
        self._lines(
            "/*!40101 SET character_set_client = @saved_cs_client */;",
            "",
        )

    def write_table_data(
        self,
        table: str,
        batches: Iterable[RowBatch],
        *,
        before_batch: Callable[[], None] | None = None,
        after_batch: Callable[[int], None] | None = None,
    ) -> int:
        """Write one ``INSERT`` statement per non-empty batch and return the row total.

        ``before_batch`` runs ahead of every batch fetch and may raise to stop the
        dump; ``after_batch`` receives the running row total.
        """
        quoted = quote_identifier(table)
        iterator = iter(batches)
        rows_written = 0
        opened = False

        while True:
            if before_batch is not None:
                before_batch()
            batch = next(iterator, None)
            if batch is None:
                break
            if not batch.rows:
                continue

            if not opened:
                self._lines(
                    "--",
                    f"-- Dumping data for table {quoted}",
                    "--",
                    "",
                    f"LOCK TABLES {quoted} WRITE;",
                    f"/*!40000 ALTER TABLE {quoted} DISABLE KEYS */;",
                )
                opened = True

            columns = ", ".join(quote_identifier(column) for column in batch.columns)
            values = ",".join(render_row(row) for row in batch.rows)
            self._lines(f"INSERT INTO {quoted} ({columns}) VALUES {values};")
            rows_written += len(batch.rows)
            if after_batch is not None:
                after_batch(rows_written)

        if opened:
            self._lines(
                f"/*!40000 ALTER TABLE {quoted} ENABLE KEYS */;",
                "UNLOCK TABLES;",
                "",
            )
        else:
            self._lines(
                "--",
                f"-- Dumping data for table {quoted} (empty)",
                "--",
                "",
            )
        return rows_written

    def write_footer(self) -> None:
        self._lines(
            "",
            "/*!40111 SET SQL_NOTES=@OLD_SQL_NOTES */;",
            "/*!40101 SET SQL_MODE=@OLD_SQL_MODE */;",
            "/*!40014 SET FOREIGN_KEY_CHECKS=@OLD_FOREIGN_KEY_CHECKS */;",
            "/*!40014 SET UNIQUE_CHECKS=@OLD_UNIQUE_CHECKS */;",
            "/*!40101 SET CHARACTER_SET_CLIENT=@OLD_CHARACTER_SET_CLIENT */;",
            "/*!40101 SET CHARACTER_SET_RESULTS=@OLD_CHARACTER_SET_RESULTS */;",
            "/*!40101 SET COLLATION_CONNECTION=@OLD_COLLATION_CONNECTION */;",
            "/*!40103 SET TIME_ZONE=@OLD_TIME_ZONE */;",
        )
