from __future__ import annotations

import sys
import tarfile
import threading
import zipfile
from pathlib import Path

import pytest

from conftest import CUSTOMER_ROWS, ORDER_ROWS
from dbvault.backups.executor import BackupExecutor
from dbvault.backups.external import ExternalCommand, ExternalDumpRunner, build_dump_command
from dbvault.backups.pause import PauseToken
from dbvault.backups.types import ProgressUpdate
from dbvault.core.config import Settings
from dbvault.core.errors import (
    BackupConnectionError,
    CanceledOperation,
    ExternalToolError,
    PreconditionError,
)
from dbvault.db.models import BackupMode, CompressionFormat, Schedule
from dbvault.sources.connection import DatabaseConnection
from dbvault.sources.profiles import ConnectionProfile, DatabaseEngine


def make_schedule(**fields: object) -> Schedule:
    values: dict[str, object] = {
        "name": "Shop nightly",
        "connection_profile_id": "local-shop",
        "database_name": "shop",
        "compress_output": False,
    }
    values.update(fields)
    return Schedule(**values)


def python_command(script: str) -> ExternalCommand:
    return ExternalCommand(argv=[sys.executable, "-c", script])


def test_standard_dump_writes_schema_and_batched_inserts(settings: Settings, profile: ConnectionProfile) -> None:
    updates: list[ProgressUpdate] = []
    result = BackupExecutor(settings).run(profile, make_schedule(), progress=updates.append)

    dump_path = Path(result.output_path)
    assert dump_path.name == "shop.sql"
    assert dump_path.is_relative_to(settings.default_output_root)
    assert result.is_compressed is False
    assert result.table_count == 3
    assert result.row_count == ORDER_ROWS + CUSTOMER_ROWS
    assert result.bytes_written == dump_path.stat().st_size
    assert result.hash_algorithm == "sha256"
    assert len(result.content_hash) == 64

    content = dump_path.read_text(encoding="utf-8")
    assert content.startswith("-- dbvault SQL dump (sqlite")
    assert "CREATE DATABASE IF NOT EXISTS `shop`;" in content
    assert "DROP TABLE IF EXISTS `orders`;" in content
    assert content.count("INSERT INTO `orders`") == 3
    assert content.count("INSERT INTO `customers`") == 1
    assert "-- Dumping data for table `audit_log` (empty)" in content
    assert "'O\\'Brien \\\"Quote\\\"\\nNewline'" in content
    assert "'vip\\tmember'" in content
    assert "0x01FF" in content
    assert content.rstrip().endswith("/*!40103 SET TIME_ZONE=@OLD_TIME_ZONE */;")

    assert updates[0].message == "Connecting to shop …"
    assert updates[1].message == "Preparing backup (3 tables) …"
    assert updates[1].total_tables == 3
    completes = [update for update in updates if update.stage == "TableComplete"]
    assert [update.current_table for update in completes] == ["audit_log", "customers", "orders"]
    assert [update.processed_tables for update in completes] == [1, 2, 3]
    assert completes[-1].current_table_processed_rows == ORDER_ROWS


def test_progress_is_throttled_per_table(settings: Settings, profile: ConnectionProfile) -> None:
    updates: list[ProgressUpdate] = []
    BackupExecutor(settings).run(profile, make_schedule(), progress=updates.append)

    order_progress = [
        update for update in updates if update.stage == "TableProgress" and update.current_table == "orders"
    ]
    assert [update.current_table_processed_rows for update in order_progress] == [500, 1000, 1200]
    assert order_progress[0].message == "Writing orders: 500/1,200"


@pytest.mark.parametrize(
    ("fmt", "suffix"),
    [(CompressionFormat.ZIP, ".zip"), (CompressionFormat.TAR_GZ, ".tar.gz")],
)
def test_compressed_outputs(settings: Settings, profile: ConnectionProfile, fmt: CompressionFormat, suffix: str) -> None:
    schedule = make_schedule(compress_output=True, compression_format=fmt)
    result = BackupExecutor(settings).run(profile, schedule)

    archive_path = Path(result.output_path)
    assert archive_path.name.endswith(suffix)
    assert result.is_compressed is True
    siblings = sorted(path.name for path in archive_path.parent.iterdir())
    assert siblings == [archive_path.name]

    if fmt == CompressionFormat.ZIP:
        with zipfile.ZipFile(archive_path) as archive:
            assert archive.namelist() == ["shop.sql"]
            payload = archive.read("shop.sql")
    else:
        with tarfile.open(archive_path, "r:gz") as archive:
            member = archive.extractfile("shop.sql")
            assert member is not None
            payload = member.read()
    assert payload.startswith(b"-- dbvault SQL dump")


def test_retention_keeps_newest_runs(settings: Settings, profile: ConnectionProfile) -> None:
    schedule = make_schedule(compress_output=True, retention_count=3)
    executor = BackupExecutor(settings)

    results = [executor.run(profile, schedule) for _ in range(5)]

    outputs = [Path(result.output_path) for result in results]
    assert len(set(outputs)) == 5
    root = outputs[-1].parent
    assert sorted(path.name for path in root.iterdir()) == sorted(path.name for path in outputs[-3:])


def test_zero_retention_still_keeps_latest(settings: Settings, profile: ConnectionProfile) -> None:
    schedule = make_schedule(retention_count=0)
    executor = BackupExecutor(settings)
    executor.run(profile, schedule)
    result = executor.run(profile, schedule)

    assert Path(result.output_path).exists()
    assert len(list(Path(result.output_path).parent.parent.iterdir())) == 1


def test_paused_run_produces_identical_dump(settings: Settings, profile: ConnectionProfile) -> None:
    executor = BackupExecutor(settings)
    reference = executor.run(profile, make_schedule())

    token = PauseToken(poll_seconds=0.01)
    pauses: list[float] = []

    def pause_once(update: ProgressUpdate) -> None:
        if update.stage == "TableStart" and update.current_table == "orders" and not pauses:
            token.pause()
            pauses.append(0.3)
            threading.Timer(0.3, token.resume).start()

    paused = executor.run(profile, make_schedule(), progress=pause_once, pause_token=token)

    assert pauses
    assert Path(paused.output_path) != Path(reference.output_path)
    assert Path(paused.output_path).read_bytes() == Path(reference.output_path).read_bytes()
    assert paused.content_hash == reference.content_hash


def test_cancel_during_dump_raises(settings: Settings, profile: ConnectionProfile) -> None:
    cancel = threading.Event()

    def cancel_on_orders(update: ProgressUpdate) -> None:
        if update.stage == "TableStart" and update.current_table == "orders":
            cancel.set()

    with pytest.raises(CanceledOperation):
        BackupExecutor(settings).run(profile, make_schedule(), progress=cancel_on_orders, cancel_event=cancel)


def test_fast_mode_reports_actual_rows(settings: Settings, profile: ConnectionProfile) -> None:
    updates: list[ProgressUpdate] = []
    result = BackupExecutor(settings).run(profile, make_schedule(backup_mode=BackupMode.FAST), progress=updates.append)

    assert result.row_count == ORDER_ROWS + CUSTOMER_ROWS
    starts = [update for update in updates if update.stage == "TableStart"]
    assert all(update.current_table_total_rows == 0 for update in starts)
    completes = {update.current_table: update for update in updates if update.stage == "TableComplete"}
    assert completes["orders"].current_table_total_rows == ORDER_ROWS
    assert any(update.message.startswith("(Fast) orders") for update in updates)


def test_missing_database_name_is_a_precondition(settings: Settings, profile: ConnectionProfile) -> None:
    bare_profile = profile.model_copy(update={"database": ""})
    with pytest.raises(PreconditionError, match="Select a database name"):
        BackupExecutor(settings).run(bare_profile, make_schedule(database_name=" "))


def test_relative_output_directory_is_rejected(settings: Settings, profile: ConnectionProfile) -> None:
    with pytest.raises(PreconditionError):
        BackupExecutor(settings).run(profile, make_schedule(output_directory="relative/backups"))


def test_unreachable_database_is_a_connection_error(tmp_path: Path, settings: Settings) -> None:
    broken = ConnectionProfile(
        id="broken",
        engine=DatabaseEngine.SQLITE,
        url=f"sqlite:///{(tmp_path / 'missing' / 'nested' / 'shop.db').as_posix()}",
        database="shop",
    )
    with pytest.raises(BackupConnectionError):
        BackupExecutor(settings).run(broken, make_schedule())


def test_custom_output_directory_is_used(tmp_path: Path, settings: Settings, profile: ConnectionProfile) -> None:
    target = tmp_path / "custom-out"
    result = BackupExecutor(settings).run(profile, make_schedule(output_directory=target.as_posix()))

    assert Path(result.output_path).is_relative_to(target)
    assert Path(result.output_path).parent.parent.name.startswith("Shop nightly_")


def test_external_tool_output_is_streamed_to_file(settings: Settings, profile: ConnectionProfile) -> None:
    script = (
        "import sys\n"
        "sys.stdout.write('-- MySQL dump 10.13\\n')\n"
        "for i in range(2000):\n"
        "    sys.stdout.write('INSERT INTO t VALUES (%d);\\n' % i)\n"
    )
    runner = ExternalDumpRunner(settings, command_factory=lambda _profile, _db: python_command(script))
    chunks: list[ProgressUpdate] = []
    result = BackupExecutor(settings, external_runner=runner).run(
        profile,
        make_schedule(backup_mode=BackupMode.EXTERNAL_TOOL),
        progress=chunks.append,
    )

    content = Path(result.output_path).read_text(encoding="utf-8")
    assert content.startswith("-- MySQL dump")
    assert content.count("INSERT INTO t") == 2000
    assert any(update.stage == "External" and update.message.startswith("Received") for update in chunks)


def test_external_tool_failure_carries_stderr(tmp_path: Path, settings: Settings, profile: ConnectionProfile) -> None:
    script = "import sys\nsys.stderr.write('access denied')\nsys.exit(3)\n"
    runner = ExternalDumpRunner(settings, command_factory=lambda _profile, _db: python_command(script))

    with pytest.raises(ExternalToolError) as excinfo:
        runner.dump(profile, "shop", tmp_path / "out.sql", cancel_event=threading.Event())

    assert excinfo.value.exit_code == 3
    assert "access denied" in str(excinfo.value)
    assert excinfo.value.stderr == "access denied"


def test_missing_external_binary(tmp_path: Path, settings: Settings, profile: ConnectionProfile) -> None:
    runner = ExternalDumpRunner(
        settings,
        command_factory=lambda _profile, _db: ExternalCommand(argv=[(tmp_path / "no-such-dump").as_posix()]),
    )
    with pytest.raises(ExternalToolError, match="could not be started"):
        runner.dump(profile, "shop", tmp_path / "out.sql", cancel_event=threading.Event())


def test_external_tool_cancel_kills_process(tmp_path: Path, settings: Settings, profile: ConnectionProfile) -> None:
    script = "import sys, time\nwhile True:\n    sys.stdout.write('x' * 1024)\n    sys.stdout.flush()\n    time.sleep(0.01)\n"
    runner = ExternalDumpRunner(settings, command_factory=lambda _profile, _db: python_command(script))
    cancel = threading.Event()
    threading.Timer(0.3, cancel.set).start()

    with pytest.raises(CanceledOperation):
        runner.dump(profile, "shop", tmp_path / "out.sql", cancel_event=cancel)


def test_dump_commands_keep_password_out_of_argv(settings: Settings) -> None:
    mysql = ConnectionProfile(id="m", engine=DatabaseEngine.MYSQL, host="db", username="backup", password="s3cret")
    command = build_dump_command(settings, mysql, "shop")
    assert command.argv == ["mysqldump", "--host=db", "--port=3306", "--user=backup", "shop"]
    assert command.env == {"MYSQL_PWD": "s3cret"}
    assert command.tool_name == "mysqldump"

    postgres = ConnectionProfile(id="p", engine=DatabaseEngine.POSTGRESQL, host="db", port=6543, username="pg", password="pw")
    command = build_dump_command(settings, postgres, "shop")
    assert "pw" not in " ".join(command.argv)
    assert "--port=6543" in command.argv
    assert command.env == {"PGPASSWORD": "pw"}

    sqlite = ConnectionProfile(id="s", engine=DatabaseEngine.SQLITE, url="sqlite:///x.db")
    with pytest.raises(PreconditionError):
        build_dump_command(settings, sqlite, "shop")


def test_fast_mode_with_stale_estimate_completes_on_written_rows(
    monkeypatch: pytest.MonkeyPatch,
    settings: Settings,
    profile: ConnectionProfile,
) -> None:
    monkeypatch.setattr(DatabaseConnection, "get_approx_row_count", lambda self, table: 1000)
    updates: list[ProgressUpdate] = []

    result = BackupExecutor(settings).run(profile, make_schedule(backup_mode=BackupMode.FAST), progress=updates.append)

    audit = [update for update in updates if update.current_table == "audit_log"]
    assert audit[0].stage == "TableStart"
    assert audit[0].current_table_total_rows == 1000
    assert audit[-1].stage == "TableComplete"
    assert audit[-1].current_table_total_rows == 0
    assert audit[-1].current_table_processed_rows == 0
    assert updates[-1].processed_tables == updates[-1].total_tables == 3
    assert result.row_count == ORDER_ROWS + CUSTOMER_ROWS
