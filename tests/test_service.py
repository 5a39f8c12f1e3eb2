from __future__ import annotations

import threading
from pathlib import Path

import pytest

from dbvault.backups.notifications import CallbackNotifier
from dbvault.backups.service import artifact_label, format_bytes
from dbvault.backups.types import TaskEvent, TaskState
from dbvault.core.config import Settings
from dbvault.core.container import ServiceContainer, build_services
from dbvault.core.errors import BackupConflictError, ScheduleNotFoundError
from dbvault.core.path_safety import PathSafetyError
from dbvault.db.models import CompressionFormat, RunOrigin, Schedule
from dbvault.sources.profiles import ConnectionProfile, DatabaseEngine, InMemoryProfileProvider


def save(services: ServiceContainer, **fields: object) -> Schedule:
    values: dict[str, object] = {"name": "Shop nightly", "connection_profile_id": "local-shop", "database_name": "shop"}
    values.update(fields)
    return services.service.save_schedule(Schedule(**values))


@pytest.mark.parametrize(
    ("size", "expected"),
    [(0, "0 B"), (512, "512 B"), (1024, "1 KB"), (1536, "1.5 KB"), (5 * 1024**3, "5 GB")],
)
def test_format_bytes(size: int, expected: str) -> None:
    assert format_bytes(size) == expected


def test_artifact_label() -> None:
    assert artifact_label(Schedule(compress_output=False)) == "sql"
    assert artifact_label(Schedule(compression_format=CompressionFormat.TAR_GZ)) == "tar.gz"
    assert artifact_label(Schedule()) == "zip"


def test_save_schedule_computes_next_run(services: ServiceContainer) -> None:
    schedule = save(services)
    assert schedule.next_run_at is not None
    assert services.schedules.get(schedule.id).next_run_at == schedule.next_run_at


def test_save_schedule_rejects_unsafe_output_directory(services: ServiceContainer) -> None:
    with pytest.raises(PathSafetyError):
        save(services, output_directory="~/backups")
    assert services.schedules.list() == []


def test_successful_run_records_history_and_notifies(
    services: ServiceContainer,
    notifications: list[tuple[str, str]],
) -> None:
    schedule = save(services)

    entry = services.service.run_schedule(schedule.id, RunOrigin.SCHEDULED)

    assert entry.success is True
    assert entry.origin == RunOrigin.SCHEDULED
    assert entry.message.startswith("Created zip (")
    assert entry.message.endswith("· Health passed.")
    assert entry.health_passed is True
    assert entry.health_details == "Structure validated."
    assert Path(entry.output_path).is_file()
    assert entry.file_size_bytes == Path(entry.output_path).stat().st_size
    assert entry.hash_algorithm == "sha256"
    assert notifications == [("Backup completed", "Shop nightly finished successfully.")]

    stored = services.schedules.get(schedule.id)
    assert stored.last_run_at == entry.completed_at
    assert stored.next_run_at is not None and stored.next_run_at > entry.completed_at
    assert services.history.list(schedule_id=schedule.id) == [entry]

    task = services.monitor.recent_tasks()[0]
    assert task.state == TaskState.COMPLETED
    assert task.origin == RunOrigin.SCHEDULED
    assert task.connection_label == "Local shop"


def test_missing_profile_is_recorded_as_skipped(
    services: ServiceContainer,
    notifications: list[tuple[str, str]],
) -> None:
    schedule = save(services, connection_profile_id="ghost")

    entry = services.service.run_schedule(schedule.id)

    assert entry.success is False
    assert entry.message == "Connection profile missing"
    assert notifications == [("Backup skipped", "Profile missing for Shop nightly.")]
    task = services.monitor.recent_tasks()[0]
    assert task.state == TaskState.FAILED
    assert task.connection_label == "(missing profile)"
    assert services.schedules.get(schedule.id).last_run_at is None


def test_failed_run_notifies_and_keeps_last_run(
    tmp_path: Path,
    settings: Settings,
    notifications: list[tuple[str, str]],
) -> None:
    broken = ConnectionProfile(
        id="broken",
        name="Broken",
        engine=DatabaseEngine.SQLITE,
        url=f"sqlite:///{(tmp_path / 'nowhere' / 'db.sqlite').as_posix()}",
        database="shop",
    )
    services = build_services(
        settings,
        profiles=InMemoryProfileProvider([broken]),
        notifier=CallbackNotifier(lambda title, message: notifications.append((title, message))),
    )
    schedule = save(services, connection_profile_id="broken")

    entry = services.service.run_schedule(schedule.id)

    assert entry.success is False
    assert "Cannot connect to Broken" in entry.message
    assert notifications[0][0] == "Backup failed"
    assert services.schedules.get(schedule.id).last_run_at is None
    assert services.schedules.get(schedule.id).next_run_at is not None
    assert services.monitor.recent_tasks()[0].state == TaskState.FAILED


def test_cancel_through_monitor_records_canceled_entry(
    services: ServiceContainer,
    notifications: list[tuple[str, str]],
) -> None:
    schedule = save(services)
    canceled: list[str] = []

    def cancel_on_table_start(event: TaskEvent) -> None:
        if event.kind == "progress" and event.task.stage == "TableStart" and not canceled:
            canceled.append(event.task.task_id)
            services.monitor.cancel_task(event.task.task_id)

    services.monitor.add_listener(cancel_on_table_start)

    entry = services.service.run_schedule(schedule.id)

    assert canceled
    assert entry.success is False
    assert entry.message == "Canceled by user."
    assert notifications == []
    task = services.monitor.get_task(canceled[0])
    assert task.state == TaskState.CANCELLED
    assert services.history.list()[0].message == "Canceled by user."


def test_concurrent_run_of_same_schedule_conflicts(settings: Settings, profile: ConnectionProfile) -> None:
    entered = threading.Event()
    release = threading.Event()

    def block(_title: str, _message: str) -> None:
        entered.set()
        release.wait(5)

    services = build_services(
        settings,
        profiles=InMemoryProfileProvider([profile]),
        notifier=CallbackNotifier(block),
    )
    schedule = save(services)

    task = services.service.start_manual_run(schedule.id)
    assert entered.wait(10)
    assert services.service.is_running(schedule.id)

    try:
        services.service.run_schedule(schedule.id)
    except BackupConflictError:
        pass
    else:
        raise AssertionError("Expected a running schedule to reject a second run")

    release.set()
    assert services.service.wait_for_task(task.task_id, timeout=10)
    assert not services.service.is_running(schedule.id)
    assert services.monitor.get_task(task.task_id).state == TaskState.COMPLETED


def test_run_unknown_schedule_raises(services: ServiceContainer) -> None:
    with pytest.raises(ScheduleNotFoundError):
        services.service.run_schedule("missing")
    with pytest.raises(ScheduleNotFoundError):
        services.service.start_manual_run("missing")


def test_schedule_deleted_during_run_keeps_history(services: ServiceContainer) -> None:
    schedule = save(services)

    def delete_on_table_start(event: TaskEvent) -> None:
        if event.kind == "progress" and event.task.stage == "TableStart" and services.schedules.find(schedule.id):
            services.schedules.delete(schedule.id)

    services.monitor.add_listener(delete_on_table_start)

    entry = services.service.run_schedule(schedule.id)

    assert entry.success is True
    assert services.schedules.find(schedule.id) is None
    assert services.history.list(schedule_id=schedule.id) == [entry]
