from __future__ import annotations

from dataclasses import dataclass

from dbvault.backups.executor import BackupExecutor
from dbvault.backups.external import CommandFactory, ExternalDumpRunner
from dbvault.backups.health import HealthVerifier
from dbvault.backups.monitor import TaskMonitor
from dbvault.backups.notifications import LoggingNotifier, Notifier
from dbvault.backups.runner import SchedulerRunner
from dbvault.backups.service import BackupService
from dbvault.core.config import Settings
from dbvault.db.repositories import HistoryRepository, ScheduleRepository
from dbvault.db.store import StateStore
from dbvault.sources.connection import EngineFactory
from dbvault.sources.profiles import InMemoryProfileProvider, JsonProfileProvider, ProfileProvider


@dataclass(slots=True)
class ServiceContainer:
    settings: Settings
    store: StateStore
    schedules: ScheduleRepository
    history: HistoryRepository
    profiles: ProfileProvider
    monitor: TaskMonitor
    executor: BackupExecutor
    health: HealthVerifier
    service: BackupService
    runner: SchedulerRunner


def build_services(
    settings: Settings,
    *,
    profiles: ProfileProvider | None = None,
    notifier: Notifier | None = None,
    engine_factory: EngineFactory | None = None,
    command_factory: CommandFactory | None = None,
) -> ServiceContainer:
    if profiles is None:
        profiles = JsonProfileProvider(settings.profiles_path) if settings.profiles_path else InMemoryProfileProvider()

    store = StateStore(settings)
    schedules = ScheduleRepository(store)
    history = HistoryRepository(settings, store)
    monitor = TaskMonitor(recent_capacity=settings.recent_tasks_capacity)
    executor = BackupExecutor(
        settings,
        engine_factory=engine_factory,
        external_runner=ExternalDumpRunner(settings, command_factory),
    )
    health = HealthVerifier(settings)
    service = BackupService(
        settings,
        schedules=schedules,
        history=history,
        profiles=profiles,
        monitor=monitor,
        executor=executor,
        health=health,
        notifier=notifier or LoggingNotifier(),
    )
    runner = SchedulerRunner(settings, schedules=schedules, service=service)
    return ServiceContainer(
        settings=settings,
        store=store,
        schedules=schedules,
        history=history,
        profiles=profiles,
        monitor=monitor,
        executor=executor,
        health=health,
        service=service,
        runner=runner,
    )
