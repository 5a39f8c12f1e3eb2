from __future__ import annotations

import os
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Iterator

import pytest
from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    LargeBinary,
    MetaData,
    Numeric,
    String,
    Table,
    create_engine,
    insert,
)

from dbvault.backups.notifications import CallbackNotifier
from dbvault.core.config import Settings, get_settings
from dbvault.core.container import ServiceContainer, build_services
from dbvault.sources.profiles import ConnectionProfile, DatabaseEngine, InMemoryProfileProvider

ORDER_ROWS = 1200
CUSTOMER_ROWS = 25


def configure_settings(tmp_path: Path, **overrides: str) -> Settings:
    for key in [key for key in os.environ if key.startswith("DBVAULT_")]:
        del os.environ[key]

    state_root = tmp_path / "state"
    state_root.mkdir(parents=True, exist_ok=True)
    os.environ["DBVAULT_STATE_ROOT"] = state_root.as_posix()
    os.environ["DBVAULT_SCHEDULER_ENABLED"] = "false"
    os.environ["DBVAULT_PAUSE_POLL_INTERVAL_MS"] = "20"
    for key, value in overrides.items():
        os.environ[f"DBVAULT_{key.upper()}"] = value

    get_settings.cache_clear()
    return get_settings()


def build_source_database(path: Path) -> Path:
    engine = create_engine(f"sqlite:///{path.as_posix()}")
    metadata = MetaData()
    customers = Table(
        "customers",
        metadata,
        Column("id", Integer, primary_key=True),
        Column("name", String(100), nullable=False),
        Column("note", String(200)),
        Column("balance", Numeric(10, 2)),
        Column("joined_on", Date),
        Column("avatar", LargeBinary),
    )
    orders = Table(
        "orders",
        metadata,
        Column("id", Integer, primary_key=True),
        Column("customer_id", Integer, ForeignKey("customers.id")),
        Column("total", Integer, nullable=False),
        Column("placed_at", DateTime),
    )
    Table("audit_log", metadata, Column("id", Integer, primary_key=True), Column("entry", String(50)))
    metadata.create_all(engine)

    with engine.begin() as conn:
        conn.execute(
            insert(customers),
            [
                {
                    "id": index + 1,
                    "name": f"Customer {index + 1}" if index else "O'Brien \"Quote\"\nNewline",
                    "note": None if index % 3 else "vip\tmember",
                    "balance": Decimal("10.50") * index,
                    "joined_on": date(2024, 1, 1 + index % 28),
                    "avatar": bytes([index % 256, 255]) if index % 2 else None,
                }
                for index in range(CUSTOMER_ROWS)
            ],
        )
        conn.execute(
            insert(orders),
            [
                {
                    "id": index + 1,
                    "customer_id": index % CUSTOMER_ROWS + 1,
                    "total": index * 7,
                    "placed_at": datetime(2025, 5, 1, 12, 0, index % 60),
                }
                for index in range(ORDER_ROWS)
            ],
        )
    engine.dispose()
    return path


@pytest.fixture(autouse=True)
def isolated_environment() -> Iterator[None]:
    yield
    for key in [key for key in os.environ if key.startswith("DBVAULT_")]:
        del os.environ[key]
    get_settings.cache_clear()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return configure_settings(tmp_path)


@pytest.fixture
def source_db(tmp_path: Path) -> Path:
    return build_source_database(tmp_path / "shop.db")


@pytest.fixture
def profile(source_db: Path) -> ConnectionProfile:
    return ConnectionProfile(
        id="local-shop",
        name="Local shop",
        engine=DatabaseEngine.SQLITE,
        url=f"sqlite:///{source_db.as_posix()}",
        database="shop",
    )


@pytest.fixture
def notifications() -> list[tuple[str, str]]:
    return []


@pytest.fixture
def services(settings: Settings, profile: ConnectionProfile, notifications: list[tuple[str, str]]) -> ServiceContainer:
    return build_services(
        settings,
        profiles=InMemoryProfileProvider([profile]),
        notifier=CallbackNotifier(lambda title, message: notifications.append((title, message))),
    )
