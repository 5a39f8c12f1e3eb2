from __future__ import annotations

import json
import os
from pathlib import Path

from dbvault.backups.notifications import CallbackNotifier, deliver
from dbvault.sources.connection import DatabaseConnection
from dbvault.sources.profiles import ConnectionProfile, DatabaseEngine, JsonProfileProvider


def test_profile_urls_and_labels() -> None:
    mysql = ConnectionProfile(id="m", name="Prod", host="db.internal", username="backup", password="pw", database="shop")
    url = mysql.to_url()
    assert url.drivername == "mysql+pymysql"
    assert url.port == 3306
    assert url.database == "shop"
    assert mysql.to_url("other").database == "other"
    assert mysql.label == "Prod (backup@db.internal:3306)"
    assert "pw" not in repr(mysql)

    postgres = ConnectionProfile(id="p", engine=DatabaseEngine.POSTGRESQL, driver="psycopg2", port=6543)
    assert postgres.to_url("shop").drivername == "postgresql+psycopg2"
    assert postgres.to_url("shop").port == 6543

    override = ConnectionProfile(id="o", url="postgresql+psycopg://u@h/base")
    assert override.to_url("shop").database == "shop"

    sqlite = ConnectionProfile(id="s", display_name="Local file", engine=DatabaseEngine.SQLITE, url="sqlite:///x.db")
    assert sqlite.to_url("ignored").database == "x.db"
    assert sqlite.label == "Local file"


def test_json_provider_reloads_on_change(tmp_path: Path) -> None:
    path = tmp_path / "profiles.json"
    provider = JsonProfileProvider(path)
    assert provider.get_profile("a") is None

    path.write_text(json.dumps([{"id": "a", "name": "First"}, {"name": "no id"}]), encoding="utf-8")
    assert provider.get_profile("a").name == "First"

    path.write_text(json.dumps({"profiles": [{"id": "a", "name": "Second"}]}), encoding="utf-8")
    stat = path.stat()
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + 1_000_000))
    assert provider.get_profile("a").name == "Second"

    returned = provider.get_profile("a")
    returned.name = "changed"
    assert provider.get_profile("a").name == "Second"


def test_sqlite_connection_catalog(profile: ConnectionProfile) -> None:
    with DatabaseConnection(profile, "shop") as connection:
        assert connection.dialect_name == "sqlite"
        assert connection.list_tables() == ["audit_log", "customers", "orders"]
        assert connection.get_row_count("orders") == 1200
        assert connection.get_approx_row_count("orders") == 0
        assert connection.get_server_session_variables() == {}
        assert connection.get_create_statement("orders").startswith("CREATE TABLE orders")
        batches = list(connection.stream_rows("customers", 10))

    assert [len(batch.rows) for batch in batches] == [10, 10, 5]
    assert batches[0].columns == ("id", "name", "note", "balance", "joined_on", "avatar")


def test_notification_failures_are_swallowed() -> None:
    def broken(_title: str, _message: str) -> None:
        raise RuntimeError("toast service down")

    deliver(CallbackNotifier(broken), "Backup completed", "ok")
    deliver(None, "Backup completed", "ok")
