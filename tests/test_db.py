from __future__ import annotations

import asyncio
import time
from pathlib import Path

import pytest

from core import db as core_db
from core.config import BackendConfig, BackendKind
from core.db import Database
from core.errors import ConnectivityError, DatabaseError, QueryError, QueryTimeoutError, ScriptError

ENDLESS_QUERY = """
    WITH RECURSIVE counter(x) AS (
      SELECT 1
      UNION ALL
      SELECT x + 1 FROM counter
    )
    SELECT COUNT(*) AS n FROM counter
"""

# Yields rows as it goes, so the work happens in the fetch, not the execute.
STREAMING_QUERY = """
    WITH RECURSIVE counter(x) AS (
      SELECT 1
      UNION ALL
      SELECT x + 1 FROM counter
      LIMIT 20000000
    )
    SELECT x FROM counter
"""


async def test_fresh_database_has_no_users(ready_database: Database) -> None:
    assert await ready_database.query_one("SELECT COUNT(*) as n FROM users", []) == {"n": 0}


async def test_insert_reports_affected_rows_and_new_id(ready_database: Database) -> None:
    result = await ready_database.execute("INSERT INTO tags (name) VALUES (?)", ["culture"])

    assert result.affected == 1
    assert isinstance(result.generated_id, int)
    assert result.generated_id > 0
    row = await ready_database.query_one("SELECT name FROM tags WHERE id = ?", [result.generated_id])
    assert row == {"name": "culture"}


async def test_update_has_no_generated_id(ready_database: Database) -> None:
    result = await ready_database.execute("UPDATE tags SET icon = ? WHERE name <> ?", ["*", "festival"])

    assert result.affected == 3
    assert result.generated_id is None


async def test_query_all_returns_dict_rows_in_order(ready_database: Database) -> None:
    rows = await ready_database.query_all("SELECT name FROM tags WHERE name IN (?, ?) ORDER BY name", ("cuisine", "history"))
    assert rows == [{"name": "cuisine"}, {"name": "history"}]


async def test_query_one_without_rows_is_none(ready_database: Database) -> None:
    assert await ready_database.query_one("SELECT * FROM tags WHERE name = ?", ["missing"]) is None


async def test_bad_sql_raises_query_error(database: Database) -> None:
    with pytest.raises(QueryError) as excinfo:
        await database.query_all("SELECT * FROM no_such_table")

    assert excinfo.value.backend == "sqlite"
    assert excinfo.value.sql == "SELECT * FROM no_such_table"
    # The handle survives a failed statement.
    assert await database.query_one("SELECT 1 AS ok") == {"ok": 1}


async def test_constraint_violation_raises_query_error(ready_database: Database) -> None:
    with pytest.raises(QueryError):
        await ready_database.execute("INSERT INTO tags (name) VALUES (?)", ["festival"])


async def test_concurrent_queries_are_serialized(ready_database: Database) -> None:
    results = await asyncio.gather(
        *(ready_database.query_all("SELECT COUNT(*) AS n FROM tags WHERE id > ?", [i % 3]) for i in range(50))
    )

    assert len(results) == 50
    assert all(len(rows) == 1 for rows in results)
    assert results[0] == [{"n": 4}]


async def test_concurrent_writes_all_land(ready_database: Database) -> None:
    await asyncio.gather(
        *(ready_database.execute("INSERT INTO tags (name) VALUES (?)", [f"tag-{i}"]) for i in range(20))
    )
    assert await ready_database.query_one("SELECT COUNT(*) AS n FROM tags") == {"n": 24}


async def test_execute_script_runs_statements_in_order(database: Database) -> None:
    script = """
        CREATE TABLE a (id INTEGER PRIMARY KEY AUTOINCREMENT, flag BOOLEAN NOT NULL DEFAULT 1);
        CREATE TABLE b (id INTEGER PRIMARY KEY AUTOINCREMENT, a_id INTEGER);
        CREATE TRIGGER trg_b AFTER INSERT ON b
        BEGIN
          UPDATE a SET flag = 0 WHERE id = NEW.a_id;
        END;
    """
    await database.execute_script(script)
    await database.execute("INSERT INTO a DEFAULT VALUES")
    await database.execute("INSERT INTO b (a_id) VALUES (?)", [1])

    assert await database.query_one("SELECT flag FROM a WHERE id = 1") == {"flag": 0}
    assert await database.list_tables() == ["a", "b"]


async def test_execute_script_stops_at_first_failure(database: Database) -> None:
    script = """
        CREATE TABLE a (id INTEGER PRIMARY KEY);
        CREATE TRIGGER trg_b AFTER INSERT ON b
        BEGIN
          UPDATE a SET id = id WHERE id = NEW.id;
        END;
        CREATE TABLE b (id INTEGER PRIMARY KEY);
    """
    with pytest.raises(ScriptError) as excinfo:
        await database.execute_script(script)

    assert excinfo.value.index == 2
    assert excinfo.value.preview.startswith("CREATE TRIGGER trg_b")
    assert isinstance(excinfo.value, QueryError)
    # Statements before the failure stay applied, later ones never ran.
    assert await database.table_exists("a") is True
    assert await database.table_exists("b") is False


async def test_timeout_interrupts_and_recovers(database: Database) -> None:
    with pytest.raises(QueryTimeoutError) as excinfo:
        await database.query_one(ENDLESS_QUERY, timeout_s=0.2)

    assert isinstance(excinfo.value, TimeoutError)
    assert isinstance(excinfo.value, DatabaseError)
    assert await database.query_one("SELECT 2 AS n") == {"n": 2}


async def test_timeout_abandons_a_long_fetch(database: Database) -> None:
    started = time.monotonic()
    with pytest.raises(QueryTimeoutError):
        await database.query_all(STREAMING_QUERY, timeout_s=0.05)
    elapsed = time.monotonic() - started

    assert elapsed < 1.0
    assert await database.query_all("SELECT 3 AS n") == [{"n": 3}]


async def test_upsert_that_updates_has_no_generated_id(ready_database: Database) -> None:
    upsert = "INSERT INTO tags (name, icon) VALUES (?, ?) ON CONFLICT (name) DO UPDATE SET icon = excluded.icon"
    first = await ready_database.execute(upsert, ["culture", "a"])
    other = await ready_database.execute(upsert, ["other", "b"])

    again = await ready_database.execute(upsert, ["culture", "c"])

    assert first.generated_id is not None
    assert other.generated_id == first.generated_id + 1
    assert again.affected == 1
    assert again.generated_id is None
    assert await ready_database.query_one("SELECT icon FROM tags WHERE id = ?", [first.generated_id]) == {"icon": "c"}


async def test_returning_id_clause_is_empty_on_sqlite(database: Database) -> None:
    assert database.returning_id_clause() == ""


async def test_test_connection_and_close(database: Database) -> None:
    assert await database.test_connection() is True
    assert database.manager.is_connected is True

    await database.close()
    assert database.manager.is_connected is False
    # A closed manager opens a fresh handle on next use.
    assert await database.query_one("SELECT 1 AS ok") == {"ok": 1}


async def test_unreachable_file_raises_connectivity_error(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    database = Database(config=BackendConfig(kind=BackendKind.SQLITE, path=str(blocker / "sub" / "app.db")))
    try:
        with pytest.raises(ConnectivityError):
            await database.query_all("SELECT 1")
        assert await database.test_connection() is False
    finally:
        await database.close()


async def test_module_helpers_use_process_database(sqlite_config: BackendConfig) -> None:
    with pytest.raises(RuntimeError):
        core_db.database()

    database = core_db.init_db(config=sqlite_config)
    try:
        assert core_db.init_db() is database
        await core_db.execute_script("CREATE TABLE notes (id INTEGER PRIMARY KEY AUTOINCREMENT, body TEXT);")
        result = await core_db.execute("INSERT INTO notes (body) VALUES (?)", ["hello"])
        assert result.generated_id == 1
        assert await core_db.query_all("SELECT body FROM notes") == [{"body": "hello"}]
        assert await core_db.query_one("SELECT COUNT(*) AS n FROM notes") == {"n": 1}
        with pytest.raises(QueryTimeoutError):
            await core_db.query_all(STREAMING_QUERY, timeout_s=0.05)
        assert await core_db.query_one("SELECT COUNT(*) AS n FROM notes", timeout_s=1.0) == {"n": 1}
    finally:
        await core_db.close_db()

    with pytest.raises(RuntimeError):
        core_db.database()
