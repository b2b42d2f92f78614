"""
Async database access helpers (raw SQL) over SQLite or PostgreSQL.

This module owns the process-wide `Database`. FastAPI creates it on startup
and closes it on shutdown (see `api/main.py`). Feature code imports the
module-level helpers and never opens its own connections.

SQL parameter style:
- always `?` positional placeholders with a params sequence
- values are bound by the driver, never formatted into SQL text
- on PostgreSQL the placeholders are renumbered to $1, $2, ... for asyncpg

Only schema scripts go through dialect translation (`execute_script`).
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Sequence

from . import dialect
from .backends import MutationResult
from .config import BackendConfig, BackendKind
from .connection import ConnectionManager
from .errors import QueryError, QueryTimeoutError, ScriptError, preview_sql
from .splitter import split_statements

logger = logging.getLogger(__name__)


class Database:
    def __init__(
        self,
        manager: ConnectionManager | None = None,
        *,
        config: BackendConfig | None = None,
        overrides: Mapping[str, Any] | None = None,
    ) -> None:
        self.manager = manager or ConnectionManager(config, overrides=overrides)

    @property
    def config(self) -> BackendConfig:
        return self.manager.config

    @property
    def kind(self) -> BackendKind:
        return self.manager.kind

    def _timeout(self, timeout_s: float | None) -> float | None:
        return self.config.query_timeout_s if timeout_s is None else timeout_s

    async def query_all(
        self,
        sql: str,
        params: Sequence[Any] = (),
        *,
        timeout_s: float | None = None,
    ) -> list[dict[str, Any]]:
        """
        Run a query and return all rows as a list of dicts.
        """
        backend = await self.manager.connect()
        return await backend.fetch_all(sql, params, timeout_s=self._timeout(timeout_s))

    async def query_one(
        self,
        sql: str,
        params: Sequence[Any] = (),
        *,
        timeout_s: float | None = None,
    ) -> dict[str, Any] | None:
        """
        Run a query and return the first row as a dict (or None).
        """
        backend = await self.manager.connect()
        return await backend.fetch_one(sql, params, timeout_s=self._timeout(timeout_s))

    async def execute(
        self,
        sql: str,
        params: Sequence[Any] = (),
        *,
        timeout_s: float | None = None,
    ) -> MutationResult:
        """
        Run INSERT/UPDATE/DELETE and report rows affected plus the new id.

        On PostgreSQL the id is only filled in when the statement ends with
        `returning_id_clause()`.
        """
        backend = await self.manager.connect()
        return await backend.execute(sql, params, timeout_s=self._timeout(timeout_s))

    async def execute_script(self, canonical_sql: str, *, timeout_s: float | None = None) -> None:
        """
        Translate, split and run a multi-statement script, in order.

        Stops at the first failing statement and raises ScriptError with its
        1-based index and a preview.
        """
        statements = split_statements(dialect.translate(canonical_sql, self.kind))
        backend = await self.manager.connect()
        timeout = self._timeout(timeout_s)

        for index, statement in enumerate(statements, start=1):
            preview = preview_sql(statement)
            logger.info("db_script_statement index=%s total=%s sql=%s", index, len(statements), preview)
            try:
                await backend.run_statement(statement, timeout_s=timeout)
            except (QueryError, QueryTimeoutError) as exc:
                logger.error(
                    "db_script_failed index=%s backend=%s error=%s sql=%s",
                    index,
                    self.kind.value,
                    exc,
                    preview_sql(statement, 200),
                )
                raise ScriptError(
                    f"Statement {index} failed: {exc}",
                    index=index,
                    preview=preview,
                    backend=self.kind.value,
                    sql=statement,
                ) from exc

    async def list_tables(self) -> list[str]:
        """
        Names of existing user tables, sorted.
        """
        rows = await self.query_all(dialect.list_tables_query(self.kind))
        return [str(row["name"]) for row in rows]

    async def table_exists(self, name: str) -> bool:
        row = await self.query_one(dialect.table_exists_query(self.kind), (name,))
        return row is not None

    def returning_id_clause(self) -> str:
        return dialect.returning_id_clause(self.kind)

    async def test_connection(self) -> bool:
        return await self.manager.test_connection()

    async def close(self) -> None:
        await self.manager.close()


_db: Database | None = None


def init_db(
    *,
    config: BackendConfig | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Database:
    """
    Create the process-wide Database. The connection itself opens lazily.
    """
    global _db
    if _db is None:
        _db = Database(config=config, overrides=overrides)
    return _db


async def close_db() -> None:
    global _db
    if _db is None:
        return None
    await _db.close()
    _db = None


def database() -> Database:
    if _db is None:
        raise RuntimeError("Database is not initialized. Call init_db() on startup.")
    return _db


async def query_all(sql: str, params: Sequence[Any] = (), *, timeout_s: float | None = None) -> list[dict[str, Any]]:
    return await database().query_all(sql, params, timeout_s=timeout_s)


async def query_one(sql: str, params: Sequence[Any] = (), *, timeout_s: float | None = None) -> dict[str, Any] | None:
    return await database().query_one(sql, params, timeout_s=timeout_s)


async def execute(sql: str, params: Sequence[Any] = (), *, timeout_s: float | None = None) -> MutationResult:
    return await database().execute(sql, params, timeout_s=timeout_s)


async def execute_script(canonical_sql: str, *, timeout_s: float | None = None) -> None:
    await database().execute_script(canonical_sql, timeout_s=timeout_s)
