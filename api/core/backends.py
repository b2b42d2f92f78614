"""
Driver adapters: one class per storage engine, same async surface.

- SQLite (aiosqlite): a single process-wide handle. Every round-trip holds
  an asyncio.Lock; the engine takes one in-flight statement at a time and a
  second handle on the same file is never opened.
- PostgreSQL (asyncpg): a bounded pool. Each call acquires one member for
  the duration of the round-trip and releases it on every exit path.

Both adapters take `?` placeholders with positional params and return rows
as plain dicts.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Sequence, TypeVar

import aiosqlite
import asyncpg

from .config import BackendConfig, BackendKind
from .dialect import qmark_to_numeric
from .errors import ConnectivityError, QueryError, QueryTimeoutError

T = TypeVar("T")

logger = logging.getLogger(__name__)

_INTERRUPT_POLL_S = 0.05


@dataclass(frozen=True)
class MutationResult:
    affected: int
    generated_id: int | None = None


def _is_insert(sql: str) -> bool:
    head = sql.lstrip().split(None, 1)
    return bool(head) and head[0].upper() in ("INSERT", "REPLACE")


def _affected_from_status(status: str | None) -> int:
    """
    asyncpg command tags look like "INSERT 0 1", "UPDATE 3", "CREATE TABLE".
    """
    parts = (status or "").split()
    if parts and parts[-1].isdigit():
        return int(parts[-1])
    return 0


class SqliteBackend:
    kind = BackendKind.SQLITE

    def __init__(self, config: BackendConfig) -> None:
        self._config = config
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def path(self) -> str:
        return str(self._config.path)

    async def open(self) -> None:
        async with self._lock:
            await self._ensure_connection()

    async def _ensure_connection(self) -> aiosqlite.Connection:
        if self._closed:
            raise ConnectivityError("SQLite handle is closed.", backend=self.kind.value)
        if self._conn is not None:
            return self._conn

        path = self.path
        try:
            if path != ":memory:":
                Path(path).parent.mkdir(parents=True, exist_ok=True)
            conn = await aiosqlite.connect(path, isolation_level=None)
            conn.row_factory = sqlite3.Row
            await conn.execute("PRAGMA foreign_keys = ON")
        except (sqlite3.Error, OSError) as exc:
            raise ConnectivityError(f"Failed to open SQLite database at {path}: {exc}", backend=self.kind.value) from exc

        logger.info("sqlite_opened path=%s", path)
        self._conn = conn
        return conn

    async def _discard(self) -> None:
        conn, self._conn = self._conn, None
        if conn is None:
            return
        try:
            await conn.close()
        except sqlite3.Error:
            logger.warning("sqlite_discard_failed path=%s", self.path, exc_info=True)

    async def _run(
        self,
        sql: str,
        operation: Callable[[aiosqlite.Connection], Awaitable[T]],
        timeout_s: float | None,
    ) -> T:
        async with self._lock:
            conn = await self._ensure_connection()
            task = asyncio.ensure_future(operation(conn))
            try:
                done, _ = await asyncio.wait({task}, timeout=timeout_s or None)
            except asyncio.CancelledError:
                await conn.interrupt()
                task.cancel()
                raise

            if not done:
                await self._abandon(conn, task)
                raise QueryTimeoutError(backend=self.kind.value, timeout_s=timeout_s, sql=sql)
            try:
                return task.result()
            except sqlite3.Error as exc:
                raise QueryError(f"SQLite query failed: {exc}", backend=self.kind.value, sql=sql) from exc

    async def _abandon(self, conn: aiosqlite.Connection, task: asyncio.Future) -> None:
        # The worker thread keeps stepping the statement until interrupted, and
        # a cursor step queued after one interrupt needs another. Cancelling the
        # task alone would leave its cursor close queued behind the running fetch.
        while not task.done():
            await conn.interrupt()
            await asyncio.wait({task}, timeout=_INTERRUPT_POLL_S)
        if not task.cancelled() and task.exception() is not None:
            logger.info("sqlite_call_abandoned path=%s error=%s", self.path, task.exception())
        # The handle is dropped and reopened on next use.
        await self._discard()

    async def fetch_all(self, sql: str, params: Sequence[Any] = (), *, timeout_s: float | None = None) -> list[dict[str, Any]]:
        async def _op(conn: aiosqlite.Connection) -> list[dict[str, Any]]:
            async with conn.execute(sql, tuple(params)) as cursor:
                rows = await cursor.fetchall()
            return [dict(row) for row in rows]

        return await self._run(sql, _op, timeout_s)

    async def fetch_one(self, sql: str, params: Sequence[Any] = (), *, timeout_s: float | None = None) -> dict[str, Any] | None:
        async def _op(conn: aiosqlite.Connection) -> dict[str, Any] | None:
            async with conn.execute(sql, tuple(params)) as cursor:
                row = await cursor.fetchone()
            return dict(row) if row is not None else None

        return await self._run(sql, _op, timeout_s)

    async def execute(self, sql: str, params: Sequence[Any] = (), *, timeout_s: float | None = None) -> MutationResult:
        async def _op(conn: aiosqlite.Connection) -> MutationResult:
            # An upsert that updates reports rowcount 1 but leaves lastrowid at
            # the previous insert; only a changed last_insert_rowid() is a new row.
            async with conn.execute("SELECT last_insert_rowid()") as cursor:
                before = (await cursor.fetchone())[0]
            async with conn.execute(sql, tuple(params)) as cursor:
                affected = max(cursor.rowcount, 0)
                lastrowid = cursor.lastrowid
            generated_id = None
            if _is_insert(sql) and affected == 1 and lastrowid != before:
                generated_id = lastrowid
            return MutationResult(affected=affected, generated_id=generated_id)

        return await self._run(sql, _op, timeout_s)

    async def run_statement(self, sql: str, *, timeout_s: float | None = None) -> None:
        async def _op(conn: aiosqlite.Connection) -> None:
            await conn.execute(sql)

        await self._run(sql, _op, timeout_s)

    async def close(self) -> None:
        async with self._lock:
            self._closed = True
            await self._discard()
        logger.info("sqlite_closed path=%s", self.path)


class PostgresBackend:
    kind = BackendKind.POSTGRES

    def __init__(self, config: BackendConfig) -> None:
        self._config = config
        self._pool: asyncpg.Pool | None = None
        self._open_lock = asyncio.Lock()
        self._closed = False

    async def open(self) -> None:
        async with self._open_lock:
            if self._closed:
                raise ConnectivityError("PostgreSQL pool is closed.", backend=self.kind.value)
            if self._pool is None:
                await self._create_pool()

    async def _create_pool(self) -> None:
        cfg = self._config
        connect_kwargs: dict[str, Any]
        if cfg.dsn:
            connect_kwargs = {"dsn": cfg.dsn}
        else:
            connect_kwargs = {
                "host": cfg.host,
                "port": cfg.port,
                "database": cfg.database,
                "user": cfg.user,
                "password": cfg.password,
            }
        try:
            self._pool = await asyncpg.create_pool(
                **connect_kwargs,
                min_size=cfg.pool_min_size,
                max_size=cfg.pool_max_size,
                command_timeout=cfg.query_timeout_s,
            )
        except (OSError, asyncio.TimeoutError, asyncpg.PostgresError, asyncpg.InterfaceError) as exc:
            raise ConnectivityError(
                f"Failed to connect to PostgreSQL at {cfg.describe()}: {exc}",
                backend=self.kind.value,
            ) from exc
        logger.info("postgres_pool_opened target=%s max_size=%s", cfg.describe(), cfg.pool_max_size)

    def _pool_or_raise(self) -> asyncpg.Pool:
        if self._closed or self._pool is None:
            raise ConnectivityError("PostgreSQL pool is not open.", backend=self.kind.value)
        return self._pool

    async def _run(
        self,
        sql: str,
        operation: Callable[[asyncpg.Connection], Awaitable[T]],
        timeout_s: float | None,
    ) -> T:
        if self._pool is None and not self._closed:
            await self.open()
        pool = self._pool_or_raise()
        try:
            async with pool.acquire() as conn:
                if timeout_s:
                    # asyncpg cancels the server-side query when the task is cancelled,
                    # and the member goes back to the pool on context exit.
                    return await asyncio.wait_for(operation(conn), timeout=timeout_s)
                return await operation(conn)
        except asyncio.TimeoutError as exc:
            raise QueryTimeoutError(backend=self.kind.value, timeout_s=timeout_s, sql=sql) from exc
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
            raise QueryError(f"PostgreSQL query failed: {exc}", backend=self.kind.value, sql=sql) from exc

    async def fetch_all(self, sql: str, params: Sequence[Any] = (), *, timeout_s: float | None = None) -> list[dict[str, Any]]:
        native = qmark_to_numeric(sql)

        async def _op(conn: asyncpg.Connection) -> list[dict[str, Any]]:
            rows = await conn.fetch(native, *params)
            return [dict(r) for r in rows]

        return await self._run(sql, _op, timeout_s)

    async def fetch_one(self, sql: str, params: Sequence[Any] = (), *, timeout_s: float | None = None) -> dict[str, Any] | None:
        native = qmark_to_numeric(sql)

        async def _op(conn: asyncpg.Connection) -> dict[str, Any] | None:
            row = await conn.fetchrow(native, *params)
            return dict(row) if row is not None else None

        return await self._run(sql, _op, timeout_s)

    async def execute(self, sql: str, params: Sequence[Any] = (), *, timeout_s: float | None = None) -> MutationResult:
        """
        The new id is only known when the statement asks for it (`RETURNING id`).
        """
        native = qmark_to_numeric(sql)

        async def _op(conn: asyncpg.Connection) -> MutationResult:
            stmt = await conn.prepare(native)
            rows = await stmt.fetch(*params)
            affected = _affected_from_status(stmt.get_statusmsg())
            generated_id = None
            if rows and "id" in rows[0].keys() and affected == 1:
                generated_id = rows[0]["id"]
            return MutationResult(affected=affected, generated_id=generated_id)

        return await self._run(sql, _op, timeout_s)

    async def run_statement(self, sql: str, *, timeout_s: float | None = None) -> None:
        async def _op(conn: asyncpg.Connection) -> None:
            await conn.execute(sql)

        await self._run(sql, _op, timeout_s)

    async def close(self) -> None:
        self._closed = True
        pool, self._pool = self._pool, None
        if pool is None:
            return None
        await pool.close()
        logger.info("postgres_pool_closed target=%s", self._config.describe())


Backend = SqliteBackend | PostgresBackend


def create_backend(config: BackendConfig) -> Backend:
    if config.kind is BackendKind.POSTGRES:
        return PostgresBackend(config)
    return SqliteBackend(config)
