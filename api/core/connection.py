"""
Connection manager.

Owns the resolved backend configuration and the single live handle (SQLite)
or pool (PostgreSQL) built from it. The handle is created on first use,
cached, and only ever replaced wholesale: `close()` drops it and the next
call builds a fresh one from the same configuration.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping

from .backends import Backend, create_backend
from .config import BackendConfig, BackendKind, resolve_config
from .errors import ConnectivityError, DatabaseError

logger = logging.getLogger(__name__)

_PROBE_SQL = {
    BackendKind.SQLITE: "SELECT datetime('now') AS now",
    BackendKind.POSTGRES: "SELECT NOW() AS now",
}


class ConnectionManager:
    def __init__(
        self,
        config: BackendConfig | None = None,
        *,
        overrides: Mapping[str, Any] | None = None,
    ) -> None:
        self._config = config
        self._overrides = dict(overrides or {})
        self._backend: Backend | None = None
        self._lock = asyncio.Lock()

    @property
    def config(self) -> BackendConfig:
        # Resolved once; later environment changes are not picked up.
        if self._config is None:
            self._config = resolve_config(self._overrides)
        return self._config

    @property
    def kind(self) -> BackendKind:
        return self.config.kind

    @property
    def is_connected(self) -> bool:
        return self._backend is not None

    async def connect(self) -> Backend:
        """
        Return the live backend, opening it on first use.

        Raises ConnectivityError when the engine cannot be opened or reached.
        """
        backend = self._backend
        if backend is not None:
            return backend

        async with self._lock:
            if self._backend is None:
                backend = create_backend(self.config)
                await backend.open()
                self._backend = backend
                logger.info("db_connected backend=%s target=%s", self.kind.value, self.config.describe())
            return self._backend

    async def ping(self) -> Any:
        """
        Run a trivial round-trip and return the server clock.

        Raises ConnectivityError if the round-trip does not succeed.
        """
        backend = await self.connect()
        try:
            row = await backend.fetch_one(_PROBE_SQL[self.kind], timeout_s=self.config.query_timeout_s)
        except DatabaseError as exc:
            raise ConnectivityError(f"Connection test failed: {exc}", backend=self.kind.value) from exc
        return row["now"] if row else None

    async def test_connection(self) -> bool:
        try:
            now = await self.ping()
        except ConnectivityError as exc:
            logger.warning("db_connection_test_failed backend=%s error=%s", self.kind.value, exc)
            return False
        logger.info("db_connection_test_ok backend=%s now=%s", self.kind.value, now)
        return True

    async def close(self) -> None:
        async with self._lock:
            backend, self._backend = self._backend, None
        if backend is None:
            return None
        await backend.close()
        logger.info("db_closed backend=%s", self.kind.value)
