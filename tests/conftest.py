from __future__ import annotations

from pathlib import Path

import pytest
import pytest_asyncio

from core import db as core_db
from core.bootstrap import SchemaBootstrapper
from core.config import BackendConfig, BackendKind
from core.db import Database


@pytest.fixture
def sqlite_config(tmp_path: Path) -> BackendConfig:
    return BackendConfig(kind=BackendKind.SQLITE, path=str(tmp_path / "data" / "app.db"), query_timeout_s=5.0)


@pytest_asyncio.fixture
async def database(sqlite_config: BackendConfig):
    database = Database(config=sqlite_config)
    try:
        yield database
    finally:
        await database.close()


@pytest_asyncio.fixture
async def ready_database(database: Database):
    bootstrapper = SchemaBootstrapper(database)
    assert await bootstrapper.run() is True
    return database


@pytest.fixture(autouse=True)
def _reset_module_database(monkeypatch):
    """Each test starts without a process-wide Database."""
    monkeypatch.setattr(core_db, "_db", None)
