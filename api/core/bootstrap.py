"""
Schema bootstrap.

Flow:
1) Connect (only unreachable backends are fatal: ConnectivityError)
2) Load the canonical scripts for the backend kind and translate them
3) Split and execute them in order
4) Verify the expected tables exist
5) Run idempotent repairs (recompute derived counters from their source rows)

Everything after step 1 logs and reports failure through the return value,
so the host process keeps serving without persistence.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from . import dialect
from .config import BackendKind
from .db import Database
from .errors import ConnectivityError, DatabaseError
from .splitter import split_statements

logger = logging.getLogger(__name__)

SQL_DIR = Path(__file__).resolve().parent / "sql"

SCRIPT_SETS: dict[BackendKind, tuple[str, ...]] = {
    BackendKind.SQLITE: ("init.sql",),
    BackendKind.POSTGRES: ("init.common.sql", "init.forum.postgres.sql"),
}

EXPECTED_TABLES: frozenset[str] = frozenset(
    {
        "users",
        "user_preferences",
        "user_statistics",
        "game_progress",
        "shares",
        "tags",
        "share_tags",
        "user_share_interactions",
    }
)


@dataclass(frozen=True)
class Repair:
    name: str
    sql: str


# An existing database file can outlive schema changes; counters are
# recomputed on every start so they never drift from their source tables.
REPAIRS: tuple[Repair, ...] = (
    Repair(
        name="tag_usage_count",
        sql="""
            UPDATE tags
            SET usage_count = (
              SELECT COUNT(*) FROM share_tags WHERE share_tags.tag_id = tags.id
            )
        """,
    ),
    Repair(
        name="forum_contributions",
        sql="""
            UPDATE user_statistics
            SET forum_contributions = (
              SELECT COUNT(*) FROM shares WHERE shares.user_id = user_statistics.user_id
            )
        """,
    ),
)


class BootstrapState(str, enum.Enum):
    NOT_STARTED = "not_started"
    CONNECTED = "connected"
    TRANSLATED = "translated"
    EXECUTING = "executing"
    VERIFIED = "verified"
    REPAIRED = "repaired"
    READY = "ready"
    FAILED = "failed"


class SchemaBootstrapper:
    def __init__(
        self,
        db: Database,
        *,
        sql_dir: Path = SQL_DIR,
        script_sets: dict[BackendKind, tuple[str, ...]] | None = None,
        expected_tables: frozenset[str] = EXPECTED_TABLES,
        repairs: tuple[Repair, ...] = REPAIRS,
    ) -> None:
        self.db = db
        self.sql_dir = Path(sql_dir)
        self.script_sets = script_sets or SCRIPT_SETS
        self.expected_tables = expected_tables
        self.repairs = repairs
        self.state = BootstrapState.NOT_STARTED
        self.error: str | None = None
        self.missing_tables: list[str] = []

    def _advance(self, state: BootstrapState) -> None:
        logger.info("db_init_state backend=%s state=%s", self.db.kind.value, state.value)
        self.state = state

    def _fail(self, error: BaseException | str) -> bool:
        self.error = str(error)
        self.state = BootstrapState.FAILED
        return False

    async def run(self) -> bool:
        """
        Bootstrap the schema. Returns True once READY.

        Raises ConnectivityError when the backend cannot be reached.
        """
        kind = self.db.kind
        logger.info("db_init_start backend=%s target=%s", kind.value, self.db.config.describe())

        try:
            await self.db.manager.ping()
        except ConnectivityError as exc:
            self._fail(exc)
            logger.error("db_init_unreachable backend=%s error=%s", kind.value, exc)
            raise
        self._advance(BootstrapState.CONNECTED)

        sql = self.load_scripts(kind)
        if sql is None:
            return False
        if not sql.strip():
            logger.warning("db_init_no_scripts backend=%s dir=%s", kind.value, self.sql_dir)
            return self._fail("No SQL scripts found for initialization.")
        translated = dialect.translate(sql, kind)
        self._advance(BootstrapState.TRANSLATED)

        self._advance(BootstrapState.EXECUTING)
        logger.info("db_init_execute backend=%s statements=%s", kind.value, len(split_statements(translated)))
        try:
            await self.db.execute_script(translated)
        except ConnectivityError:
            self._fail("Connection lost while executing schema scripts.")
            raise
        except DatabaseError as exc:
            logger.error("db_init_failed backend=%s error=%s", kind.value, exc)
            return self._fail(exc)

        if not await self.verify():
            return self._fail(f"Missing tables: {', '.join(self.missing_tables)}")
        self._advance(BootstrapState.VERIFIED)

        await self.repair()
        self._advance(BootstrapState.REPAIRED)

        self._advance(BootstrapState.READY)
        return True

    def load_scripts(self, kind: BackendKind) -> str | None:
        """
        Concatenated scripts for `kind`. Missing files are skipped; an
        unreadable one fails the run and returns None.
        """
        parts: list[str] = []
        for name in self.script_sets.get(kind, ()):
            path = self.sql_dir / name
            if not path.exists():
                logger.warning("db_init_script_missing path=%s", path)
                continue
            try:
                parts.append(path.read_text(encoding="utf-8"))
            except (OSError, UnicodeDecodeError) as exc:
                logger.exception("db_init_script_unreadable path=%s", path)
                self._fail(f"Unreadable SQL script {path.name}: {exc}")
                return None
            logger.info("db_init_script_loaded path=%s", path)
        return "\n" + "\n\n".join(parts) + "\n" if parts else ""

    async def verify(self) -> bool:
        try:
            existing = set(await self.db.list_tables())
        except DatabaseError as exc:
            logger.error("db_init_verify_failed error=%s", exc)
            self.missing_tables = sorted(self.expected_tables)
            return False

        self.missing_tables = sorted(self.expected_tables - existing)
        if self.missing_tables:
            logger.error("db_init_tables_missing tables=%s", ",".join(self.missing_tables))
            return False
        logger.info("db_init_tables_verified count=%s", len(existing))
        return True

    async def repair(self) -> dict[str, int]:
        """
        Run every repair; a failing one is logged and the rest still run.
        """
        results: dict[str, int] = {}
        for repair in self.repairs:
            try:
                outcome = await self.db.execute(repair.sql)
            except DatabaseError:
                logger.exception("db_init_repair_failed name=%s", repair.name)
                continue
            results[repair.name] = outcome.affected
            logger.info("db_init_repaired name=%s rows=%s", repair.name, outcome.affected)
        if len(results) < len(self.repairs):
            logger.warning("db_init_repairs_incomplete ok=%s total=%s", len(results), len(self.repairs))
        return results


async def initialize_database(db: Database) -> SchemaBootstrapper:
    """
    Bootstrap `db` for the app lifespan. Never raises; check `.state`.
    """
    bootstrapper = SchemaBootstrapper(db)
    try:
        await bootstrapper.run()
    except ConnectivityError as exc:
        logger.error("db_init_degraded backend=%s error=%s", db.kind.value, exc)
    return bootstrapper


async def database_status(db: Database) -> dict[str, Any]:
    if not await db.test_connection():
        return {"connected": False, "type": None, "tables": []}
    try:
        tables = await db.list_tables()
    except DatabaseError as exc:
        return {"connected": False, "type": None, "error": str(exc), "tables": []}
    return {"connected": True, "type": db.kind.value, "tables": tables}


async def auth_enabled(db: Database, *, enable_auth: bool) -> bool:
    """
    Auth needs persistence: only on when configured AND the database answers.
    """
    if not enable_auth:
        logger.info("auth_disabled reason=config")
        return False
    if not await db.test_connection():
        logger.warning("auth_disabled reason=database_unavailable backend=%s", db.kind.value)
        return False
    logger.info("auth_enabled backend=%s", db.kind.value)
    return True
