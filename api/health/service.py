"""
Operational health checks over the data-access core.
"""

from __future__ import annotations

from core import bootstrap, db

from . import schemas


async def database_health(bootstrapper: bootstrap.SchemaBootstrapper | None = None) -> schemas.DatabaseStatusResponse:
    status = await bootstrap.database_status(db.database())
    tables = list(status.get("tables") or [])

    missing: list[str] = []
    if status["connected"]:
        missing = sorted(bootstrap.EXPECTED_TABLES - set(tables))

    return schemas.DatabaseStatusResponse(
        connected=bool(status["connected"]),
        type=status.get("type"),
        tables=tables,
        missing_tables=missing,
        bootstrap_state=bootstrapper.state.value if bootstrapper is not None else None,
        error=status.get("error") or (bootstrapper.error if bootstrapper is not None else None),
    )
