"""
Backend configuration.

Resolution order for every key: explicit mapping > environment > default.
The result is a frozen `BackendConfig`; nothing re-reads the environment
after it has been built.

Recognized keys:
- DB_TYPE            sqlite | postgres (aliases: embedded, client-server)
- DB_PATH            sqlite file, relative paths resolve against the project root
- DB_HOST, DB_PORT, DB_NAME, DB_USER, DB_PASSWORD
- DATABASE_URL       optional postgres DSN, wins over the individual fields
- DB_POOL_MIN, DB_POOL_MAX, DB_QUERY_TIMEOUT_S
"""

from __future__ import annotations

import enum
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

APP_NAME = "transculturalist"

PROJECT_ROOT = Path(__file__).resolve().parents[2]

DEFAULT_DB_PATH = f"./data/{APP_NAME}.db"
DEFAULT_QUERY_TIMEOUT_S = 30.0


class BackendKind(str, enum.Enum):
    SQLITE = "sqlite"
    POSTGRES = "postgres"

    @classmethod
    def parse(cls, raw: str | None) -> "BackendKind":
        value = (raw or "").strip().lower()
        if value in ("", "sqlite", "sqlite3", "embedded"):
            return cls.SQLITE
        if value in ("postgres", "postgresql", "pg", "client-server"):
            return cls.POSTGRES
        raise ValueError(f"Unsupported DB_TYPE: {raw!r}")


@dataclass(frozen=True)
class BackendConfig:
    kind: BackendKind = BackendKind.SQLITE
    path: str | None = None
    host: str = "localhost"
    port: int = 5432
    database: str = APP_NAME
    user: str = "postgres"
    password: str = "postgres"
    dsn: str | None = None
    pool_min_size: int = 1
    pool_max_size: int = 5
    query_timeout_s: float | None = DEFAULT_QUERY_TIMEOUT_S

    @property
    def is_sqlite(self) -> bool:
        return self.kind is BackendKind.SQLITE

    def describe(self) -> str:
        """
        Human-readable target without secrets, for logs.
        """
        if self.is_sqlite:
            return str(self.path)
        return f"{self.host}:{self.port}/{self.database}"


def _sanitize_database_url(url: str) -> str:
    # asyncpg rejects libpq-only options such as sslmode.
    parts = urlsplit(url)
    if not parts.query:
        return url

    params = [(k, v) for (k, v) in parse_qsl(parts.query, keep_blank_values=True) if k != "sslmode"]
    query = urlencode(params)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def _lookup(name: str, explicit: Mapping[str, Any], env: Mapping[str, str]) -> str:
    value = explicit.get(name)
    if value is not None and str(value).strip():
        return str(value).strip()
    return (env.get(name) or "").strip()


def _int(raw: str, default: int) -> int:
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _float(raw: str, default: float | None) -> float | None:
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    # 0 or negative disables the per-call deadline.
    return value if value > 0 else None


def resolve_sqlite_path(raw: str | None) -> str:
    if raw == ":memory:":
        return raw
    path = Path(raw or DEFAULT_DB_PATH)
    if not path.is_absolute():
        path = PROJECT_ROOT / path
    return str(path)


def resolve_config(
    explicit: Mapping[str, Any] | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> BackendConfig:
    explicit = explicit or {}
    env = os.environ if env is None else env

    def get(name: str) -> str:
        return _lookup(name, explicit, env)

    kind = BackendKind.parse(get("DB_TYPE"))
    timeout_s = _float(get("DB_QUERY_TIMEOUT_S"), DEFAULT_QUERY_TIMEOUT_S)

    if kind is BackendKind.SQLITE:
        return BackendConfig(
            kind=kind,
            path=resolve_sqlite_path(get("DB_PATH") or None),
            query_timeout_s=timeout_s,
        )

    dsn = get("DATABASE_URL")
    pool_min = max(1, _int(get("DB_POOL_MIN"), 1))
    return BackendConfig(
        kind=kind,
        host=get("DB_HOST") or "localhost",
        port=_int(get("DB_PORT"), 5432),
        database=get("DB_NAME") or APP_NAME,
        user=get("DB_USER") or "postgres",
        password=get("DB_PASSWORD") or "postgres",
        dsn=_sanitize_database_url(dsn) if dsn else None,
        pool_min_size=pool_min,
        pool_max_size=max(pool_min, _int(get("DB_POOL_MAX"), 5)),
        query_timeout_s=timeout_s,
    )
