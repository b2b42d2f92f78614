from __future__ import annotations

from pathlib import Path

import pytest

from core.config import (
    DEFAULT_QUERY_TIMEOUT_S,
    PROJECT_ROOT,
    BackendKind,
    resolve_config,
    resolve_sqlite_path,
)


def test_defaults_are_embedded() -> None:
    cfg = resolve_config(env={})

    assert cfg.kind is BackendKind.SQLITE
    assert cfg.path == str(PROJECT_ROOT / "data" / "transculturalist.db")
    assert cfg.query_timeout_s == DEFAULT_QUERY_TIMEOUT_S


def test_postgres_defaults() -> None:
    cfg = resolve_config(env={"DB_TYPE": "postgres"})

    assert cfg.kind is BackendKind.POSTGRES
    assert (cfg.host, cfg.port, cfg.database) == ("localhost", 5432, "transculturalist")
    assert (cfg.user, cfg.password) == ("postgres", "postgres")
    assert cfg.dsn is None
    assert cfg.describe() == "localhost:5432/transculturalist"


def test_explicit_values_win_over_environment() -> None:
    env = {"DB_TYPE": "sqlite", "DB_HOST": "env-host", "DB_PORT": "6000"}
    cfg = resolve_config({"DB_TYPE": "postgres", "DB_HOST": "explicit-host"}, env=env)

    assert cfg.kind is BackendKind.POSTGRES
    assert cfg.host == "explicit-host"
    assert cfg.port == 6000


def test_blank_explicit_values_fall_through() -> None:
    cfg = resolve_config({"DB_TYPE": "  "}, env={"DB_TYPE": "postgres"})
    assert cfg.kind is BackendKind.POSTGRES


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("embedded", BackendKind.SQLITE),
        ("SQLite", BackendKind.SQLITE),
        ("client-server", BackendKind.POSTGRES),
        ("postgresql", BackendKind.POSTGRES),
        ("pg", BackendKind.POSTGRES),
    ],
)
def test_backend_kind_aliases(raw: str, expected: BackendKind) -> None:
    assert BackendKind.parse(raw) is expected


def test_unknown_backend_kind_is_rejected() -> None:
    with pytest.raises(ValueError, match="Unsupported DB_TYPE"):
        resolve_config(env={"DB_TYPE": "mysql"})


def test_database_url_drops_sslmode() -> None:
    cfg = resolve_config(
        env={
            "DB_TYPE": "postgres",
            "DATABASE_URL": "postgresql://app:secret@db:5432/forum?sslmode=require&application_name=api",
        }
    )
    assert cfg.dsn == "postgresql://app:secret@db:5432/forum?application_name=api"
    assert "secret" not in cfg.describe()


def test_pool_bounds_are_kept_consistent() -> None:
    cfg = resolve_config(env={"DB_TYPE": "pg", "DB_POOL_MIN": "4", "DB_POOL_MAX": "2"})
    assert (cfg.pool_min_size, cfg.pool_max_size) == (4, 4)


@pytest.mark.parametrize("raw", ["0", "-1"])
def test_non_positive_timeout_disables_deadline(raw: str) -> None:
    assert resolve_config(env={"DB_QUERY_TIMEOUT_S": raw}).query_timeout_s is None


def test_invalid_numbers_fall_back_to_defaults() -> None:
    cfg = resolve_config(env={"DB_TYPE": "postgres", "DB_PORT": "abc", "DB_QUERY_TIMEOUT_S": "soon"})
    assert cfg.port == 5432
    assert cfg.query_timeout_s == DEFAULT_QUERY_TIMEOUT_S


def test_sqlite_paths(tmp_path: Path) -> None:
    assert resolve_sqlite_path(":memory:") == ":memory:"
    assert resolve_sqlite_path(str(tmp_path / "x.db")) == str(tmp_path / "x.db")
    assert resolve_sqlite_path("var/app.db") == str(PROJECT_ROOT / "var" / "app.db")


def test_config_is_frozen() -> None:
    cfg = resolve_config(env={})
    with pytest.raises(AttributeError):
        cfg.path = "elsewhere.db"  # type: ignore[misc]
