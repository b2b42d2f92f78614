"""
Typed database failures.

Route handlers catch these and decide the HTTP response; the core never
returns raw driver exceptions.
"""

from __future__ import annotations


class DatabaseError(RuntimeError):
    def __init__(self, message: str, *, backend: str | None = None, sql: str | None = None) -> None:
        super().__init__(message)
        self.backend = backend
        self.sql = sql


class ConnectivityError(DatabaseError):
    """
    Backend could not be opened or reached.
    """


class QueryError(DatabaseError):
    """
    A single statement failed (syntax, constraint, type mismatch). Never retried here.
    """


class ScriptError(QueryError):
    def __init__(self, message: str, *, index: int, preview: str, backend: str | None = None, sql: str | None = None) -> None:
        super().__init__(message, backend=backend, sql=sql)
        self.index = index
        self.preview = preview


class QueryTimeoutError(DatabaseError, TimeoutError):
    def __init__(self, *, backend: str, timeout_s: float, sql: str | None = None) -> None:
        super().__init__(f"{backend} query timed out after {timeout_s:g}s.", backend=backend, sql=sql)
        self.timeout_s = timeout_s


def preview_sql(sql: str, limit: int = 80) -> str:
    """
    Single-line, truncated statement text for logs and error messages.
    """
    flat = " ".join((sql or "").split())
    if len(flat) <= limit:
        return flat
    return flat[:limit] + "..."
