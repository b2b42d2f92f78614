"""
SQL dialect translation between SQLite and PostgreSQL.

Schema scripts are written once in a canonical dialect (SQLite-flavoured,
with BOOLEAN columns declared explicitly) and rewritten for the active
backend right before execution.

This is pattern based, not a parser. It only works because the canonical
scripts are authored in one predictable shape:
- single-quoted literals are masked before any rewrite, so seed data is safe
- rewrites are scoped to structural positions (type position, after DEFAULT)
- every rewrite is idempotent: translating translated text is a no-op

Runtime DML is not translated. Only its `?` placeholders are renumbered
for asyncpg (see `qmark_to_numeric`).
"""

from __future__ import annotations

import re
from typing import Callable

from .config import BackendKind

_LITERAL_RE = re.compile(r"'(?:[^']|'')*'")
_MASK_RE = re.compile(r"\x00(\d+)\x00")
_MASK = r"\x00\d+\x00"

_FLAGS = re.IGNORECASE

Rule = tuple[re.Pattern[str], "str | Callable[[re.Match[str]], str]"]


def _mask_literals(sql: str) -> tuple[str, list[str]]:
    literals: list[str] = []

    def _store(match: re.Match[str]) -> str:
        literals.append(match.group(0))
        return f"\x00{len(literals) - 1}\x00"

    return _LITERAL_RE.sub(_store, sql), literals


def _unmask_literals(masked: str, literals: list[str]) -> str:
    return _MASK_RE.sub(lambda m: literals[int(m.group(1))], masked)


def _now_call(literals: list[str]) -> Callable[[re.Match[str]], str]:
    # datetime('now') -> NOW(); any other datetime(...) argument stays as-is.
    def _replace(match: re.Match[str]) -> str:
        index = match.group(1)
        if index is not None and literals[int(index)].lower() != "'now'":
            return match.group(0)
        return "NOW()"

    return _replace


def _apply(sql: str, rules: Callable[[list[str]], list[Rule]]) -> str:
    masked, literals = _mask_literals(sql)
    for pattern, replacement in rules(literals):
        masked = pattern.sub(replacement, masked)
    return _unmask_literals(masked, literals)


def _postgres_rules(literals: list[str]) -> list[Rule]:
    return [
        (re.compile(r"\bINTEGER\s+PRIMARY\s+KEY\s+AUTOINCREMENT\b", _FLAGS), "SERIAL PRIMARY KEY"),
        # Function call first, otherwise datetime(...) would become a type name.
        (re.compile(rf"\bdatetime\s*\(\s*(?:\x00(\d+)\x00|\"now\")\s*\)", _FLAGS), _now_call(literals)),
        (re.compile(r"\bDATETIME\b(?!\s*\()", _FLAGS), "TIMESTAMP"),
        (re.compile(r"(\bBOOLEAN\b[^,()\n]*?\bDEFAULT\s+)1\b", _FLAGS), r"\g<1>TRUE"),
        (re.compile(r"(\bBOOLEAN\b[^,()\n]*?\bDEFAULT\s+)0\b", _FLAGS), r"\g<1>FALSE"),
        (
            re.compile(rf"\bGROUP_CONCAT\s*\(\s*([\w.]+)\s*,\s*({_MASK})\s*\)", _FLAGS),
            r"STRING_AGG(\1, \2)",
        ),
        (re.compile(r"\blast_insert_rowid\s*\(\s*\)", _FLAGS), "lastval()"),
    ]


def _sqlite_rules(_: list[str]) -> list[Rule]:
    return [
        (re.compile(r"\bSERIAL\s+PRIMARY\s+KEY\b", _FLAGS), "INTEGER PRIMARY KEY AUTOINCREMENT"),
        (re.compile(r"\bTIMESTAMP\b(?!\s*\()", _FLAGS), "DATETIME"),
        (re.compile(r"(\bBOOLEAN\b[^,()\n]*?\bDEFAULT\s+)TRUE\b", _FLAGS), r"\g<1>1"),
        (re.compile(r"(\bBOOLEAN\b[^,()\n]*?\bDEFAULT\s+)FALSE\b", _FLAGS), r"\g<1>0"),
        (
            re.compile(rf"\bSTRING_AGG\s*\(\s*([\w.]+)\s*,\s*({_MASK})\s*\)", _FLAGS),
            r"GROUP_CONCAT(\1, \2)",
        ),
        (re.compile(r"\bNOW\s*\(\s*\)", _FLAGS), "datetime('now')"),
        (re.compile(r"\blastval\s*\(\s*\)", _FLAGS), "last_insert_rowid()"),
    ]


def to_postgres(sql: str) -> str:
    return _apply(sql, _postgres_rules)


def to_sqlite(sql: str) -> str:
    return _apply(sql, _sqlite_rules)


def translate(sql: str, dialect: BackendKind | str) -> str:
    """
    Rewrite canonical SQL for `dialect` ("sqlite" or "postgres").
    """
    kind = dialect if isinstance(dialect, BackendKind) else BackendKind.parse(dialect)
    if kind is BackendKind.POSTGRES:
        return to_postgres(sql)
    return to_sqlite(sql)


# Quoted text and comments are skipped; only bare `?` are placeholders.
_QMARK_SCAN_RE = re.compile(r"'(?:[^']|'')*'|\"(?:[^\"]|\"\")*\"|--[^\n]*|/\*.*?\*/|\?", re.DOTALL)


def qmark_to_numeric(sql: str) -> str:
    """
    Renumber `?` placeholders as `$1, $2, ...` for asyncpg.
    """
    counter = 0

    def _number(match: re.Match[str]) -> str:
        nonlocal counter
        if match.group(0) != "?":
            return match.group(0)
        counter += 1
        return f"${counter}"

    return _QMARK_SCAN_RE.sub(_number, sql)


def list_tables_query(dialect: BackendKind) -> str:
    if dialect is BackendKind.POSTGRES:
        return """
            SELECT table_name AS name
            FROM information_schema.tables
            WHERE table_schema = current_schema()
              AND table_type = 'BASE TABLE'
            ORDER BY table_name
        """
    return """
        SELECT name
        FROM sqlite_master
        WHERE type = 'table'
          AND name NOT LIKE 'sqlite_%'
        ORDER BY name
    """


def table_exists_query(dialect: BackendKind) -> str:
    """
    Takes the table name as its single positional parameter.
    """
    if dialect is BackendKind.POSTGRES:
        return """
            SELECT 1 AS ok
            FROM information_schema.tables
            WHERE table_schema = current_schema()
              AND table_name = ?
        """
    return "SELECT 1 AS ok FROM sqlite_master WHERE type = 'table' AND name = ?"


def returning_id_clause(dialect: BackendKind) -> str:
    # SQLite reports the new rowid on the cursor; Postgres has to be asked.
    if dialect is BackendKind.POSTGRES:
        return "RETURNING id"
    return ""
