"""
Split a multi-statement SQL script into individually executable statements.

Line oriented: a statement ends on a line whose last code character is `;`.
Compound statements (CREATE TRIGGER / FUNCTION / PROCEDURE) are kept whole:
inside them a trailing `;` only ends the statement once every BEGIN/CASE
has met its END and no `$$` dollar quote is open.

Limits:
- one statement per line at most; `a; b;` on one line stays together
- nested compound definitions are not supported
"""

from __future__ import annotations

import re

_COMPOUND_START_RE = re.compile(
    r"^\s*CREATE\s+(?:OR\s+REPLACE\s+)?(?:TEMP(?:ORARY)?\s+)?(?:TRIGGER|FUNCTION|PROCEDURE)\b",
    re.IGNORECASE,
)
_BLOCK_OPEN_RE = re.compile(r"\b(?:BEGIN|CASE)\b", re.IGNORECASE)
_BLOCK_CLOSE_RE = re.compile(r"\bEND\b", re.IGNORECASE)
_DOLLAR_QUOTE_RE = re.compile(r"\$[A-Za-z_]*\$")
_QUOTED_OR_COMMENT_RE = re.compile(r"'(?:[^']|'')*'|\"(?:[^\"]|\"\")*\"|--")


def _is_comment_only(trimmed: str) -> bool:
    return trimmed.startswith("--") or trimmed.startswith("/*")


def _comment_start(line: str) -> int:
    for match in _QUOTED_OR_COMMENT_RE.finditer(line):
        if match.group(0) == "--":
            return match.start()
    return -1


def _strip_comment(line: str) -> str:
    cut = _comment_start(line)
    return line if cut < 0 else line[:cut]


def _code_part(line: str) -> str:
    """
    Line text with quoted strings blanked and any trailing `--` comment removed.
    """
    blanked = _QUOTED_OR_COMMENT_RE.sub(lambda m: "--" if m.group(0) == "--" else "''", line)
    cut = blanked.find("--")
    if cut >= 0:
        blanked = blanked[:cut]
    return blanked.strip()


def _without_terminator(text: str) -> str:
    text = text.strip()
    if text.endswith(";"):
        text = text[:-1].rstrip()
    return text


class _Scanner:
    def __init__(self) -> None:
        self.statements: list[str] = []
        self._buffer: list[str] = []
        self._in_compound = False
        self._depth = 0
        self._dollar_tag: str | None = None

    def feed(self, line: str) -> None:
        trimmed = line.strip()
        if not trimmed:
            return
        # Comment lines inside a dollar-quoted body belong to the body.
        if self._dollar_tag is None and _is_comment_only(trimmed):
            return

        if not self._buffer and _COMPOUND_START_RE.match(line):
            self._in_compound = True

        inside_dollar = self._dollar_tag is not None
        code = self._track(line)
        self._buffer.append(line if inside_dollar or self._dollar_tag is not None else _strip_comment(line))

        if not code.endswith(";"):
            return
        if self._in_compound and (self._depth > 0 or self._dollar_tag is not None):
            return
        self._emit()

    def _track(self, line: str) -> str:
        if self._dollar_tag is None:
            code = _code_part(line)
            if not self._in_compound:
                return code
            rest = code
        else:
            code = ""
            rest = line

        while rest:
            if self._dollar_tag is not None:
                close_at = rest.find(self._dollar_tag)
                if close_at < 0:
                    return ""
                rest = _code_part(rest[close_at + len(self._dollar_tag):])
                self._dollar_tag = None
                code = rest
                continue

            match = _DOLLAR_QUOTE_RE.search(rest)
            segment = rest if match is None else rest[: match.start()]
            self._depth += len(_BLOCK_OPEN_RE.findall(segment))
            self._depth = max(self._depth - len(_BLOCK_CLOSE_RE.findall(segment)), 0)
            if match is None:
                break
            self._dollar_tag = match.group(0)
            rest = rest[match.end():]
        return code

    def _emit(self) -> None:
        text = _without_terminator("\n".join(self._buffer))
        if text:
            self.statements.append(text)
        self._buffer = []
        self._in_compound = False
        self._depth = 0
        self._dollar_tag = None

    def finish(self) -> list[str]:
        if self._buffer:
            self._emit()
        return self.statements


def split_statements(script: str) -> list[str]:
    """
    Return the statements of `script` in order, trailing semicolons removed.

    A final statement without a terminating semicolon is still returned.
    """
    scanner = _Scanner()
    for line in (script or "").splitlines():
        scanner.feed(line)
    return scanner.finish()
