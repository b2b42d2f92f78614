"""
Health API schemas.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class DatabaseStatusResponse(BaseModel):
    connected: bool
    type: str | None = None
    tables: list[str] = Field(default_factory=list)
    missing_tables: list[str] = Field(default_factory=list)
    bootstrap_state: str | None = None
    error: str | None = None
