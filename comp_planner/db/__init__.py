"""Helpers for locating the default durable store."""

from __future__ import annotations

from pathlib import Path
from typing import Final

__all__ = ["DEFAULT_SQLITE_DB_PATH", "default_sqlite_path"]

DEFAULT_SQLITE_DB_PATH: Final[Path] = Path.home() / ".comp_planner" / "comp_planner.db"


def default_sqlite_path() -> Path:
    """Return the absolute path of the default SQLite store."""

    return DEFAULT_SQLITE_DB_PATH
