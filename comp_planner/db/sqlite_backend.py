"""SQLite backend strategy implementation."""

from __future__ import annotations

from pathlib import Path

from comp_planner.db import DEFAULT_SQLITE_DB_PATH
from comp_planner.db.relational_backend import RelationalBackend


class SQLiteBackend(RelationalBackend):
    """Backend strategy that stores documents in a local SQLite file."""

    def __init__(self, db_path: str | Path = DEFAULT_SQLITE_DB_PATH) -> None:
        self.db_path = Path(db_path).expanduser().resolve()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        super().__init__(
            f"sqlite:///{self.db_path}",
            # Durable I/O runs on worker threads via ``asyncio.to_thread``.
            engine_options={"connect_args": {"check_same_thread": False}},
        )
        self.ensure_schema()


__all__ = ["SQLiteBackend"]
