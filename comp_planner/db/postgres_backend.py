"""PostgreSQL backend strategy."""

from __future__ import annotations

from comp_planner.db.relational_backend import RelationalBackend


class PostgresBackend(RelationalBackend):
    """Concrete relational backend for PostgreSQL engines."""

    def __init__(self, url: str) -> None:
        super().__init__(url, engine_options={"pool_pre_ping": True})


__all__ = ["PostgresBackend"]
