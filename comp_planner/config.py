"""Configuration objects: resolver tuning and durable-store connection info."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Mapping
from urllib.parse import quote, urlparse, urlunparse

from comp_planner.db import DEFAULT_SQLITE_DB_PATH
from comp_planner.rates.live_source import DEFAULT_TIMEOUT_SECONDS, EXCHANGE_RATE_API_URL
from comp_planner.rates.static_rates import STATIC_RATES


@dataclass(slots=True)
class ResolverOptions:
    """Tuning knobs for :class:`~comp_planner.rates.resolver.RateResolver`."""

    cache_duration: timedelta = timedelta(minutes=15)
    snapshot_max_age: timedelta = timedelta(hours=24)
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    fallback_to_static_rates: bool = True
    live_url_template: str = EXCHANGE_RATE_API_URL
    static_rates: Mapping[str, float] = field(default_factory=lambda: dict(STATIC_RATES))

    @classmethod
    def from_milliseconds(
        cls,
        *,
        cache_duration_ms: int = 15 * 60 * 1000,
        timeout_ms: int = int(DEFAULT_TIMEOUT_SECONDS * 1000),
        fallback_to_static_rates: bool = True,
    ) -> "ResolverOptions":
        """Build options from millisecond settings as stored by older configs."""

        if cache_duration_ms <= 0 or timeout_ms <= 0:
            raise ValueError("cache_duration_ms and timeout_ms must be positive")
        return cls(
            cache_duration=timedelta(milliseconds=cache_duration_ms),
            timeout=timeout_ms / 1000,
            fallback_to_static_rates=fallback_to_static_rates,
        )

    @classmethod
    def for_real_time(cls) -> "ResolverOptions":
        """Shorter cache and longer timeout for sessions that favour live data."""

        return cls(cache_duration=timedelta(minutes=10), timeout=10.0)


class DatabaseBackend(str, Enum):
    """Supported durable store engines."""

    SQLITE = "sqlite"
    MYSQL = "mysql"
    POSTGRES = "postgres"

    @classmethod
    def resolve_backend_and_scheme(cls, scheme: str) -> tuple["DatabaseBackend", str]:
        """Return backend enum + canonical scheme used in connection URLs."""

        if not scheme:
            raise ValueError("DB_URL must include a scheme (e.g. sqlite:// or postgres://)")
        scheme_lower = scheme.lower()
        base_scheme, _, driver = scheme_lower.partition("+")
        if base_scheme in {"postgresql", "postgres"}:
            return cls.POSTGRES, "postgresql"
        if base_scheme == "sqlite":
            return cls.SQLITE, "sqlite"
        if base_scheme == "mysql":
            # Preserve optional driver hints such as ``mysql+pymysql``.
            canonical_scheme = scheme_lower if driver else "mysql"
            return cls.MYSQL, canonical_scheme
        raise ValueError("Unsupported database backend. Supported values are SQLite, MySQL and Postgres.")


@dataclass(slots=True)
class DatabaseConnectionInfo:
    """Represents how the planner should talk to its durable store."""

    backend: DatabaseBackend
    url: str
    path: Path | None = None

    @classmethod
    def from_url(cls, url: str) -> "DatabaseConnectionInfo":
        """Create a connection object by parsing a database URL/DSN."""

        parsed = urlparse(url)
        if not parsed.scheme:
            raise ValueError("DB_URL must include a scheme (e.g. sqlite:// or postgres://)")
        backend, canonical_scheme = DatabaseBackend.resolve_backend_and_scheme(parsed.scheme)
        if parsed.scheme != canonical_scheme:
            parsed = parsed._replace(scheme=canonical_scheme)
            url = urlunparse(parsed)
        path: Path | None = None
        if backend is DatabaseBackend.SQLITE:
            # ``sqlite:///relative.db`` and ``sqlite:////abs/path.db`` both keep
            # the filename in ``path`` after the leading slash.
            raw_path = parsed.path[1:] if parsed.path.startswith("/") else parsed.path
            if not raw_path:
                raise ValueError("SQLite URLs must name a database file")
            path = Path(raw_path)
        return cls(backend=backend, url=url, path=path)

    @classmethod
    def default(cls) -> "DatabaseConnectionInfo":
        return cls.for_sqlite(DEFAULT_SQLITE_DB_PATH)

    @classmethod
    def for_sqlite(cls, path: str | Path) -> "DatabaseConnectionInfo":
        db_path = Path(path)
        url = f"sqlite:///{quote(db_path.as_posix(), safe='/:')}"
        return cls(backend=DatabaseBackend.SQLITE, url=url, path=db_path)

    @property
    def is_sqlite(self) -> bool:
        return self.backend is DatabaseBackend.SQLITE


__all__ = ["ResolverOptions", "DatabaseBackend", "DatabaseConnectionInfo"]
