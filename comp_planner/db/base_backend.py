"""Backend strategy interfaces for the durable document store."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(slots=True)
class PersistenceResult:
    """Represents how many documents were inserted or updated in a batch."""

    inserted: int = 0
    updated: int = 0

    @property
    def total(self) -> int:
        """Return the total number of affected documents."""

        return self.inserted + self.updated


class BackendStrategy(ABC):
    """Key/value document store used for cached rates and committed snapshots.

    Values are JSON-compatible objects. ``expires_at`` is optional and only
    consulted by :meth:`get_unexpired`.
    """

    @abstractmethod
    def ensure_schema(self) -> None:
        """Create required tables and verify connectivity."""

    @abstractmethod
    def put(self, key: str, value: Any, *, expires_at: datetime | None = None) -> PersistenceResult:
        """Insert or replace the document stored under ``key``."""

    @abstractmethod
    def get(self, key: str) -> Any | None:
        """Return the document stored under ``key`` regardless of expiry."""

    @abstractmethod
    def get_unexpired(self, key: str, now: datetime) -> Any | None:
        """Return the document under ``key`` unless it expired before ``now``."""

    @abstractmethod
    def scan_prefix(self, prefix: str) -> list[tuple[str, Any]]:
        """Return ``(key, value)`` pairs whose key starts with ``prefix``, ordered by key."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove ``key``; return whether a document existed."""

    def close(self) -> None:  # pragma: no cover - optional cleanup hook
        """Backends may override to release connections/resources."""


__all__ = ["BackendStrategy", "PersistenceResult"]
