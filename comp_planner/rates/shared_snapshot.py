"""Tier-2 shared snapshot: a longer-lived USD rate table."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta
from pathlib import Path

from comp_planner.db.base_backend import BackendStrategy
from comp_planner.exceptions import StorageFailure
from comp_planner.rates.models import RateTable
from comp_planner.utils.logger import get_logger

LOGGER = get_logger(__name__)

SHARED_SNAPSHOT_KEY = "rates:shared"
SHARED_SNAPSHOT_BASE = "USD"


class SharedSnapshotStore:
    """Loads and stores the shared rate table.

    The table is read from the durable store first and from an optional
    read-only JSON file (``{"base", "rates", "lastUpdated"}``) second. Writes
    only ever go to the durable store.
    """

    def __init__(
        self,
        backend: BackendStrategy | None = None,
        *,
        path: str | Path | None = None,
    ) -> None:
        self.backend = backend
        self.path = Path(path) if path else None
        self._table: RateTable | None = None

    async def load(self) -> RateTable | None:
        if self._table is not None:
            return self._table
        table = await self._load_from_backend()
        if table is None and self.path is not None:
            table = await asyncio.to_thread(self._load_from_file)
        if table is not None:
            self._table = table
        return table

    async def _load_from_backend(self) -> RateTable | None:
        if self.backend is None:
            return None
        try:
            document = await asyncio.to_thread(self.backend.get, SHARED_SNAPSHOT_KEY)
        except StorageFailure as exc:
            LOGGER.warning("Failed to read shared rate snapshot: %s", exc)
            return None
        if document is None:
            return None
        try:
            return RateTable.from_document(document)
        except (TypeError, ValueError) as exc:
            LOGGER.warning("Ignoring invalid shared rate snapshot: %s", exc)
            return None

    def _load_from_file(self) -> RateTable | None:
        if self.path is None or not self.path.exists():
            return None
        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
            return RateTable.from_document(document)
        except (OSError, TypeError, ValueError) as exc:
            LOGGER.warning("Invalid shared rate file %s: %s", self.path, exc)
            return None

    async def save(self, table: RateTable) -> None:
        """Replace the shared table; ``table`` is rebased onto USD when possible."""

        normalised = table.rebased(SHARED_SNAPSHOT_BASE) or table
        self._table = normalised
        if self.backend is None:
            return
        try:
            await asyncio.to_thread(
                self.backend.put, SHARED_SNAPSHOT_KEY, normalised.to_document()
            )
        except StorageFailure as exc:
            LOGGER.warning("Failed to persist shared rate snapshot: %s", exc)

    def forget(self) -> None:
        self._table = None

    @staticmethod
    def is_fresh(table: RateTable, now: datetime, max_age: timedelta) -> bool:
        return now - table.last_updated < max_age


__all__ = ["SharedSnapshotStore", "SHARED_SNAPSHOT_KEY", "SHARED_SNAPSHOT_BASE"]
