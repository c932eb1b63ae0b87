"""Debounced, change-detecting writes of the record set to the durable store."""

from __future__ import annotations

import asyncio
from typing import Any, Sequence

from comp_planner.db.base_backend import BackendStrategy
from comp_planner.exceptions import StorageFailure
from comp_planner.ingestion.models import Budget, CompensationRecord
from comp_planner.persistence.snapshot import (
    LATEST_SNAPSHOT_KEY,
    SnapshotState,
    history_key,
)
from comp_planner.utils.clock import Clock, utc_now
from comp_planner.utils.logger import get_logger

LOGGER = get_logger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 3.0


class ChangeTrackingScheduler:
    """Coalesce bursts of edits into one write and skip writes that change nothing.

    ``schedule`` restarts a single timer on every call, so only the state
    passed last is written. Once the timer fires the write is detached from
    the timer handle and a later ``schedule`` cannot cancel it. The committed
    hash moves only after the store accepted the write.
    """

    def __init__(
        self,
        backend: BackendStrategy,
        *,
        clock: Clock = utc_now,
        default_delay: float = DEFAULT_DEBOUNCE_SECONDS,
        keep_history: bool = True,
    ) -> None:
        self.backend = backend
        self.default_delay = default_delay
        self.keep_history = keep_history
        self._clock = clock
        self._committed_hash: str | None = None
        self._last_snapshot: SnapshotState | None = None
        self.last_error: StorageFailure | None = None
        self._pending: asyncio.Task[None] | None = None
        self._writing: asyncio.Task[Any] | None = None
        self._lock = asyncio.Lock()

    @property
    def committed_hash(self) -> str | None:
        return self._committed_hash

    @property
    def last_snapshot(self) -> SnapshotState | None:
        return self._last_snapshot

    @property
    def pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def schedule(
        self,
        records: Sequence[CompensationRecord],
        budget: Budget,
        delay: float | None = None,
    ) -> None:
        """(Re)start the debounce timer for ``records``; must run inside an event loop."""

        self.cancel()
        wait = self.default_delay if delay is None else delay
        self._pending = asyncio.get_running_loop().create_task(
            self._flush_after(list(records), budget, wait)
        )
        LOGGER.debug("Scheduled snapshot write in %.3fs", wait)

    async def _flush_after(
        self, records: list[CompensationRecord], budget: Budget, delay: float
    ) -> None:
        await asyncio.sleep(delay)
        self._writing = asyncio.current_task()
        self._pending = None
        try:
            await self.flush_now(records, budget)
        except StorageFailure as exc:
            LOGGER.error("Scheduled snapshot write failed: %s", exc)
        finally:
            self._writing = None

    async def flush_now(
        self,
        records: Sequence[CompensationRecord],
        budget: Budget,
    ) -> SnapshotState | None:
        """Write immediately unless the content hash matches the committed one."""

        async with self._lock:
            state = SnapshotState.capture(records, budget, self._clock())
            if state.content_hash == self._committed_hash:
                LOGGER.debug("Snapshot unchanged (%s); skipping write", state.content_hash[:12])
                return None
            try:
                await asyncio.to_thread(self._write, state)
            except StorageFailure as exc:
                self.last_error = exc
                raise
            self._committed_hash = state.content_hash
            self._last_snapshot = state
            self.last_error = None
            LOGGER.info(
                "Saved snapshot with %s records (%s)", len(state.records), state.content_hash[:12]
            )
            return state

    def _write(self, state: SnapshotState) -> None:
        document = state.to_document()
        try:
            self.backend.put(LATEST_SNAPSHOT_KEY, document)
            if self.keep_history:
                self.backend.put(history_key(state.observed_at, state.content_hash), document)
        except OSError as exc:
            raise StorageFailure(f"Failed to persist snapshot: {exc}") from exc

    def cancel(self) -> bool:
        """Drop the pending (not yet started) write, if any."""

        task = self._pending
        self._pending = None
        if task is None or task.done():
            return False
        task.cancel()
        LOGGER.debug("Cancelled pending snapshot write")
        return True

    async def drain(self) -> None:
        """Wait until the pending and in-progress writes have finished."""

        for task in (self._pending, self._writing):
            if task is not None and not task.done():
                await asyncio.wait({task})

    def adopt(self, state: SnapshotState) -> None:
        """Treat ``state`` as already committed (e.g. after a restore)."""

        self._committed_hash = state.content_hash
        self._last_snapshot = state

    def reset(self) -> None:
        self.cancel()
        self._committed_hash = None
        self._last_snapshot = None
        self.last_error = None


__all__ = ["ChangeTrackingScheduler", "DEFAULT_DEBOUNCE_SECONDS"]
