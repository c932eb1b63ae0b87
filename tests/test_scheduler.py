from __future__ import annotations

import asyncio
import threading
from dataclasses import replace

import pytest

from comp_planner.exceptions import StorageFailure
from comp_planner.ingestion.models import Budget
from comp_planner.persistence.scheduler import ChangeTrackingScheduler
from comp_planner.persistence.snapshot import LATEST_SNAPSHOT_KEY, content_hash

BUDGET = Budget(amount=50000.0, currency="USD")


def _latest_writes(backend) -> int:
    return backend.writes.count(LATEST_SNAPSHOT_KEY)


@pytest.mark.asyncio
async def test_debounce_coalesces_to_last_state(memory_backend, records, clock) -> None:
    scheduler = ChangeTrackingScheduler(memory_backend, clock=clock)
    edited = [replace(records[0], proposed_raise=1000.0), records[1]]

    scheduler.schedule(records, BUDGET, delay=0.05)
    scheduler.schedule(edited, BUDGET, delay=0.05)
    assert scheduler.pending is True
    await scheduler.drain()

    assert _latest_writes(memory_backend) == 1
    stored = memory_backend.documents[LATEST_SNAPSHOT_KEY]
    assert stored["records"][0]["proposed_raise"] == 1000.0
    assert scheduler.committed_hash == content_hash(edited, BUDGET)
    assert scheduler.pending is False


@pytest.mark.asyncio
async def test_flush_now_skips_unchanged_content(memory_backend, records, clock) -> None:
    scheduler = ChangeTrackingScheduler(memory_backend, clock=clock)

    first = await scheduler.flush_now(records, BUDGET)
    clock.advance(seconds=5)
    second = await scheduler.flush_now(list(records), BUDGET)

    assert first is not None
    assert second is None
    assert _latest_writes(memory_backend) == 1
    assert scheduler.last_snapshot is first


@pytest.mark.asyncio
async def test_display_only_changes_do_not_write(memory_backend, records, clock) -> None:
    scheduler = ChangeTrackingScheduler(memory_backend, clock=clock)
    await scheduler.flush_now(records, BUDGET)

    renamed = [replace(records[0], name="Ada L.", annotations={"note": "x"}), records[1]]
    assert await scheduler.flush_now(renamed, BUDGET) is None

    assert await scheduler.flush_now(records, Budget(amount=60000.0)) is not None
    assert _latest_writes(memory_backend) == 2


@pytest.mark.asyncio
async def test_history_entries_are_written(memory_backend, records, clock) -> None:
    scheduler = ChangeTrackingScheduler(memory_backend, clock=clock)

    await scheduler.flush_now(records, BUDGET)

    assert memory_backend.writes[0] == LATEST_SNAPSHOT_KEY
    assert memory_backend.writes[1].startswith("snapshot:history:20250106T090000")


@pytest.mark.asyncio
async def test_storage_failure_keeps_committed_hash(memory_backend, records, clock) -> None:
    scheduler = ChangeTrackingScheduler(memory_backend, clock=clock)
    memory_backend.fail_writes = True

    with pytest.raises(StorageFailure):
        await scheduler.flush_now(records, BUDGET)

    assert scheduler.committed_hash is None
    assert isinstance(scheduler.last_error, StorageFailure)

    memory_backend.fail_writes = False
    assert await scheduler.flush_now(records, BUDGET) is not None
    assert scheduler.last_error is None


@pytest.mark.asyncio
async def test_timer_failures_are_recorded_not_raised(memory_backend, records, clock) -> None:
    scheduler = ChangeTrackingScheduler(memory_backend, clock=clock)
    memory_backend.fail_writes = True

    scheduler.schedule(records, BUDGET, delay=0.01)
    await scheduler.drain()

    assert isinstance(scheduler.last_error, StorageFailure)
    assert scheduler.committed_hash is None


@pytest.mark.asyncio
async def test_cancel_drops_pending_write(memory_backend, records, clock) -> None:
    scheduler = ChangeTrackingScheduler(memory_backend, clock=clock)

    scheduler.schedule(records, BUDGET, delay=0.05)
    assert scheduler.cancel() is True
    await asyncio.sleep(0.1)

    assert memory_backend.writes == []
    assert scheduler.cancel() is False


@pytest.mark.asyncio
async def test_write_in_progress_is_not_cancelled_by_new_schedule(memory_backend, records, clock) -> None:
    started = threading.Event()
    release = threading.Event()
    original_put = memory_backend.put

    def _slow_put(key, value, *, expires_at=None):
        started.set()
        release.wait(timeout=5)
        return original_put(key, value, expires_at=expires_at)

    memory_backend.put = _slow_put  # type: ignore[method-assign]
    scheduler = ChangeTrackingScheduler(memory_backend, clock=clock, keep_history=False)
    edited = [replace(records[0], proposed_raise=500.0), records[1]]

    scheduler.schedule(records, BUDGET, delay=0)
    while not started.is_set():
        await asyncio.sleep(0.001)
    scheduler.schedule(edited, BUDGET, delay=0.01)
    release.set()
    await scheduler.drain()
    await scheduler.drain()

    assert _latest_writes(memory_backend) == 2
    assert scheduler.committed_hash == content_hash(edited, BUDGET)


@pytest.mark.asyncio
async def test_reset_forgets_committed_state(memory_backend, records, clock) -> None:
    scheduler = ChangeTrackingScheduler(memory_backend, clock=clock)
    await scheduler.flush_now(records, BUDGET)

    scheduler.reset()

    assert scheduler.committed_hash is None
    assert scheduler.last_snapshot is None
    assert await scheduler.flush_now(records, BUDGET) is not None


@pytest.mark.asyncio
async def test_int_and_float_amounts_are_the_same_state(memory_backend, records, clock) -> None:
    scheduler = ChangeTrackingScheduler(memory_backend, clock=clock)
    as_ints = [replace(record, base_salary_usd=int(record.base_salary_usd)) for record in records]

    assert await scheduler.flush_now(records, BUDGET) is not None
    assert await scheduler.flush_now(as_ints, Budget(amount=50000, currency="USD")) is None

    assert _latest_writes(memory_backend) == 1


@pytest.mark.asyncio
async def test_same_instant_writes_keep_separate_history(memory_backend, records, clock) -> None:
    scheduler = ChangeTrackingScheduler(memory_backend, clock=clock)
    edited = [replace(records[0], proposed_raise=750.0), records[1]]

    first = await scheduler.flush_now(records, BUDGET)
    second = await scheduler.flush_now(edited, BUDGET)

    history = sorted(key for key in memory_backend.documents if key.startswith("snapshot:history:"))
    assert history == sorted(
        [
            f"snapshot:history:20250106T090000.000000Z:{first.content_hash[:12]}",
            f"snapshot:history:20250106T090000.000000Z:{second.content_hash[:12]}",
        ]
    )
