from __future__ import annotations

from datetime import timedelta

import pytest

from comp_planner.db.sqlite_backend import SQLiteBackend
from comp_planner.exceptions import StorageFailure
from comp_planner.rates.cache_store import RateCacheStore, rate_key
from comp_planner.rates.models import ExchangeRate, Provenance, RateTable

TTL = timedelta(minutes=15)


def _rate(clock, value: float = 1.1) -> ExchangeRate:
    return ExchangeRate("EUR", "USD", value, clock(), Provenance.LIVE)


@pytest.mark.asyncio
async def test_lookup_hits_until_cache_duration(clock) -> None:
    cache = RateCacheStore(clock=clock)
    await cache.store(_rate(clock), ttl=TTL)

    clock.advance(milliseconds=899_999)
    hit = await cache.lookup("EUR", "USD", max_age=TTL)
    assert hit is not None
    assert hit.provenance is Provenance.CACHED
    assert hit.rate == 1.1

    clock.advance(milliseconds=2)
    assert await cache.lookup("EUR", "USD", max_age=TTL) is None
    # Expired entries are evicted from memory.
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_durable_entries_hydrate_a_new_store(tmp_path, clock) -> None:
    backend = SQLiteBackend(db_path=tmp_path / "cache.db")
    first = RateCacheStore(backend, clock=clock)
    await first.store(_rate(clock, 1.2), ttl=TTL)
    assert backend.get(rate_key("EUR", "USD"))["rate"] == 1.2

    clock.advance(minutes=5)
    second = RateCacheStore(backend, clock=clock)
    hit = await second.lookup("EUR", "USD", max_age=TTL)

    assert hit is not None and hit.rate == 1.2
    assert second.peek("EUR", "USD") is not None

    clock.advance(minutes=11)
    third = RateCacheStore(backend, clock=clock)
    assert await third.lookup("EUR", "USD", max_age=TTL) is None
    backend.close()


@pytest.mark.asyncio
async def test_storage_failures_degrade_to_misses(clock) -> None:
    class _BrokenBackend:
        def get_unexpired(self, key, now):
            raise StorageFailure("read failed")

        def put(self, key, value, *, expires_at=None):
            raise StorageFailure("write failed")

        def delete(self, key):
            raise StorageFailure("delete failed")

    cache = RateCacheStore(_BrokenBackend(), clock=clock)  # type: ignore[arg-type]

    await cache.store(_rate(clock), ttl=TTL)
    assert (await cache.lookup("EUR", "USD", max_age=TTL)) is not None
    await cache.evict("EUR", "USD")
    assert await cache.lookup("EUR", "USD", max_age=TTL) is None


@pytest.mark.asyncio
async def test_store_table_skips_base_and_invalid_values(clock) -> None:
    cache = RateCacheStore(clock=clock)
    table = RateTable(base="USD", rates={"USD": 1.0, "EUR": 0.9, "BAD": 0.0}, last_updated=clock())

    stored = await cache.store_table(table, ttl=TTL, provenance=Provenance.LIVE)

    assert stored == 1
    assert cache.peek("USD", "EUR").rate == 0.9
    stats = cache.stats()
    assert stats.size == 1
    assert stats.entries[0].key == "USD-EUR"
    assert stats.entries[0].provenance is Provenance.LIVE
