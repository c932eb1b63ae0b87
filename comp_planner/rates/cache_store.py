"""Tier-1 rate cache: in-memory entries mirrored into the durable store."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta

from comp_planner.db.base_backend import BackendStrategy
from comp_planner.exceptions import StorageFailure
from comp_planner.rates.models import ExchangeRate, Provenance, RateTable
from comp_planner.utils.clock import Clock, utc_now
from comp_planner.utils.logger import get_logger

LOGGER = get_logger(__name__)

RATE_KEY_PREFIX = "rate:"


def rate_key(from_currency: str, to_currency: str) -> str:
    return f"{RATE_KEY_PREFIX}{from_currency}-{to_currency}"


@dataclass(frozen=True, slots=True)
class CacheEntryStats:
    key: str
    age: timedelta
    provenance: Provenance


@dataclass(frozen=True, slots=True)
class CacheStats:
    size: int
    entries: list[CacheEntryStats]


class RateCacheStore:
    """Owns every cached :class:`ExchangeRate`, keyed by currency pair.

    Memory is consulted first; the optional durable backend survives restarts
    and is read with an expiry-aware lookup. Durable failures are logged and
    treated as cache misses because a missing cache entry is always
    recoverable by the lower tiers.
    """

    def __init__(self, backend: BackendStrategy | None = None, *, clock: Clock = utc_now) -> None:
        self.backend = backend
        self._clock = clock
        self._entries: dict[tuple[str, str], ExchangeRate] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def lookup(
        self, from_currency: str, to_currency: str, *, max_age: timedelta
    ) -> ExchangeRate | None:
        """Return a fresh entry tagged ``cached`` or ``None``."""

        now = self._clock()
        pair = (from_currency, to_currency)
        entry = self._entries.get(pair)
        if entry is not None:
            age = now - entry.observed_at
            if age < max_age:
                LOGGER.debug("Using cached rate %s → %s (%s old): %s", *pair, age, entry.rate)
                return entry.with_provenance(Provenance.CACHED)
            LOGGER.debug("Cache expired for %s → %s (%s old)", *pair, age)
            del self._entries[pair]

        if self.backend is None:
            return None
        try:
            document = await asyncio.to_thread(
                self.backend.get_unexpired, rate_key(*pair), now
            )
        except StorageFailure as exc:
            LOGGER.warning("Failed to read durable rate cache for %s → %s: %s", *pair, exc)
            return None
        if document is None:
            return None
        try:
            stored = ExchangeRate.from_document(document)
        except (KeyError, TypeError, ValueError) as exc:
            LOGGER.warning("Ignoring malformed cached rate for %s → %s: %s", *pair, exc)
            return None
        if now - stored.observed_at >= max_age:
            return None
        self._entries[pair] = stored
        LOGGER.debug("Using durable cached rate %s → %s: %s", *pair, stored.rate)
        return stored.with_provenance(Provenance.CACHED)

    async def store(self, rate: ExchangeRate, *, ttl: timedelta) -> None:
        """Replace the entry for ``rate.pair`` and write it through."""

        self._entries[rate.pair] = rate
        if self.backend is None:
            return
        try:
            await asyncio.to_thread(
                self.backend.put,
                rate_key(*rate.pair),
                rate.to_document(),
                expires_at=rate.observed_at + ttl,
            )
        except StorageFailure as exc:
            LOGGER.warning("Failed to persist rate %s → %s: %s", *rate.pair, exc)

    async def store_table(
        self, table: RateTable, *, ttl: timedelta, provenance: Provenance
    ) -> int:
        """Cache every ``table.base → code`` pair of ``table``; return the count."""

        stored = 0
        for code, value in table.rates.items():
            if code == table.base or not value or value <= 0:
                continue
            await self.store(
                ExchangeRate(
                    from_currency=table.base,
                    to_currency=code,
                    rate=value,
                    observed_at=table.last_updated,
                    provenance=provenance,
                ),
                ttl=ttl,
            )
            stored += 1
        return stored

    async def evict(self, from_currency: str, to_currency: str) -> None:
        self._entries.pop((from_currency, to_currency), None)
        if self.backend is None:
            return
        try:
            await asyncio.to_thread(self.backend.delete, rate_key(from_currency, to_currency))
        except StorageFailure as exc:
            LOGGER.warning("Failed to evict durable rate %s → %s: %s", from_currency, to_currency, exc)

    def clear(self) -> None:
        """Drop the in-memory entries (durable copies expire on their own)."""

        self._entries.clear()

    def peek(self, from_currency: str, to_currency: str) -> ExchangeRate | None:
        return self._entries.get((from_currency, to_currency))

    def stats(self, now: datetime | None = None) -> CacheStats:
        current = now or self._clock()
        entries = [
            CacheEntryStats(
                key=f"{rate.from_currency}-{rate.to_currency}",
                age=current - rate.observed_at,
                provenance=rate.provenance,
            )
            for rate in self._entries.values()
        ]
        return CacheStats(size=len(self._entries), entries=entries)


__all__ = ["RateCacheStore", "CacheStats", "CacheEntryStats", "rate_key", "RATE_KEY_PREFIX"]
