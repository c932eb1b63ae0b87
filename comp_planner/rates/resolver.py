"""Four-tier exchange-rate resolution with provenance and degradation tracking.

Tiers are tried in strict order and the first success wins:

1. :class:`RateCacheStore` entries younger than ``cache_duration``.
2. The shared snapshot table. A stale table still answers immediately while a
   background live refresh revalidates it.
3. A single bounded live fetch; the full table is written into tiers 1 and 2.
4. The bundled static table, which marks the resolver as degraded until one
   of the tiers above succeeds again.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Sequence, Tuple

from comp_planner.config import ResolverOptions
from comp_planner.exceptions import CompPlannerError, LiveSourceError, NetworkTimeout, RateUnavailable
from comp_planner.rates.cache_store import CacheStats, RateCacheStore
from comp_planner.rates.live_source import LiveRateSource
from comp_planner.rates.models import (
    ConversionResult,
    DegradationStatus,
    ExchangeRate,
    Provenance,
    RateTable,
    positive_cross_rate,
)
from comp_planner.rates.shared_snapshot import SHARED_SNAPSHOT_BASE, SharedSnapshotStore
from comp_planner.rates.static_rates import static_cross_rate
from comp_planner.utils.clock import Clock, utc_now
from comp_planner.utils.logger import get_logger
from comp_planner.utils.numbers import round_currency

LOGGER = get_logger(__name__)

# ``(amount, from, to)`` with an optional trailing item id.
ConversionRequest = Tuple[Any, ...]


def _normalise(code: str) -> str:
    return code.strip().upper()


class RateResolver:
    """Resolve conversion rates under partial or total network failure."""

    def __init__(
        self,
        cache: RateCacheStore | None = None,
        shared: SharedSnapshotStore | None = None,
        live_source: LiveRateSource | None = None,
        *,
        options: ResolverOptions | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.options = options or ResolverOptions()
        self._clock = clock
        self.cache = cache or RateCacheStore(clock=clock)
        self.shared = shared or SharedSnapshotStore()
        # ``None`` means the network tier is disabled.
        self.live_source = live_source
        self.last_degraded_at: datetime | None = None
        self._inflight: dict[str, asyncio.Task[RateTable]] = {}
        self._revalidation: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------ status
    @property
    def status(self) -> DegradationStatus:
        return DegradationStatus(
            degraded=self.last_degraded_at is not None, since=self.last_degraded_at
        )

    def _mark_healthy(self) -> None:
        if self.last_degraded_at is not None:
            LOGGER.info("Live-quality rates available again; clearing degraded state")
        self.last_degraded_at = None

    def _mark_degraded(self) -> None:
        self.last_degraded_at = self._clock()

    # --------------------------------------------------------------- resolving
    async def resolve(self, from_currency: str, to_currency: str = "USD") -> ExchangeRate:
        """Return a rate for ``from → to`` or raise :class:`RateUnavailable`."""

        src = _normalise(from_currency)
        dst = _normalise(to_currency)
        if src == dst:
            # Identity conversions are reported as always-fresh cache hits.
            return ExchangeRate(src, dst, 1.0, self._clock(), Provenance.CACHED)

        cached = await self.cache.lookup(src, dst, max_age=self.options.cache_duration)
        if cached is not None:
            self._mark_healthy()
            return cached

        shared = await self._from_shared_snapshot(src, dst)
        if shared is not None:
            self._mark_healthy()
            return shared

        live = await self._from_live(src, dst)
        if live is not None:
            self._mark_healthy()
            return live

        fallback = self._from_static(src, dst)
        if fallback is not None:
            return fallback

        raise RateUnavailable(src, dst)

    async def _from_shared_snapshot(self, src: str, dst: str) -> ExchangeRate | None:
        table = await self.shared.load()
        if table is None:
            return None
        value = table.cross_rate(src, dst)
        if value is None:
            return None
        now = self._clock()
        if not self.shared.is_fresh(table, now, self.options.snapshot_max_age):
            LOGGER.info(
                "Shared rates are stale (%s old); serving them while refreshing",
                now - table.last_updated,
            )
            self._schedule_revalidation()
        rate = ExchangeRate(src, dst, value, table.last_updated, Provenance.SHARED_SNAPSHOT)
        await self.cache.store(rate, ttl=self.options.cache_duration)
        return rate

    async def _from_live(self, src: str, dst: str) -> ExchangeRate | None:
        if self.live_source is None:
            return None
        try:
            table = await self._fetch_live(src)
        except (CompPlannerError, OSError) as exc:
            LOGGER.warning("Live rate fetch failed for %s → %s: %s", src, dst, exc)
            return None
        await self._absorb_live_table(table)
        value = positive_cross_rate(1.0, table.rates.get(dst))
        if value is None:
            LOGGER.warning("Live rate unavailable for %s → %s", src, dst)
            return None
        LOGGER.info("Got live rate %s → %s: %s", src, dst, value)
        return ExchangeRate(src, dst, value, table.last_updated, Provenance.LIVE)

    def _from_static(self, src: str, dst: str) -> ExchangeRate | None:
        if not self.options.fallback_to_static_rates:
            return None
        value = static_cross_rate(src, dst, self.options.static_rates)
        if value is None:
            return None
        self._mark_degraded()
        LOGGER.warning("Using static fallback rate for %s → %s (live data unavailable)", src, dst)
        return ExchangeRate(src, dst, value, self._clock(), Provenance.STATIC_FALLBACK)

    async def _fetch_live(self, base: str) -> RateTable:
        """Fetch ``base``'s table, sharing one request among concurrent callers."""

        assert self.live_source is not None
        task = self._inflight.get(base)
        if task is None:
            task = asyncio.create_task(self.live_source.fetch_table(base))
            self._inflight[base] = task
            task.add_done_callback(lambda done, key=base: self._release_inflight(key, done))
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=self.options.timeout)
        except asyncio.TimeoutError as exc:
            raise NetworkTimeout(
                f"Live rate request for {base} exceeded {self.options.timeout}s"
            ) from exc

    def _release_inflight(self, base: str, task: asyncio.Task[RateTable]) -> None:
        if self._inflight.get(base) is task:
            del self._inflight[base]
        if not task.cancelled():
            # Mark the exception as retrieved; callers saw it or timed out first.
            task.exception()

    async def _absorb_live_table(self, table: RateTable) -> None:
        await self.cache.store_table(
            table, ttl=self.options.cache_duration, provenance=Provenance.LIVE
        )
        await self.shared.save(table)

    # -------------------------------------------------------------- background
    def _schedule_revalidation(self) -> None:
        if self.live_source is None:
            return
        if self._revalidation is not None and not self._revalidation.done():
            return
        self._revalidation = asyncio.create_task(self._revalidate())

    async def _revalidate(self) -> None:
        try:
            await self.refresh_shared_snapshot()
        except Exception as exc:  # noqa: BLE001 - background refresh must not propagate
            LOGGER.warning("Background rate update failed: %s", exc)

    async def wait_for_background(self) -> None:
        """Wait for a pending background revalidation, if any."""

        if self._revalidation is not None:
            await self._revalidation

    async def refresh_shared_snapshot(self) -> RateTable:
        """Fetch the USD table from the live source and store it in tiers 1–2."""

        if self.live_source is None:
            raise LiveSourceError("No live rate source configured")
        LOGGER.info("Updating shared currency rates from the live source")
        table = await self._fetch_live(SHARED_SNAPSHOT_BASE)
        await self._absorb_live_table(table)
        self._mark_healthy()
        LOGGER.info("Shared currency rates updated (%s currencies)", len(table.rates))
        return table

    # -------------------------------------------------------------- conversion
    async def convert(
        self,
        amount: float,
        from_currency: str,
        to_currency: str = "USD",
        *,
        item_id: str | None = None,
    ) -> ConversionResult:
        """Convert ``amount``; a missing rate degrades to "no conversion performed"."""

        src = _normalise(from_currency)
        dst = _normalise(to_currency)
        if src == dst:
            return ConversionResult(
                original_amount=amount,
                original_currency=src,
                converted_amount=amount,
                target_currency=dst,
                rate=1.0,
                provenance=Provenance.CACHED,
                observed_at=self._clock(),
                degradation=self.status,
                item_id=item_id,
            )
        try:
            rate = await self.resolve(src, dst)
        except RateUnavailable as exc:
            LOGGER.error("Currency conversion failed: %s", exc)
            return self._unconverted(amount, src, item_id)
        return ConversionResult(
            original_amount=amount,
            original_currency=src,
            converted_amount=round_currency(amount * rate.rate),
            target_currency=dst,
            rate=rate.rate,
            provenance=rate.provenance,
            observed_at=rate.observed_at,
            degradation=self.status,
            item_id=item_id,
        )

    def _unconverted(self, amount: float, currency: str, item_id: str | None) -> ConversionResult:
        return ConversionResult(
            original_amount=amount,
            original_currency=currency,
            converted_amount=amount,
            target_currency=currency,
            rate=1.0,
            provenance=Provenance.STATIC_FALLBACK,
            observed_at=self._clock(),
            converted=False,
            degradation=self.status,
            item_id=item_id,
        )

    async def resolve_many(self, requests: Sequence[ConversionRequest]) -> list[ConversionResult]:
        """Convert every request independently; failures never abort the batch."""

        async def _convert_one(request: ConversionRequest) -> ConversionResult:
            amount, src, dst, *rest = request
            return await self.convert(amount, src, dst or "USD", item_id=rest[0] if rest else None)

        outcomes = await asyncio.gather(
            *(_convert_one(request) for request in requests), return_exceptions=True
        )
        results: list[ConversionResult] = []
        for index, (request, outcome) in enumerate(zip(requests, outcomes)):
            if isinstance(outcome, ConversionResult):
                results.append(outcome)
                continue
            LOGGER.error("Batch conversion failed for item %s: %s", index, outcome)
            item_id = request[3] if len(request) > 3 else None
            results.append(self._unconverted(request[0], _normalise(str(request[1])), item_id))
        return results

    async def force_refresh(self, from_currency: str, to_currency: str = "USD") -> ExchangeRate:
        """Bypass the cache: live first, then the static table."""

        src = _normalise(from_currency)
        dst = _normalise(to_currency)
        LOGGER.info("Force refreshing rate for %s → %s", src, dst)
        await self.cache.evict(src, dst)
        live = await self._from_live(src, dst)
        if live is not None:
            self._mark_healthy()
            return live
        fallback = self._from_static(src, dst)
        if fallback is not None:
            return fallback
        raise RateUnavailable(src, dst)

    async def freshest(self, from_currency: str, to_currency: str = "USD") -> ExchangeRate:
        """Try the live source first, then fall back to the regular tier walk."""

        src = _normalise(from_currency)
        dst = _normalise(to_currency)
        if src != dst:
            live = await self._from_live(src, dst)
            if live is not None:
                self._mark_healthy()
                return live
        return await self.resolve(src, dst)

    # ------------------------------------------------------------------ helpers
    def supported_currencies(self) -> list[str]:
        return sorted(self.options.static_rates)

    def is_supported(self, currency: str) -> bool:
        return _normalise(currency) in self.options.static_rates

    def clear_cache(self) -> None:
        self.cache.clear()

    def cache_stats(self) -> CacheStats:
        return self.cache.stats()


__all__ = ["RateResolver", "ConversionRequest"]
