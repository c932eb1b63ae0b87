"""Tier-3 live rates fetched from exchangerate-api.com."""

from __future__ import annotations

import asyncio
from typing import Protocol

import requests

from comp_planner.exceptions import LiveSourceError, NetworkTimeout
from comp_planner.rates.models import RateTable, positive_rates
from comp_planner.utils.clock import Clock, utc_now
from comp_planner.utils.logger import get_logger

LOGGER = get_logger(__name__)

EXCHANGE_RATE_API_URL = "https://api.exchangerate-api.com/v4/latest/{base}"
DEFAULT_TIMEOUT_SECONDS = 8.0


class LiveRateSource(Protocol):
    """Anything able to return a full rate table for a base currency."""

    async def fetch_table(self, base: str) -> RateTable:
        ...  # pragma: no cover - protocol definition


class ExchangeRateAPISource:
    """Single-endpoint live source; one request per call and no retries."""

    def __init__(
        self,
        *,
        url_template: str = EXCHANGE_RATE_API_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.url_template = url_template
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", "comp-planner-rates/1.0")
        self.session.headers.setdefault("Accept", "application/json")
        self._clock = clock

    def fetch(self, base: str) -> RateTable:
        """Blocking fetch of the table for ``base``."""

        url = self.url_template.format(base=base.upper())
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except requests.Timeout as exc:
            raise NetworkTimeout(f"Live rate request for {base} timed out after {self.timeout}s") from exc
        except requests.HTTPError as exc:
            raise LiveSourceError(f"Live rate endpoint responded with an error for {url}: {exc}") from exc
        except requests.RequestException as exc:
            raise LiveSourceError(f"Live rate request for {url} failed: {exc}") from exc
        except ValueError as exc:
            raise LiveSourceError(f"Live rate endpoint returned invalid JSON for {url}") from exc

        rates = payload.get("rates") if isinstance(payload, dict) else None
        if not isinstance(rates, dict) or not rates:
            raise LiveSourceError("Invalid API response format: missing 'rates'")
        cleaned = positive_rates(rates)
        LOGGER.info("Fetched %s live rates for base %s", len(cleaned), base.upper())
        return RateTable(base=base.upper(), rates=cleaned, last_updated=self._clock())

    async def fetch_table(self, base: str) -> RateTable:
        """Fetch on a worker thread, bounded by a hard timeout."""

        try:
            return await asyncio.wait_for(asyncio.to_thread(self.fetch, base), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise NetworkTimeout(f"Live rate request for {base} exceeded {self.timeout}s") from exc


__all__ = [
    "LiveRateSource",
    "ExchangeRateAPISource",
    "EXCHANGE_RATE_API_URL",
    "DEFAULT_TIMEOUT_SECONDS",
]
