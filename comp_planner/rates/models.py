"""Data models shared across the rate resolution tiers."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from comp_planner.utils.clock import parse_timestamp


def positive_cross_rate(from_rate: float | None, to_rate: float | None) -> float | None:
    """``to_rate / from_rate``, or ``None`` unless both legs and the result are usable."""

    if not from_rate or not to_rate or from_rate <= 0 or to_rate <= 0:
        return None
    value = to_rate / from_rate
    return value if math.isfinite(value) and value > 0 else None


def positive_rates(rates: dict[Any, Any]) -> dict[str, float]:
    cleaned: dict[str, float] = {}
    for code, value in rates.items():
        try:
            number = float(value)
        except (TypeError, ValueError):
            continue
        if math.isfinite(number) and number > 0:
            cleaned[str(code).upper()] = number
    return cleaned


class Provenance(str, Enum):
    """Which resolution tier produced an exchange rate."""

    LIVE = "live"
    SHARED_SNAPSHOT = "sharedSnapshot"
    STATIC_FALLBACK = "staticFallback"
    CACHED = "cached"


@dataclass(frozen=True, slots=True)
class ExchangeRate:
    """Immutable conversion rate for ``from_currency → to_currency``."""

    from_currency: str
    to_currency: str
    rate: float
    observed_at: datetime
    provenance: Provenance

    def __post_init__(self) -> None:
        if not self.rate > 0:
            raise ValueError(f"Exchange rate must be positive, got {self.rate!r}")

    @property
    def pair(self) -> tuple[str, str]:
        return (self.from_currency, self.to_currency)

    def with_provenance(self, provenance: Provenance) -> "ExchangeRate":
        return ExchangeRate(
            from_currency=self.from_currency,
            to_currency=self.to_currency,
            rate=self.rate,
            observed_at=self.observed_at,
            provenance=provenance,
        )

    def to_document(self) -> dict[str, Any]:
        return {
            "from_currency": self.from_currency,
            "to_currency": self.to_currency,
            "rate": self.rate,
            "observed_at": self.observed_at.isoformat(),
            "provenance": self.provenance.value,
        }

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "ExchangeRate":
        return cls(
            from_currency=str(document["from_currency"]),
            to_currency=str(document["to_currency"]),
            rate=float(document["rate"]),
            observed_at=parse_timestamp(document["observed_at"]),
            provenance=Provenance(document.get("provenance", Provenance.CACHED.value)),
        )


@dataclass(frozen=True, slots=True)
class DegradationStatus:
    """Whether the resolver is currently serving static fallback rates."""

    degraded: bool = False
    since: datetime | None = None


@dataclass(frozen=True, slots=True)
class RateTable:
    """A full rate table: ``rates[code]`` units of ``code`` per one ``base``."""

    base: str
    rates: dict[str, float]
    last_updated: datetime
    source: str = "exchangerate-api.com"

    def cross_rate(self, from_currency: str, to_currency: str) -> float | None:
        """Return ``rates[to] / rates[from]`` when both legs are present and positive."""

        return positive_cross_rate(self.rates.get(from_currency), self.rates.get(to_currency))

    def rebased(self, base: str) -> "RateTable | None":
        """Express the table relative to ``base`` (``None`` when ``base`` is missing)."""

        if base == self.base:
            return self
        anchor = self.rates.get(base)
        if not anchor or anchor <= 0:
            return None
        rates = {code: value / anchor for code, value in self.rates.items() if value > 0}
        rates[base] = 1.0
        return RateTable(base=base, rates=rates, last_updated=self.last_updated, source=self.source)

    def to_document(self) -> dict[str, Any]:
        return {
            "base": self.base,
            "rates": dict(sorted(self.rates.items())),
            "lastUpdated": self.last_updated.isoformat(),
            "source": self.source,
        }

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "RateTable":
        rates = document.get("rates")
        last_updated = document.get("lastUpdated")
        if not isinstance(rates, dict) or last_updated is None:
            raise ValueError("Rate table documents need 'rates' and 'lastUpdated'")
        return cls(
            base=str(document.get("base", "USD")).upper(),
            rates=positive_rates(rates),
            last_updated=parse_timestamp(last_updated),
            source=str(document.get("source", "unknown")),
        )


@dataclass(slots=True)
class ConversionResult:
    """Outcome of converting a single amount; never raises for missing rates."""

    original_amount: float
    original_currency: str
    converted_amount: float
    target_currency: str
    rate: float
    provenance: Provenance
    observed_at: datetime
    converted: bool = True
    degradation: DegradationStatus = field(default_factory=DegradationStatus)
    item_id: str | None = None


__all__ = [
    "Provenance",
    "positive_cross_rate",
    "positive_rates",
    "ExchangeRate",
    "DegradationStatus",
    "RateTable",
    "ConversionResult",
]
