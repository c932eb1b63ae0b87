"""Bundled, hand-curated fallback rates (units of currency per one USD)."""

from __future__ import annotations

from typing import Final, Mapping

from comp_planner.rates.models import positive_cross_rate

STATIC_RATES_VERSION: Final[str] = "2025-08-26"

STATIC_RATES: Final[Mapping[str, float]] = {
    "USD": 1.0,
    "EUR": 0.858,
    "GBP": 0.742,
    "JPY": 147.64,
    "CAD": 1.38,
    "AUD": 1.54,
    "CHF": 0.805,
    "CNY": 7.16,
    "INR": 87.61,
    "BRL": 5.43,
    "MXN": 18.66,
    "SGD": 1.28,
    "HKD": 7.81,
    "SEK": 9.57,
    "NOK": 10.12,
    "DKK": 6.41,
    "PLN": 3.66,
    "CZK": 21.06,
    "HUF": 340.73,
    "RUB": 80.71,
    "ZAR": 17.6,
    "KRW": 1389.25,
    "THB": 32.44,
    "MYR": 4.21,
    "PHP": 56.73,
    "IDR": 16265.13,
    "VND": 26206.36,
    "ILS": 3.38,
    "AED": 3.67,
    "SAR": 3.75,
    "EGP": 48.5,
    "TRY": 41.02,
    "PKR": 283.64,
    "LKR": 301.9,
    "TWD": 30.44,
    "NZD": 1.71,
}


def static_cross_rate(
    from_currency: str, to_currency: str, table: Mapping[str, float] = STATIC_RATES
) -> float | None:
    """Return ``table[to] / table[from]`` or ``None`` when a leg is missing."""

    return positive_cross_rate(table.get(from_currency), table.get(to_currency))


__all__ = ["STATIC_RATES", "STATIC_RATES_VERSION", "static_cross_rate"]
