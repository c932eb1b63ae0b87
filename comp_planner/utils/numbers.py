"""Lenient parsers for numbers found in manager-supplied spreadsheets."""

from __future__ import annotations

import math
import re

_NUMERIC_NOISE = re.compile(r"[$,\s]")
_TRUTHY = {"yes", "y", "true", "1", "promoted", "promotion"}


def parse_numeric(value: object | None) -> float | None:
    """Return ``value`` as a float, tolerating ``$`` and thousands separators.

    Accounting negatives such as ``"(500)"`` parse as ``-500.0``.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None
    cleaned = _NUMERIC_NOISE.sub("", str(value))
    sign = 1.0
    if cleaned.startswith("(") and cleaned.endswith(")"):
        sign = -1.0
        cleaned = cleaned[1:-1]
    if not cleaned:
        return None
    try:
        number = sign * float(cleaned)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def parse_percentage(value: object | None) -> float | None:
    """Parse ``"5.00%"`` (or ``5``) into ``5.0``."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return parse_numeric(value)
    cleaned = str(value).replace("%", "").strip()
    return parse_numeric(cleaned)


def parse_boolean(value: object | None) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in _TRUTHY


def round_currency(amount: float) -> float:
    """Round to cents the way converted amounts are displayed."""

    return round(amount * 100) / 100


__all__ = ["parse_numeric", "parse_percentage", "parse_boolean", "round_currency"]
