"""Error taxonomy shared by every comp_planner component."""

from __future__ import annotations


class CompPlannerError(Exception):
    """Base class for errors raised by :mod:`comp_planner`."""


class ValidationError(CompPlannerError, ValueError):
    """Malformed input file, row or imported document."""

    def __init__(self, message: str, *, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = list(errors or [message])


class RateUnavailable(CompPlannerError):
    """Raised when every resolver tier is exhausted for a currency pair."""

    def __init__(self, from_currency: str, to_currency: str) -> None:
        super().__init__(f"No exchange rate available for {from_currency} → {to_currency}")
        self.from_currency = from_currency
        self.to_currency = to_currency


class NetworkTimeout(CompPlannerError):
    """The live rate request exceeded its bound; resolvers fall through instead of surfacing it."""


class LiveSourceError(CompPlannerError):
    """The live rate endpoint answered with an error or an unusable payload."""


class MergeMismatch(CompPlannerError):
    """A proposal row could not be applied; collected into ``MergeResult.unmatched``."""


class ArithmeticGuard(CompPlannerError):
    """A division by zero was avoided by falling back to a default ratio."""


class StorageFailure(CompPlannerError):
    """Durable read or write failed; the in-memory record set stays authoritative."""


__all__ = [
    "CompPlannerError",
    "ValidationError",
    "RateUnavailable",
    "NetworkTimeout",
    "LiveSourceError",
    "MergeMismatch",
    "ArithmeticGuard",
    "StorageFailure",
]
