"""Data models shared by proposal ingestion, merging and persistence."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field, fields
from typing import Any

_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")


def snake_case(key: str) -> str:
    """``baseSalaryUSD`` → ``base_salary_usd``; snake_case keys pass through."""

    return _CAMEL_BOUNDARY.sub(r"\1_\2", key).lower()


@dataclass(frozen=True, slots=True)
class Budget:
    """Raise budget for the planning session."""

    amount: float = 0.0
    currency: str = "USD"

    def to_dict(self) -> dict[str, Any]:
        return {"amount": self.amount, "currency": self.currency}


@dataclass(frozen=True, slots=True)
class CompensationRecord:
    """One employee's compensation line.

    ``base_salary`` is in the employee's native ``currency``;
    ``base_salary_usd`` was converted when the record was created or last
    reconciled, so ``base_salary_usd / base_salary`` is the record's implicit
    exchange ratio. ``annotations`` holds display-only data that never affects
    persistence decisions.
    """

    employee_id: str
    base_salary: float = 0.0
    base_salary_usd: float = 0.0
    currency: str = "USD"
    proposed_raise: float = 0.0
    new_salary: float = 0.0
    percent_change: float = 0.0
    comparatio: float | None = None
    salary_grade_min: float | None = None
    salary_grade_mid: float | None = None
    salary_grade_max: float | None = None
    name: str | None = None
    job_title: str | None = None
    grade_level: str | None = None
    has_promotion: bool = False
    old_job_title: str | None = None
    old_salary_grade: str | None = None
    new_job_title: str | None = None
    new_salary_grade: str | None = None
    promotion_type: str | None = None
    promotion_justification: str | None = None
    promotion_effective_date: str | None = None
    new_salary_grade_min: float | None = None
    new_salary_grade_mid: float | None = None
    new_salary_grade_max: float | None = None
    annotations: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CompensationRecord":
        """Build a record from snake_case or camelCase keys; unknown keys become annotations."""

        known = {item.name for item in fields(cls)}
        values: dict[str, Any] = {}
        extras: dict[str, Any] = dict(data.get("annotations") or {})
        for key, value in data.items():
            if key == "annotations":
                continue
            name = snake_case(key)
            if name in known:
                values[name] = value
            else:
                extras[key] = value
        if "employee_id" not in values or values["employee_id"] in (None, ""):
            raise ValueError("Compensation records require an employee id")
        values["employee_id"] = str(values["employee_id"])
        return cls(**values, annotations=extras)


@dataclass(frozen=True, slots=True)
class ProposalRow:
    """A manager-submitted proposal, keyed by ``employee_id``.

    Raise signals are ``proposed_raise`` (USD), ``proposed_raise_percent``
    (text such as ``"5.00%"`` or a number) and ``proposed_salary`` (native
    currency). The merge engine derives exactly one raise amount from them.
    """

    employee_id: str | None = None
    proposed_raise_percent: str | float | None = None
    proposed_salary: float | str | None = None
    proposed_raise: float | str | None = None
    proposed_comparatio: str | None = None
    name: str | None = None
    current_salary: float | None = None
    currency: str | None = None
    has_promotion: bool | None = None
    new_job_title: str | None = None
    new_salary_grade: str | None = None
    promotion_type: str | None = None
    promotion_justification: str | None = None
    promotion_effective_date: str | None = None
    new_salary_grade_min: float | None = None
    new_salary_grade_mid: float | None = None
    new_salary_grade_max: float | None = None
    line_number: int | None = None

    @property
    def has_raise_signal(self) -> bool:
        return any(
            value not in (None, "")
            for value in (self.proposed_raise, self.proposed_raise_percent, self.proposed_salary)
        )

    @property
    def has_promotion_data(self) -> bool:
        return self.has_promotion is not None or any(
            value is not None
            for value in (
                self.new_job_title,
                self.new_salary_grade,
                self.promotion_type,
                self.promotion_justification,
                self.promotion_effective_date,
                self.new_salary_grade_min,
                self.new_salary_grade_mid,
                self.new_salary_grade_max,
            )
        )

    def to_dict(self) -> dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


__all__ = ["Budget", "CompensationRecord", "ProposalRow", "snake_case"]
