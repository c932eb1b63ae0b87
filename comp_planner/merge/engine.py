"""Apply manager proposals to the current compensation record set."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Sequence

from comp_planner.exceptions import ArithmeticGuard, MergeMismatch
from comp_planner.ingestion.models import CompensationRecord, ProposalRow
from comp_planner.utils.logger import get_logger
from comp_planner.utils.numbers import parse_numeric, parse_percentage

LOGGER = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class UnmatchedProposal:
    row: ProposalRow
    reason: str


@dataclass(slots=True)
class MergeResult:
    """Outcome of one merge pass; ``updated`` is a fresh list of records."""

    updated: list[CompensationRecord] = field(default_factory=list)
    unmatched: list[UnmatchedProposal] = field(default_factory=list)
    matched_count: int = 0
    failed_count: int = 0
    total_raise_usd: float = 0.0
    warnings: list[str] = field(default_factory=list)

    @property
    def total_proposals(self) -> int:
        return self.matched_count + self.failed_count

    @property
    def success(self) -> bool:
        return self.matched_count > 0


def _present(value: Any) -> bool:
    return value is not None and not (isinstance(value, str) and not value.strip())


def implicit_ratio(record: CompensationRecord) -> float:
    """USD per unit of the record's native currency, or 1.0 when it cannot be derived."""

    base = record.base_salary or 0.0
    base_usd = record.base_salary_usd or 0.0
    ratio = base_usd / base if base else 0.0
    if ratio > 0 and math.isfinite(ratio):
        return ratio
    guard = ArithmeticGuard(
        f"Cannot derive exchange ratio for employee {record.employee_id} "
        f"(base_salary={record.base_salary}, base_salary_usd={record.base_salary_usd}); using 1.0"
    )
    LOGGER.warning("%s", guard)
    return 1.0


class CompensationMergeEngine:
    """Merge :class:`ProposalRow` objects into :class:`CompensationRecord` objects.

    Each row is applied all-or-nothing: either every derived field of the
    matching record is recomputed, or the row is reported in
    ``MergeResult.unmatched`` and the record is left exactly as it was.
    Caller-owned sequences and records are never modified.
    """

    def merge(
        self,
        existing: Sequence[CompensationRecord],
        rows: Iterable[ProposalRow],
    ) -> MergeResult:
        result = MergeResult(updated=list(existing))
        index: dict[str, int] = {}
        for position, record in enumerate(result.updated):
            index[str(record.employee_id)] = position

        for row in rows:
            employee_id = str(row.employee_id).strip() if _present(row.employee_id) else ""
            if not employee_id:
                self._reject(result, row, "missing employee id")
                continue
            position = index.get(employee_id)
            if position is None:
                self._reject(result, row, f"employee {employee_id} not found in existing data")
                continue
            current = result.updated[position]
            try:
                merged = self.apply(current, row)
            except MergeMismatch as exc:
                self._reject(result, row, str(exc))
                continue
            if row.currency and row.currency.upper() != current.currency.upper():
                result.warnings.append(
                    f"Employee {employee_id}: proposal currency {row.currency} differs from "
                    f"record currency {current.currency}"
                )
            result.updated[position] = merged
            result.matched_count += 1
            result.total_raise_usd += merged.proposed_raise

        if result.unmatched:
            LOGGER.warning("%s proposal rows could not be merged", len(result.unmatched))
        LOGGER.info(
            "Merged %s proposals (total raise %.2f USD)",
            result.matched_count,
            result.total_raise_usd,
        )
        return result

    def _reject(self, result: MergeResult, row: ProposalRow, reason: str) -> None:
        label = f"line {row.line_number}" if row.line_number else f"employee {row.employee_id}"
        result.unmatched.append(UnmatchedProposal(row=row, reason=reason))
        result.warnings.append(f"Skipping proposal ({label}): {reason}")
        result.failed_count += 1

    # ------------------------------------------------------------------ single row
    def apply(self, record: CompensationRecord, row: ProposalRow) -> CompensationRecord:
        """Return ``record`` with ``row`` applied; raises :class:`MergeMismatch`."""

        if not row.has_raise_signal and not row.has_promotion_data:
            raise MergeMismatch("no raise signal or promotion data")

        changes: dict[str, Any] = {}
        ratio: float | None = None
        if row.has_raise_signal:
            raise_usd, ratio = self._derive_raise(record, row)
            base_usd = record.base_salary_usd or 0.0
            new_salary = base_usd + raise_usd
            percent = raise_usd / base_usd * 100 if base_usd > 0 else 0.0
            if not all(math.isfinite(value) for value in (raise_usd, new_salary, percent)):
                raise MergeMismatch("computed raise is not a finite number")
            changes.update(proposed_raise=raise_usd, new_salary=new_salary, percent_change=percent)
            if record.salary_grade_mid:
                changes["comparatio"] = self._comparatio(record, raise_usd, record.salary_grade_mid, ratio)

        if row.has_promotion_data:
            changes.update(self._promotion_changes(record, row, changes, ratio))

        if row.name and not record.name:
            changes["name"] = row.name
        return replace(record, **changes)

    def _derive_raise(self, record: CompensationRecord, row: ProposalRow) -> tuple[float, float | None]:
        if _present(row.proposed_raise):
            amount = parse_numeric(row.proposed_raise)
            if amount is None:
                raise MergeMismatch(f"malformed proposed raise {row.proposed_raise!r}")
            return amount, None
        if _present(row.proposed_raise_percent):
            percent = parse_percentage(row.proposed_raise_percent)
            if percent is None:
                raise MergeMismatch(f"malformed raise percentage {row.proposed_raise_percent!r}")
            return (record.base_salary_usd or 0.0) * percent / 100, None
        proposed = parse_numeric(row.proposed_salary)
        if proposed is None:
            raise MergeMismatch(f"malformed proposed salary {row.proposed_salary!r}")
        ratio = implicit_ratio(record)
        return (proposed - (record.base_salary or 0.0)) * ratio, ratio

    def _comparatio(
        self,
        record: CompensationRecord,
        raise_usd: float,
        midpoint: float,
        ratio: float | None = None,
    ) -> int:
        if ratio is None:
            ratio = implicit_ratio(record)
        projected = (record.base_salary or 0.0) + raise_usd / ratio
        value = projected / midpoint * 100
        if not math.isfinite(value):
            raise MergeMismatch("computed comparatio is not a finite number")
        return round(value)

    def _promotion_changes(
        self,
        record: CompensationRecord,
        row: ProposalRow,
        changes: dict[str, Any],
        ratio: float | None,
    ) -> dict[str, Any]:
        promo: dict[str, Any] = {}
        promoted = record.has_promotion
        if row.has_promotion is not None:
            promoted = row.has_promotion
        if row.new_job_title is not None or row.new_salary_grade is not None:
            promoted = True
        promo["has_promotion"] = promoted

        if promoted and not record.old_job_title and record.job_title:
            promo["old_job_title"] = record.job_title
            promo["old_salary_grade"] = record.grade_level

        for name in (
            "new_job_title",
            "new_salary_grade",
            "promotion_type",
            "promotion_justification",
            "promotion_effective_date",
            "new_salary_grade_min",
            "new_salary_grade_mid",
            "new_salary_grade_max",
        ):
            value = getattr(row, name)
            if value is not None:
                promo[name] = value

        if promoted and row.new_salary_grade_mid:
            raise_usd = changes.get("proposed_raise", record.proposed_raise)
            promo["comparatio"] = self._comparatio(record, raise_usd, row.new_salary_grade_mid, ratio)
        return promo


def import_summary(result: MergeResult) -> str:
    """Plain-text report of a merge for the person who ran the import."""

    lines = [
        "Proposal Import Summary:",
        f"- Total proposals processed: {result.total_proposals}",
        f"- Successful matches: {result.matched_count}",
        f"- Failed matches: {result.failed_count}",
        f"- Total raise amount: ${result.total_raise_usd:,.2f}",
    ]
    if result.warnings:
        lines.append("")
        lines.append("Warnings:")
        lines.extend(f"- {warning}" for warning in result.warnings)
    return "\n".join(lines)


__all__ = [
    "CompensationMergeEngine",
    "MergeResult",
    "UnmatchedProposal",
    "implicit_ratio",
    "import_summary",
]
