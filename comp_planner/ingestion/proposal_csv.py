"""Read manager proposal exports (delimited text with a header row)."""

from __future__ import annotations

import csv
import io
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

import pandas as pd

from comp_planner.exceptions import ValidationError
from comp_planner.ingestion.models import ProposalRow
from comp_planner.utils.logger import get_logger
from comp_planner.utils.numbers import parse_boolean, parse_numeric

LOGGER = get_logger(__name__)

MAX_PROPOSAL_FILE_BYTES = 10 * 1024 * 1024

# Lower-cased header → ProposalRow field.
PROPOSAL_COLUMN_SYNONYMS: Mapping[str, str] = {
    "employee number": "employee_id",
    "employee_number": "employee_id",
    "employeeid": "employee_id",
    "employee id": "employee_id",
    "emp_id": "employee_id",
    "id": "employee_id",
    "employee full name": "name",
    "name": "name",
    "full_name": "name",
    "employee_name": "name",
    "proposed raise (percent)": "proposed_raise_percent",
    "proposed_raise_percent": "proposed_raise_percent",
    "raise_percent": "proposed_raise_percent",
    "raise percentage": "proposed_raise_percent",
    "proposed salary": "proposed_salary",
    "proposed_salary": "proposed_salary",
    "new_salary": "proposed_salary",
    "new salary": "proposed_salary",
    "proposed comparatio": "proposed_comparatio",
    "proposed_comparatio": "proposed_comparatio",
    "new_comparatio": "proposed_comparatio",
    "new comparatio": "proposed_comparatio",
    "proposed raise": "proposed_raise",
    "proposed_raise": "proposed_raise",
    "raise_amount": "proposed_raise",
    "raise amount": "proposed_raise",
    "base pay all countries": "current_salary",
    "base_salary": "current_salary",
    "current_salary": "current_salary",
    "salary": "current_salary",
    "currency": "currency",
    "has promotion": "has_promotion",
    "promotion": "has_promotion",
    "promoted": "has_promotion",
    "promotion flag": "has_promotion",
    "new job title": "new_job_title",
    "promoted job title": "new_job_title",
    "new title": "new_job_title",
    "promotion title": "new_job_title",
    "future job title": "new_job_title",
    "new salary grade": "new_salary_grade",
    "promoted salary grade": "new_salary_grade",
    "new grade": "new_salary_grade",
    "promotion grade": "new_salary_grade",
    "future grade": "new_salary_grade",
    "new salary range minimum": "new_salary_grade_min",
    "new salary range midpoint": "new_salary_grade_mid",
    "new salary range maximum": "new_salary_grade_max",
    "promotion type": "promotion_type",
    "promotion category": "promotion_type",
    "promotion justification": "promotion_justification",
    "promotion reason": "promotion_justification",
    "justification": "promotion_justification",
    "promotion notes": "promotion_justification",
    "promotion effective date": "promotion_effective_date",
    "effective date": "promotion_effective_date",
    "promotion date": "promotion_effective_date",
}


class _Unparseable(Exception):
    pass


def _text(value: str) -> str:
    return value.strip()


def _number(value: str) -> float:
    number = parse_numeric(value)
    if number is None:
        raise _Unparseable(value)
    return number


def normalize_promotion_type(value: str) -> str:
    lowered = value.strip().lower()
    if "vertical" in lowered or "up" in lowered:
        return "VERTICAL"
    if "lateral" in lowered or "same level" in lowered:
        return "LATERAL"
    if "internal" in lowered or "within" in lowered:
        return "INTERNAL"
    if "demotion" in lowered or "down" in lowered:
        return "DEMOTION"
    return value.strip().upper()


def normalize_date(value: str) -> str:
    """Return ``YYYY-MM-DD``; non-ISO inputs are read day-first."""

    cleaned = value.strip()
    dayfirst = re.match(r"^\d{4}[-/.]", cleaned) is None
    try:
        parsed = pd.to_datetime(cleaned, errors="coerce", dayfirst=dayfirst)
    except (TypeError, ValueError) as exc:
        raise _Unparseable(value) from exc
    if pd.isna(parsed):
        raise _Unparseable(value)
    return parsed.date().isoformat()


# Raise signals stay as text; the merge engine parses and validates them.
FIELD_PARSERS: Mapping[str, Callable[[str], Any]] = {
    "employee_id": _text,
    "name": _text,
    "proposed_raise_percent": _text,
    "proposed_salary": _text,
    "proposed_raise": _text,
    "proposed_comparatio": _text,
    "current_salary": _number,
    "currency": lambda value: value.strip().upper(),
    "has_promotion": parse_boolean,
    "new_job_title": _text,
    "new_salary_grade": _text,
    "promotion_type": normalize_promotion_type,
    "promotion_justification": _text,
    "promotion_effective_date": normalize_date,
    "new_salary_grade_min": _number,
    "new_salary_grade_mid": _number,
    "new_salary_grade_max": _number,
}


def map_columns(fieldnames: Iterable[str]) -> dict[str, str]:
    """Map raw header names onto ProposalRow fields (first synonym wins)."""

    mapping: dict[str, str] = {}
    claimed: set[str] = set()
    for column in fieldnames:
        target = PROPOSAL_COLUMN_SYNONYMS.get(column.strip().lower())
        if target is None or target in claimed:
            continue
        mapping[column] = target
        claimed.add(target)
    return mapping


def validate_proposal_file(path: str | Path) -> list[str]:
    """Return a list of problems with ``path``; empty when the file looks importable."""

    file_path = Path(path)
    errors: list[str] = []
    if not file_path.exists():
        return [f"File not found: {file_path}"]
    if file_path.suffix.lower() != ".csv":
        errors.append("File must be a CSV file")
    size = file_path.stat().st_size
    if size > MAX_PROPOSAL_FILE_BYTES:
        errors.append("File size must be less than 10MB")
    if size == 0:
        errors.append("File is empty")
    return errors


@dataclass(slots=True)
class ProposalParseResult:
    rows: list[ProposalRow] = field(default_factory=list)
    rejected_lines: list[int] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    unmapped_columns: list[str] = field(default_factory=list)


class ProposalCSVParser:
    """Parse proposal exports into :class:`ProposalRow` objects."""

    def __init__(self, *, delimiter: str | None = None) -> None:
        self.delimiter = delimiter

    def parse(self, csv_path: str | Path) -> ProposalParseResult:
        path = Path(csv_path)
        errors = validate_proposal_file(path)
        if errors:
            raise ValidationError(f"Invalid proposal file {path.name}: {'; '.join(errors)}", errors=errors)
        try:
            content = path.read_text(encoding="utf-8-sig")
        except (OSError, UnicodeDecodeError) as exc:
            raise ValidationError(f"Could not read proposal file {path}: {exc}") from exc
        return self.parse_text(content)

    def parse_text(self, content: str) -> ProposalParseResult:
        if not content.strip():
            raise ValidationError("CSV file is empty or could not be parsed")
        reader = csv.DictReader(io.StringIO(content), dialect=self._dialect(content))
        if not reader.fieldnames:
            raise ValidationError("CSV file does not contain a header row")
        columns = map_columns(reader.fieldnames)
        if "employee_id" not in columns.values():
            raise ValidationError("Proposal file has no employee identifier column")

        result = ProposalParseResult(
            unmapped_columns=[name for name in reader.fieldnames if name not in columns]
        )
        for row in reader:
            line = reader.line_num
            values: dict[str, Any] = {}
            for column, target in columns.items():
                raw = row.get(column)
                if raw is None or not str(raw).strip():
                    continue
                try:
                    values[target] = FIELD_PARSERS[target](str(raw))
                except _Unparseable:
                    result.warnings.append(f"Line {line}: ignoring unreadable {column!r} value {raw!r}")
            if not values.get("employee_id"):
                if any(values.values()):
                    result.warnings.append(f"Line {line}: skipping proposal with missing Employee ID")
                    result.rejected_lines.append(line)
                continue
            result.rows.append(ProposalRow(**values, line_number=line))
        for message in result.warnings:
            LOGGER.warning(message)
        LOGGER.info(
            "Parsed %s proposal rows (%s rejected)", len(result.rows), len(result.rejected_lines)
        )
        return result

    def _dialect(self, content: str) -> type[csv.Dialect] | csv.Dialect:
        if self.delimiter:
            return _with_delimiter(self.delimiter)
        sample = content[:4096]
        try:
            return csv.Sniffer().sniff(sample, delimiters=",;\t|")
        except csv.Error:
            return csv.excel


def _with_delimiter(delimiter: str) -> type[csv.Dialect]:
    return type("ProposalDialect", (csv.excel,), {"delimiter": delimiter})


__all__ = [
    "PROPOSAL_COLUMN_SYNONYMS",
    "FIELD_PARSERS",
    "MAX_PROPOSAL_FILE_BYTES",
    "ProposalCSVParser",
    "ProposalParseResult",
    "map_columns",
    "normalize_date",
    "normalize_promotion_type",
    "validate_proposal_file",
]
