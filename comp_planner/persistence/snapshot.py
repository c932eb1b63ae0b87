"""Committed record-set snapshots and their JSON export format."""

from __future__ import annotations

import asyncio
import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable, Mapping

from comp_planner.exceptions import StorageFailure, ValidationError
from comp_planner.ingestion.models import Budget, CompensationRecord
from comp_planner.utils.clock import parse_timestamp
from comp_planner.utils.logger import get_logger

if TYPE_CHECKING:  # pragma: no cover
    from comp_planner.persistence.scheduler import ChangeTrackingScheduler

LOGGER = get_logger(__name__)

SNAPSHOT_FORMAT_VERSION = "1.0"
LATEST_SNAPSHOT_KEY = "snapshot:latest"
HISTORY_PREFIX = "snapshot:history:"


def _canonical_amount(value: Any) -> float | None:
    return None if value is None else float(value)


def content_hash(records: Iterable[CompensationRecord], budget: Budget) -> str:
    """SHA-256 of the fields that decide whether a save is needed.

    Only ``employee_id``, ``base_salary_usd`` and ``proposed_raise`` of each
    record take part, so display-only edits never trigger a write. Amounts
    are hashed as floats so ``85000`` and ``85000.0`` are the same state.
    """

    projection = sorted(
        (
            {
                "employee_id": str(record.employee_id),
                "base_salary_usd": _canonical_amount(record.base_salary_usd),
                "proposed_raise": _canonical_amount(record.proposed_raise),
            }
            for record in records
        ),
        key=lambda item: item["employee_id"],
    )
    canonical = json.dumps(
        {
            "records": projection,
            "budget": {"amount": _canonical_amount(budget.amount), "currency": budget.currency},
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def history_key(observed_at: datetime, digest: str = "") -> str:
    """Timestamped history key; ``digest`` keeps same-instant writes apart."""

    key = f"{HISTORY_PREFIX}{observed_at.strftime('%Y%m%dT%H%M%S.%fZ')}"
    return f"{key}:{digest[:12]}" if digest else key


@dataclass(frozen=True)
class SnapshotState:
    """An immutable, committed view of the record set."""

    records: Mapping[str, CompensationRecord]
    budget: Budget
    content_hash: str
    observed_at: datetime
    has_changes: bool = True
    version: str = field(default=SNAPSHOT_FORMAT_VERSION)

    @classmethod
    def capture(
        cls,
        records: Iterable[CompensationRecord],
        budget: Budget,
        observed_at: datetime,
        *,
        has_changes: bool = True,
    ) -> "SnapshotState":
        by_id: dict[str, CompensationRecord] = {}
        for record in records:
            by_id[str(record.employee_id)] = record
        return cls(
            records=by_id,
            budget=budget,
            content_hash=content_hash(by_id.values(), budget),
            observed_at=observed_at,
            has_changes=has_changes,
        )

    @property
    def record_list(self) -> list[CompensationRecord]:
        return list(self.records.values())

    def to_document(self) -> dict[str, Any]:
        return {
            "records": [record.to_dict() for record in self.records.values()],
            "budget": self.budget.to_dict(),
            "metadata": {
                "timestamp": self.observed_at.isoformat(),
                "version": self.version,
                "record_count": len(self.records),
                "content_hash": self.content_hash,
                "has_changes": self.has_changes,
            },
        }

    @classmethod
    def from_document(cls, document: Any) -> "SnapshotState":
        """Validate and load an export document; raises :class:`ValidationError`."""

        if isinstance(document, dict) and "records" not in document and "employees" in document:
            document = _upgrade_legacy_document(document)

        errors = validate_document(document)
        if errors:
            raise ValidationError("Invalid snapshot document: " + "; ".join(errors), errors=errors)

        records: list[CompensationRecord] = []
        for position, raw in enumerate(document["records"]):
            try:
                records.append(CompensationRecord.from_dict(raw))
            except (TypeError, ValueError) as exc:
                errors.append(f"records[{position}]: {exc}")
        if errors:
            raise ValidationError("Invalid snapshot document: " + "; ".join(errors), errors=errors)

        metadata = document["metadata"]
        budget = Budget(
            amount=float(document["budget"]["amount"]),
            currency=str(document["budget"]["currency"]),
        )
        state = cls.capture(
            records,
            budget,
            parse_timestamp(metadata["timestamp"]),
            has_changes=bool(metadata.get("has_changes", True)),
        )
        expected = metadata.get("content_hash")
        if expected and expected != state.content_hash:
            raise ValidationError(
                "Snapshot content hash does not match its records",
                errors=["metadata.content_hash mismatch"],
            )
        return state


def validate_document(document: Any) -> list[str]:
    """Return shape problems with an export document (empty when valid)."""

    if not isinstance(document, dict):
        return ["document must be a JSON object"]
    errors: list[str] = []
    if not isinstance(document.get("records"), list):
        errors.append("records must be a list")
    elif any(not isinstance(item, dict) for item in document["records"]):
        errors.append("every record must be an object")

    budget = document.get("budget")
    if not isinstance(budget, dict):
        errors.append("budget must be an object")
    else:
        amount = budget.get("amount")
        if isinstance(amount, bool) or not isinstance(amount, (int, float)):
            errors.append("budget.amount must be a number")
        if not isinstance(budget.get("currency"), str):
            errors.append("budget.currency must be a string")

    metadata = document.get("metadata")
    if not isinstance(metadata, dict):
        errors.append("metadata must be an object")
    else:
        timestamp = metadata.get("timestamp")
        if not isinstance(timestamp, str):
            errors.append("metadata.timestamp must be a string")
        else:
            try:
                parse_timestamp(timestamp)
            except ValueError:
                errors.append(f"metadata.timestamp {timestamp!r} is not an ISO timestamp")
        count = metadata.get("record_count")
        if isinstance(count, bool) or not isinstance(count, int):
            errors.append("metadata.record_count must be an integer")
        elif isinstance(document.get("records"), list) and count != len(document["records"]):
            errors.append("metadata.record_count does not match the number of records")
    return errors


def _upgrade_legacy_document(document: dict[str, Any]) -> dict[str, Any]:
    """Translate ``{employees, budget{totalBudget, budgetCurrency}, metadata{employeeCount}}`` backups."""

    budget = document.get("budget") if isinstance(document.get("budget"), dict) else {}
    metadata = document.get("metadata") if isinstance(document.get("metadata"), dict) else {}
    return {
        "records": document.get("employees"),
        "budget": {
            "amount": budget.get("totalBudget"),
            "currency": budget.get("budgetCurrency"),
        },
        "metadata": {
            "timestamp": metadata.get("timestamp"),
            "version": metadata.get("version", SNAPSHOT_FORMAT_VERSION),
            "record_count": metadata.get("employeeCount"),
            "has_changes": metadata.get("hasChanges", True),
        },
    }


@dataclass(frozen=True, slots=True)
class BackupInfo:
    timestamp: datetime
    record_count: int
    has_changes: bool
    content_hash: str


class SnapshotExporter:
    """Expose committed snapshots and move them in and out of JSON files.

    Nothing here performs I/O implicitly: files are only touched by
    :meth:`write` and :meth:`import_file`, and the durable store only by
    :meth:`restore`, :meth:`history` and :meth:`clear`.
    """

    def __init__(self, scheduler: "ChangeTrackingScheduler") -> None:
        self.scheduler = scheduler

    @property
    def backend(self):
        return self.scheduler.backend

    def latest(self) -> SnapshotState | None:
        return self.scheduler.last_snapshot

    def export_document(self) -> dict[str, Any] | None:
        state = self.latest()
        return state.to_document() if state is not None else None

    def export_json(self, *, indent: int = 2) -> str | None:
        document = self.export_document()
        if document is None:
            return None
        return json.dumps(document, indent=indent)

    def write(self, path: str | Path) -> Path:
        content = self.export_json()
        if content is None:
            raise StorageFailure("No committed snapshot to export")
        target = Path(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        except OSError as exc:
            raise StorageFailure(f"Failed to write snapshot to {target}: {exc}") from exc
        LOGGER.info("Exported snapshot with %s records to %s", len(self.latest().records), target)
        return target

    def import_document(self, document: Any) -> SnapshotState:
        state = SnapshotState.from_document(document)
        LOGGER.info("Imported snapshot with %s records (%s)", len(state.records), state.observed_at)
        return state

    def import_json(self, content: str) -> SnapshotState:
        try:
            document = json.loads(content)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"Snapshot is not valid JSON: {exc}") from exc
        return self.import_document(document)

    def import_file(self, path: str | Path) -> SnapshotState:
        source = Path(path)
        try:
            content = source.read_text(encoding="utf-8")
        except OSError as exc:
            raise ValidationError(f"Could not read snapshot file {source}: {exc}") from exc
        return self.import_json(content)

    async def restore(self) -> SnapshotState | None:
        """Load ``snapshot:latest`` from the durable store and adopt it as committed."""

        document = await asyncio.to_thread(self.backend.get, LATEST_SNAPSHOT_KEY)
        if document is None:
            LOGGER.info("No stored snapshot to restore")
            return None
        state = SnapshotState.from_document(document)
        self.scheduler.adopt(state)
        LOGGER.info("Restored snapshot from %s (%s records)", state.observed_at, len(state.records))
        return state

    async def history(self) -> list[SnapshotState]:
        """Every stored history entry, oldest first; unreadable entries are skipped."""

        entries = await asyncio.to_thread(self.backend.scan_prefix, HISTORY_PREFIX)
        states: list[SnapshotState] = []
        for key, document in entries:
            try:
                states.append(SnapshotState.from_document(document))
            except ValidationError as exc:
                LOGGER.warning("Skipping unreadable snapshot %s: %s", key, exc)
        return states

    def backup_info(self) -> BackupInfo | None:
        state = self.latest()
        if state is None:
            return None
        return BackupInfo(
            timestamp=state.observed_at,
            record_count=len(state.records),
            has_changes=state.has_changes,
            content_hash=state.content_hash,
        )

    async def clear(self) -> None:
        """Delete the stored latest snapshot and forget the committed hash."""

        await asyncio.to_thread(self.backend.delete, LATEST_SNAPSHOT_KEY)
        self.scheduler.reset()
        LOGGER.info("Cleared stored snapshot")


__all__ = [
    "BackupInfo",
    "HISTORY_PREFIX",
    "LATEST_SNAPSHOT_KEY",
    "SNAPSHOT_FORMAT_VERSION",
    "SnapshotExporter",
    "SnapshotState",
    "content_hash",
    "history_key",
    "validate_document",
]
