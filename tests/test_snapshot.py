from __future__ import annotations

import json
from dataclasses import replace

import pytest

from comp_planner.db.sqlite_backend import SQLiteBackend
from comp_planner.exceptions import StorageFailure, ValidationError
from comp_planner.ingestion.models import Budget
from comp_planner.persistence.scheduler import ChangeTrackingScheduler
from comp_planner.persistence.snapshot import (
    LATEST_SNAPSHOT_KEY,
    SnapshotExporter,
    SnapshotState,
    content_hash,
    validate_document,
)

BUDGET = Budget(amount=50000.0, currency="USD")


def test_content_hash_ignores_order_and_display_fields(records) -> None:
    reordered = list(reversed(records))
    annotated = [replace(records[0], name="Someone", annotations={"x": 1}), records[1]]

    assert content_hash(records, BUDGET) == content_hash(reordered, BUDGET)
    assert content_hash(records, BUDGET) == content_hash(annotated, BUDGET)
    assert content_hash(records, BUDGET) != content_hash(records, Budget(50000.0, "EUR"))
    raised = [replace(records[0], proposed_raise=1.0), records[1]]
    assert content_hash(records, BUDGET) != content_hash(raised, BUDGET)


def test_export_document_shape(records, clock) -> None:
    state = SnapshotState.capture(records, BUDGET, clock())

    document = state.to_document()

    assert document["budget"] == {"amount": 50000.0, "currency": "USD"}
    assert document["metadata"] == {
        "timestamp": "2025-01-06T09:00:00+00:00",
        "version": "1.0",
        "record_count": 2,
        "content_hash": state.content_hash,
        "has_changes": True,
    }
    assert document["records"][1]["employee_id"] == "E2"
    assert validate_document(document) == []


def test_document_roundtrip_through_json(records, clock) -> None:
    state = SnapshotState.capture(records, BUDGET, clock())

    restored = SnapshotState.from_document(json.loads(json.dumps(state.to_document())))

    assert restored == state


@pytest.mark.parametrize(
    ("mutate", "message"),
    [
        (lambda doc: doc.pop("records"), "records must be a list"),
        (lambda doc: doc["budget"].update(amount="lots"), "budget.amount must be a number"),
        (lambda doc: doc["budget"].update(currency=None), "budget.currency must be a string"),
        (lambda doc: doc["metadata"].update(timestamp=5), "metadata.timestamp must be a string"),
        (lambda doc: doc["metadata"].update(timestamp="yesterday"), "not an ISO timestamp"),
        (lambda doc: doc["metadata"].update(record_count=3), "record_count does not match"),
        (lambda doc: doc["records"][0].pop("employee_id"), "require an employee id"),
        (lambda doc: doc["records"][0].update(base_salary_usd=1.0), "content hash"),
    ],
)
def test_invalid_documents_raise_validation_error(records, clock, mutate, message) -> None:
    document = SnapshotState.capture(records, BUDGET, clock()).to_document()
    mutate(document)

    with pytest.raises(ValidationError, match=message):
        SnapshotState.from_document(document)


def test_non_object_document_is_rejected() -> None:
    with pytest.raises(ValidationError) as excinfo:
        SnapshotState.from_document(["not", "a", "snapshot"])
    assert excinfo.value.errors == ["document must be a JSON object"]


def test_legacy_backup_documents_are_upgraded() -> None:
    legacy = {
        "employees": [
            {"employeeId": 17, "baseSalary": 1000, "baseSalaryUSD": 1000, "proposedRaise": 50, "region": "EMEA"}
        ],
        "budget": {"totalBudget": 2500, "budgetCurrency": "USD"},
        "metadata": {"timestamp": "2025-02-01T10:00:00.000Z", "version": "1.0", "employeeCount": 1, "hasChanges": False},
    }

    state = SnapshotState.from_document(legacy)

    record = state.records["17"]
    assert record.base_salary_usd == 1000
    assert record.proposed_raise == 50
    assert record.annotations == {"region": "EMEA"}
    assert state.budget == Budget(2500.0, "USD")
    assert state.has_changes is False


@pytest.mark.asyncio
async def test_exporter_write_and_import_file(tmp_path, memory_backend, records, clock) -> None:
    scheduler = ChangeTrackingScheduler(memory_backend, clock=clock)
    exporter = SnapshotExporter(scheduler)
    assert exporter.latest() is None
    assert exporter.export_json() is None
    with pytest.raises(StorageFailure):
        exporter.write(tmp_path / "nothing.json")

    committed = await scheduler.flush_now(records, BUDGET)
    target = exporter.write(tmp_path / "exports" / "backup.json")

    assert exporter.latest() is committed
    assert json.loads(target.read_text(encoding="utf-8")) == exporter.export_document()
    assert exporter.import_file(target) == committed


def test_import_json_and_missing_file_errors(tmp_path, memory_backend) -> None:
    exporter = SnapshotExporter(ChangeTrackingScheduler(memory_backend))

    with pytest.raises(ValidationError, match="not valid JSON"):
        exporter.import_json("{oops")
    with pytest.raises(ValidationError, match="Could not read"):
        exporter.import_file(tmp_path / "missing.json")


@pytest.mark.asyncio
async def test_restore_adopts_stored_snapshot(tmp_path, records, clock) -> None:
    backend = SQLiteBackend(db_path=tmp_path / "planner.db")
    writer = ChangeTrackingScheduler(backend, clock=clock)
    saved = await writer.flush_now(records, BUDGET)

    scheduler = ChangeTrackingScheduler(backend, clock=clock)
    exporter = SnapshotExporter(scheduler)
    restored = await exporter.restore()

    assert restored == saved
    assert scheduler.committed_hash == saved.content_hash
    assert await scheduler.flush_now(records, BUDGET) is None

    info = exporter.backup_info()
    assert info is not None
    assert info.record_count == 2
    assert info.timestamp == clock()
    backend.close()


@pytest.mark.asyncio
async def test_history_lists_snapshots_oldest_first(memory_backend, records, clock) -> None:
    scheduler = ChangeTrackingScheduler(memory_backend, clock=clock)
    exporter = SnapshotExporter(scheduler)
    await scheduler.flush_now(records, BUDGET)
    clock.advance(minutes=1)
    await scheduler.flush_now(records, Budget(amount=1.0))
    memory_backend.documents["snapshot:history:zzz"] = {"broken": True}

    history = await exporter.history()

    assert [state.budget.amount for state in history] == [50000.0, 1.0]


@pytest.mark.asyncio
async def test_restore_and_clear(memory_backend, records, clock) -> None:
    scheduler = ChangeTrackingScheduler(memory_backend, clock=clock)
    exporter = SnapshotExporter(scheduler)
    assert await exporter.restore() is None

    await scheduler.flush_now(records, BUDGET)
    await exporter.clear()

    assert LATEST_SNAPSHOT_KEY not in memory_backend.documents
    assert scheduler.committed_hash is None
    assert exporter.backup_info() is None


@pytest.mark.asyncio
async def test_whole_number_budget_survives_restore(tmp_path, records, clock) -> None:
    backend = SQLiteBackend(db_path=tmp_path / "planner.db")
    budget = Budget(amount=50000, currency="USD")
    saved = await ChangeTrackingScheduler(backend, clock=clock).flush_now(records, budget)

    scheduler = ChangeTrackingScheduler(backend, clock=clock)
    restored = await SnapshotExporter(scheduler).restore()

    assert restored is not None
    assert restored.content_hash == saved.content_hash
    assert await scheduler.flush_now(records, budget) is None
    backend.close()


def test_import_accepts_whole_number_amounts(records, clock) -> None:
    state = SnapshotState.capture(records, Budget(amount=50000, currency="USD"), clock())
    document = json.loads(json.dumps(state.to_document()))
    for raw in document["records"]:
        raw["base_salary_usd"] = int(raw["base_salary_usd"])

    restored = SnapshotState.from_document(document)

    assert restored.content_hash == state.content_hash
    assert restored.budget.amount == 50000.0
