from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from comp_planner.db.base_backend import BackendStrategy, PersistenceResult
from comp_planner.exceptions import LiveSourceError, StorageFailure
from comp_planner.ingestion.models import CompensationRecord
from comp_planner.rates.models import RateTable

T0 = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)

USD_TABLE = {"USD": 1.0, "EUR": 0.9, "GBP": 0.8, "INR": 83.0, "JPY": 150.0}


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)


class FakeLiveSource:
    """Serves tables derived from ``USD_TABLE``; can fail or block on demand."""

    def __init__(self, clock: FakeClock, usd_rates: dict[str, float] | None = None) -> None:
        self.clock = clock
        self.usd_rates = dict(usd_rates or USD_TABLE)
        self.calls: list[str] = []
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None

    async def fetch_table(self, base: str) -> RateTable:
        self.calls.append(base)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        anchor = self.usd_rates.get(base)
        if anchor is None:
            raise LiveSourceError(f"unknown base {base}")
        rates = {code: value / anchor for code, value in self.usd_rates.items()}
        return RateTable(base=base, rates=rates, last_updated=self.clock())


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def live_source(clock: FakeClock) -> FakeLiveSource:
    return FakeLiveSource(clock)


@pytest.fixture
def records() -> list[CompensationRecord]:
    return [
        CompensationRecord(
            employee_id="E1",
            name="Ada",
            base_salary=85000.0,
            base_salary_usd=85000.0,
            currency="USD",
            new_salary=85000.0,
            salary_grade_mid=90000.0,
            job_title="Engineer II",
            grade_level="G5",
        ),
        CompensationRecord(
            employee_id="E2",
            name="Ravi",
            base_salary=1_500_000.0,
            base_salary_usd=18_072.0,
            currency="INR",
            new_salary=18_072.0,
            salary_grade_mid=1_600_000.0,
        ),
    ]


class MemoryBackend(BackendStrategy):
    """Dict-backed store that records every write."""

    def __init__(self) -> None:
        self.documents: dict[str, object] = {}
        self.writes: list[str] = []
        self.fail_writes = False

    def ensure_schema(self) -> None:
        return None

    def put(self, key, value, *, expires_at=None) -> PersistenceResult:
        if self.fail_writes:
            raise StorageFailure(f"cannot write {key}")
        self.writes.append(key)
        existed = key in self.documents
        self.documents[key] = json.loads(json.dumps(value))
        return PersistenceResult(inserted=0 if existed else 1, updated=1 if existed else 0)

    def get(self, key):
        return self.documents.get(key)

    def get_unexpired(self, key, now):
        return self.documents.get(key)

    def scan_prefix(self, prefix):
        return sorted((key, value) for key, value in self.documents.items() if key.startswith(prefix))

    def delete(self, key) -> bool:
        return self.documents.pop(key, None) is not None


@pytest.fixture
def memory_backend() -> MemoryBackend:
    return MemoryBackend()
