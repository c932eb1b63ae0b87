"""Snapshot persistence: debounced writes plus export/import."""

from comp_planner.persistence.scheduler import ChangeTrackingScheduler
from comp_planner.persistence.snapshot import SnapshotExporter, SnapshotState, content_hash

__all__ = ["ChangeTrackingScheduler", "SnapshotExporter", "SnapshotState", "content_hash"]
