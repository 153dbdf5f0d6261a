"""Relationship reconciliation between relay and graph snapshots."""

from .engine import (
    ReconciliationEngine,
    ReconciliationResult,
    reconcile,
    reconcile_directories,
    shard_difference,
)
from .extraction import (
    ExtractionResult,
    SnapshotBuilder,
    build_snapshots,
    read_events,
    relationships_from_event,
)

__all__ = [
    "ExtractionResult",
    "ReconciliationEngine",
    "ReconciliationResult",
    "SnapshotBuilder",
    "build_snapshots",
    "read_events",
    "reconcile",
    "reconcile_directories",
    "relationships_from_event",
    "shard_difference",
]
