"""Membership delta reconciliation."""

from src.sync.engine import ReconciliationEngine, partition_delta
from src.sync.outcomes import (
    NotificationResult,
    ProcessingState,
    RegionResult,
    SkippedMember,
    SyncOutcome,
)

__all__ = [
    "ReconciliationEngine",
    "partition_delta",
    "NotificationResult",
    "ProcessingState",
    "RegionResult",
    "SkippedMember",
    "SyncOutcome",
]
