"""Result types produced by the reconciliation engine."""

from collections import Counter
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ProcessingState(str, Enum):
    """States of one notification. REJECTED, FAILED and COMPLETED are terminal."""

    VALIDATING = "validating"
    TOKEN_ACQUISITION = "token_acquisition"
    PARTITIONING = "partitioning"
    PROCESSING_REMOVALS = "processing_removals"
    PROCESSING_ADDITIONS = "processing_additions"
    COMPLETED = "completed"
    REJECTED = "rejected"
    FAILED = "failed"


class SyncOutcome(str, Enum):
    """Result of reconciling one user in one region."""

    CREATED = "created"
    ALREADY_PRESENT = "already_present"
    DELETED = "deleted"
    ALREADY_ABSENT = "already_absent"
    FAILED = "failed"


class RegionResult(BaseModel):
    """Outcome of one (member, region) cell."""

    member_id: str
    email: str
    region: str
    removed: bool
    outcome: SyncOutcome
    reason: Optional[str] = None


class SkippedMember(BaseModel):
    """A member whose identity could not be resolved; no region was touched for it."""

    member_id: str
    removed: bool
    reason: str


class NotificationResult(BaseModel):
    """Terminal result for a notification. Item failures never change the terminal state."""

    state: ProcessingState
    resource_id: Optional[str] = None
    results: list[RegionResult] = Field(default_factory=list)
    skipped: list[SkippedMember] = Field(default_factory=list)
    error: Optional[str] = None
    dry_run: bool = False

    @property
    def ok(self) -> bool:
        return self.state == ProcessingState.COMPLETED

    def counts(self) -> dict[str, int]:
        """Aggregate counts by outcome (plus skipped members) for logging and reporting."""
        counter = Counter(r.outcome.value for r in self.results)
        summary = {outcome.value: counter.get(outcome.value, 0) for outcome in SyncOutcome}
        summary["skipped_members"] = len(self.skipped)
        return summary

    @property
    def failed_cells(self) -> list[RegionResult]:
        return [r for r in self.results if r.outcome == SyncOutcome.FAILED]
