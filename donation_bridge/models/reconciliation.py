"""Reconciliation run result models."""

from enum import Enum
from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional

from donation_bridge.models.donation import DonationBridgeStatus


class OutcomeStatus(str, Enum):
    """What happened to a donation during a run."""
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


class DonationOutcome(BaseModel):
    """Result of reconciling one donation."""
    donation_id: str
    status: OutcomeStatus
    bridge_status: Optional[DonationBridgeStatus] = None
    milestone_updated: bool = False
    error: Optional[str] = None


class ReconciliationRun(BaseModel):
    """Summary of one reconciliation run."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    donations_count: int = 0
    outcomes: List[DonationOutcome] = Field(default_factory=list)

    def _count(self, status: OutcomeStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def updated(self) -> int:
        return self._count(OutcomeStatus.UPDATED)

    @property
    def skipped(self) -> int:
        return self._count(OutcomeStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(OutcomeStatus.FAILED)


class RunSummary(BaseModel):
    """Reconciliation run as exposed over HTTP."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    donations_count: int
    updated: int
    skipped: int
    failed: int
    outcomes: List[DonationOutcome]

    @classmethod
    def from_run(cls, run: ReconciliationRun) -> "RunSummary":
        return cls(
            started_at=run.started_at,
            finished_at=run.finished_at,
            donations_count=run.donations_count,
            updated=run.updated,
            skipped=run.skipped,
            failed=run.failed,
            outcomes=run.outcomes,
        )


class ReconciliationStatus(BaseModel):
    """Current reconciler state."""
    running: bool
    interval_minutes: int
    batch_limit: int
    last_run: Optional[RunSummary] = None
