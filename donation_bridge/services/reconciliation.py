"""Reconciliation of donation bridge status with the bridge monitor."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from pydantic import ValidationError

from donation_bridge.config import Settings, get_settings
from donation_bridge.models.donation import (
    Donation, DonationStatus, TERMINAL_BRIDGE_STATUSES
)
from donation_bridge.models.reconciliation import (
    DonationOutcome, OutcomeStatus, ReconciliationRun
)
from donation_bridge.services.bridge_monitor import BridgeMonitorClient, BridgeQueryError
from donation_bridge.services.scheduler import IntervalScheduler
from donation_bridge.services.transitions import (
    DONATIONS_TABLE, apply_transition, decide_transition
)
from donation_bridge.store import RecordQuery, RecordStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BridgeReconciler:
    """
    Periodically reconciles paid donations against the bridge monitor.

    Each run:
    1. Selects up to ``reconcile_batch_limit`` donations that are paid in
       the ledger and not yet in a terminal bridge status
    2. Queries the bridge for each one, sequentially
    3. Applies the resulting transition and milestone cascade

    Only one run executes at a time; overlapping triggers are refused.
    """

    def __init__(
        self,
        store: RecordStore,
        bridge: BridgeMonitorClient,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.bridge = bridge
        self.settings = settings or get_settings()
        self._clock = clock
        self._lock = asyncio.Lock()
        self.last_run: Optional[ReconciliationRun] = None

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def candidate_query(self) -> RecordQuery:
        return RecordQuery(
            equals={"status": DonationStatus.PAID.value},
            not_within={"bridge_status": [s.value for s in TERMINAL_BRIDGE_STATUSES]},
            limit=self.settings.reconcile_batch_limit,
        )

    def fetch_candidates(self) -> List[dict]:
        rows = self.store.find(DONATIONS_TABLE, self.candidate_query())
        # a store may ignore the limit; the batch bound still holds
        return rows[:self.settings.reconcile_batch_limit]

    async def reconcile_row(self, row: dict) -> DonationOutcome:
        """Validate a stored donation row and reconcile it. Never raises."""
        try:
            donation = Donation.model_validate(row)
        except ValidationError as e:
            donation_id = str(row.get("id")) if isinstance(row, dict) else repr(row)
            logger.warning("Unreadable donation %s: %s", donation_id, e.errors()[0]["msg"])
            return DonationOutcome(
                donation_id=donation_id,
                status=OutcomeStatus.FAILED,
                error=f"invalid donation record: {e.error_count()} error(s)",
            )
        return await self.reconcile_donation(donation)

    async def reconcile_donation(self, donation: Donation) -> DonationOutcome:
        """Reconcile one donation. Never raises."""
        if not donation.tx_hash:
            logger.warning("Donation %s has no tx_hash, skipping bridge check", donation.id)
            return DonationOutcome(
                donation_id=donation.id,
                status=OutcomeStatus.SKIPPED,
                error="missing tx_hash",
            )

        try:
            payment = await self.bridge.get_donation_payment(donation.tx_hash)
        except BridgeQueryError as e:
            logger.warning("Bridge unavailable for donation %s: %s", donation.id, e)
            return DonationOutcome(
                donation_id=donation.id,
                status=OutcomeStatus.SKIPPED,
                error=str(e),
            )
        except Exception as e:
            logger.exception("Bridge lookup crashed for donation %s", donation.id)
            return DonationOutcome(
                donation_id=donation.id,
                status=OutcomeStatus.FAILED,
                error=str(e),
            )

        transition = None
        try:
            transition = decide_transition(donation, payment, self._clock(), self.settings)
            milestone_updated = apply_transition(
                self.store, donation, transition, self.settings
            )
        except Exception as e:
            logger.exception("Failed to update bridge status of donation %s", donation.id)
            return DonationOutcome(
                donation_id=donation.id,
                status=OutcomeStatus.FAILED,
                bridge_status=transition.bridge_status if transition else None,
                error=str(e),
            )

        return DonationOutcome(
            donation_id=donation.id,
            status=OutcomeStatus.UPDATED,
            bridge_status=transition.bridge_status,
            milestone_updated=milestone_updated,
        )

    async def run_once(self) -> Optional[ReconciliationRun]:
        """
        Run one reconciliation pass.

        Returns None if another run is in progress. Errors while selecting
        candidates propagate to the caller.
        """
        if self._lock.locked():
            logger.warning("Bridge reconciliation already running, skipping this trigger")
            return None

        async with self._lock:
            run = ReconciliationRun(started_at=self._clock())
            rows = self.fetch_candidates()
            run.donations_count = len(rows)
            logger.info(
                "updateDonationsStatusesWithBridge executed, donations_count=%s",
                len(rows)
            )

            for row in rows:
                run.outcomes.append(await self.reconcile_row(row))

            run.finished_at = self._clock()
            self.last_run = run

        logger.info(
            "Bridge reconciliation finished: updated=%s skipped=%s failed=%s",
            run.updated, run.skipped, run.failed
        )
        return run


def register_bridge_reconciliation(
    reconciler: BridgeReconciler,
    scheduler: IntervalScheduler,
) -> asyncio.Task:
    """Schedule ``reconciler.run_once`` on the scheduler's cadence."""
    logger.info(
        "Scheduling bridge reconciliation every %s",
        scheduler.interval
    )
    return scheduler.run_every(reconciler.run_once)


def build_scheduler(settings: Optional[Settings] = None) -> IntervalScheduler:
    """Scheduler at the configured reconciliation cadence."""
    settings = settings or get_settings()
    return IntervalScheduler(timedelta(minutes=settings.reconcile_interval_minutes))
