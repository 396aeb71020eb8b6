"""Tests for the bridge reconciliation driver."""

import asyncio
import logging
from datetime import timedelta

import pytest

from donation_bridge.models.donation import Donation
from donation_bridge.models.reconciliation import OutcomeStatus
from donation_bridge.services.reconciliation import (
    BridgeReconciler,
    register_bridge_reconciliation,
)
from donation_bridge.store import MemoryRecordStore, RecordStoreError
from conftest import (
    NOW, FakeBridgeMonitor, canceled_payment, make_donation, make_milestone, paid_payment
)


def _reconciler(store, bridge, settings) -> BridgeReconciler:
    return BridgeReconciler(store, bridge, settings, clock=lambda: NOW)


class FlakyStore(MemoryRecordStore):
    """Memory store whose patches fail for selected donation ids."""

    def __init__(self, failing_ids):
        super().__init__()
        self.failing_ids = set(failing_ids)

    def patch(self, table, record_id, fields):
        if record_id in self.failing_ids:
            raise RecordStoreError(f"write to {record_id} rejected")
        return super().patch(table, record_id, fields)


class TestSelection:
    """Which donations a run picks up."""

    @pytest.mark.asyncio
    async def test_only_paid_non_terminal_donations_are_selected(self, store, bridge, settings):
        store.insert("donations", make_donation("pending", status="Pending"))
        store.insert("donations", make_donation("committed", status="Committed"))
        store.insert("donations", make_donation("done", bridge_status="Paid", bridge_tx_hash="0xkeep"))
        store.insert("donations", make_donation("cancelled", bridge_status="Cancelled"))
        store.insert("donations", make_donation("expired", bridge_status="Expired"))
        store.insert("donations", make_donation("fresh", bridge_status=None))
        store.insert("donations", make_donation("unknown", bridge_status="Unknown"))
        untouched = {
            i: store.get("donations", i)
            for i in ("pending", "committed", "done", "cancelled", "expired")
        }

        run = await _reconciler(store, bridge, settings).run_once()

        assert run.donations_count == 2
        assert sorted(bridge.calls) == ["0xtxfresh", "0xtxunknown"]
        for donation_id, row in untouched.items():
            assert store.get("donations", donation_id) == row

    @pytest.mark.asyncio
    async def test_batch_never_exceeds_limit(self, store, bridge, settings):
        for i in range(150):
            store.insert("donations", make_donation(f"d{i}"))

        run = await _reconciler(store, bridge, settings).run_once()

        assert run.donations_count == 100
        assert len(bridge.calls) == 100
        assert len(run.outcomes) == 100


class TestTransitions:
    """End-to-end transitions through a run."""

    @pytest.mark.asyncio
    async def test_bridge_answers_are_applied(self, store, settings):
        store.insert("donations", make_donation("paid"))
        store.insert("donations", make_donation("canceled"))
        store.insert("donations", make_donation("recent"))
        store.insert("donations", make_donation(
            "old", created_at=(NOW - timedelta(days=61)).isoformat()
        ))
        bridge = FakeBridgeMonitor(payments={
            "0xtxpaid": paid_payment("0xbridgepaid"),
            "0xtxcanceled": canceled_payment("0xbridgecanceled"),
        })

        run = await _reconciler(store, bridge, settings).run_once()

        assert run.updated == 4
        assert store.get("donations", "paid")["bridge_status"] == "Paid"
        assert store.get("donations", "paid")["bridge_tx_hash"] == "0xbridgepaid"
        assert store.get("donations", "canceled")["bridge_status"] == "Cancelled"
        assert store.get("donations", "canceled")["bridge_tx_hash"] == "0xbridgecanceled"
        assert store.get("donations", "recent")["bridge_status"] == "Unknown"
        assert store.get("donations", "recent")["bridge_tx_hash"] is None
        assert store.get("donations", "old")["bridge_status"] == "Expired"

    @pytest.mark.asyncio
    async def test_terminal_donations_are_not_revisited(self, store, settings):
        store.insert("donations", make_donation("d1"))
        bridge = FakeBridgeMonitor(payments={"0xtxd1": paid_payment()})
        reconciler = _reconciler(store, bridge, settings)

        await reconciler.run_once()
        second = await reconciler.run_once()

        assert second.donations_count == 0
        assert bridge.calls == ["0xtxd1"]

    @pytest.mark.asyncio
    async def test_paid_milestone_donation_flags_milestone(self, store, settings):
        store.insert("milestones", make_milestone("m1"))
        store.insert("donations", make_donation(
            "d1", owner_type="milestone", owner_type_id="m1"
        ))
        bridge = FakeBridgeMonitor(payments={"0xtxd1": paid_payment()})

        run = await _reconciler(store, bridge, settings).run_once()

        assert run.outcomes[0].milestone_updated is True
        assert store.get("milestones", "m1")["is_all_donations_paid_in_bridge"] is True


class TestFailureIsolation:
    """One donation failing does not stop the batch."""

    @pytest.mark.asyncio
    async def test_bridge_failure_skips_donation(self, store, settings):
        store.insert("donations", make_donation("down"))
        store.insert("donations", make_donation("up"))
        bridge = FakeBridgeMonitor(
            payments={"0xtxup": paid_payment()},
            failing={"0xtxdown"},
        )

        run = await _reconciler(store, bridge, settings).run_once()

        outcomes = {o.donation_id: o for o in run.outcomes}
        assert outcomes["down"].status == OutcomeStatus.SKIPPED
        assert outcomes["up"].status == OutcomeStatus.UPDATED
        assert store.get("donations", "down")["bridge_status"] is None
        assert store.get("donations", "up")["bridge_status"] == "Paid"

    @pytest.mark.asyncio
    async def test_store_write_failure_is_reported(self, bridge, settings):
        store = FlakyStore(failing_ids={"bad"})
        store.insert("donations", make_donation("bad"))
        store.insert("donations", make_donation("good"))

        run = await _reconciler(store, bridge, settings).run_once()

        outcomes = {o.donation_id: o for o in run.outcomes}
        assert outcomes["bad"].status == OutcomeStatus.FAILED
        assert "rejected" in outcomes["bad"].error
        assert outcomes["good"].status == OutcomeStatus.UPDATED
        assert run.failed == 1

    @pytest.mark.asyncio
    async def test_decision_error_is_reported(self, store, bridge, settings, monkeypatch):
        from donation_bridge.services import reconciliation

        def explode(*args, **kwargs):
            raise ArithmeticError("clock skew")

        monkeypatch.setattr(reconciliation, "decide_transition", explode)
        store.insert("donations", make_donation("d1"))
        reconciler = _reconciler(store, bridge, settings)

        outcome = await reconciler.reconcile_donation(
            Donation.model_validate(store.get("donations", "d1"))
        )

        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.bridge_status is None
        assert "clock skew" in outcome.error

    @pytest.mark.asyncio
    async def test_missing_tx_hash_is_skipped(self, store, bridge, settings):
        store.insert("donations", make_donation("d1", tx_hash=None))

        run = await _reconciler(store, bridge, settings).run_once()

        assert run.outcomes[0].status == OutcomeStatus.SKIPPED
        assert bridge.calls == []

    @pytest.mark.asyncio
    async def test_fetch_failure_propagates_and_releases_lock(self, bridge, settings):
        class BrokenStore(MemoryRecordStore):
            def find(self, table, query):
                raise RecordStoreError("database unavailable")

        reconciler = _reconciler(BrokenStore(), bridge, settings)

        with pytest.raises(RecordStoreError):
            await reconciler.run_once()
        assert reconciler.running is False
        assert reconciler.last_run is None


class TestUnreadableRows:
    """Rows the donation model rejects fail on their own."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("overrides", [
        {"created_at": None},
        {"bridge_status": "Bogus"},
        {"owner_type": "nobody"},
    ])
    async def test_bad_row_does_not_stop_the_batch(self, store, settings, overrides):
        store.insert("donations", make_donation("bad", **overrides))
        store.insert("donations", make_donation("good"))
        bridge = FakeBridgeMonitor(payments={"0xtxgood": paid_payment()})

        run = await _reconciler(store, bridge, settings).run_once()

        outcomes = {o.donation_id: o for o in run.outcomes}
        assert run.donations_count == 2
        assert outcomes["bad"].status == OutcomeStatus.FAILED
        assert "invalid donation record" in outcomes["bad"].error
        assert outcomes["good"].status == OutcomeStatus.UPDATED
        assert store.get("donations", "good")["bridge_status"] == "Paid"

    @pytest.mark.asyncio
    async def test_pending_status_and_numeric_fields_are_reconciled(self, store, settings):
        store.insert("donations", make_donation(
            7, tx_hash="0xtx7", bridge_status="Pending", amount_remaining=5
        ))
        bridge = FakeBridgeMonitor(payments={"0xtx7": paid_payment("0xseven")})

        run = await _reconciler(store, bridge, settings).run_once()

        assert run.outcomes[0].donation_id == "7"
        assert run.outcomes[0].status == OutcomeStatus.UPDATED
        assert store.get("donations", "7")["bridge_tx_hash"] == "0xseven"


class TestRunLock:

    @pytest.mark.asyncio
    async def test_overlapping_run_is_refused(self, store, settings):
        store.insert("donations", make_donation("d1"))
        release = asyncio.Event()
        started = asyncio.Event()

        class SlowBridge(FakeBridgeMonitor):
            async def get_donation_payment(self, tx_hash):
                started.set()
                await release.wait()
                return await super().get_donation_payment(tx_hash)

        reconciler = _reconciler(store, SlowBridge(), settings)
        first = asyncio.create_task(reconciler.run_once())
        await started.wait()

        assert reconciler.running is True
        assert await reconciler.run_once() is None

        release.set()
        run = await first
        assert run.donations_count == 1
        assert reconciler.last_run is run
        assert reconciler.running is False


class _RecordingScheduler:
    interval = timedelta(minutes=5)

    def __init__(self):
        self.jobs = []

    def run_every(self, job):
        self.jobs.append(job)
        return "task"


def test_register_schedules_run_once(store, bridge, settings):
    reconciler = _reconciler(store, bridge, settings)
    scheduler = _RecordingScheduler()

    assert register_bridge_reconciliation(reconciler, scheduler) == "task"
    assert scheduler.jobs == [reconciler.run_once]


@pytest.mark.asyncio
async def test_run_logs_donation_count(store, bridge, settings, caplog):
    store.insert("donations", make_donation("d1"))
    store.insert("donations", make_donation("d2"))
    caplog.set_level(logging.INFO, logger="donation_bridge.services.reconciliation")

    await _reconciler(store, bridge, settings).run_once()

    messages = [r.getMessage() for r in caplog.records]
    assert "updateDonationsStatusesWithBridge executed, donations_count=2" in messages
