"""Shared fixtures: in-memory record store, fake bridge monitor, fixed clock."""

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from donation_bridge.config import Settings
from donation_bridge.models.bridge import BridgePayment
from donation_bridge.services.bridge_monitor import BridgeQueryError
from donation_bridge.store import MemoryRecordStore

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


def make_donation(donation_id: str, **overrides) -> dict:
    donation = {
        "id": donation_id,
        "status": "Paid",
        "bridge_status": None,
        "bridge_tx_hash": None,
        "tx_hash": f"0xtx{donation_id}",
        "amount_remaining": "10",
        "created_at": (NOW - timedelta(days=1)).isoformat(),
        "owner_type": "campaign",
        "owner_type_id": "campaign-1",
    }
    donation.update(overrides)
    return donation


def make_milestone(milestone_id: str, **overrides) -> dict:
    milestone = {
        "id": milestone_id,
        "max_amount": "100",
        "reviewer_address": None,
        "fully_funded": True,
        "is_all_donations_paid_in_bridge": False,
    }
    milestone.update(overrides)
    return milestone


def paid_payment(tx_hash: str = "0xbridge") -> dict:
    return {"paid": True, "canceled": False, "event": {"transactionHash": tx_hash}}


def canceled_payment(tx_hash: str = "0xbridge") -> dict:
    return {"paid": False, "canceled": True, "event": {"transactionHash": tx_hash}}


class FakeBridgeMonitor:
    """Bridge monitor answering from a dict keyed by tx hash."""

    def __init__(self, payments: Optional[dict] = None, failing: Optional[set] = None):
        self.payments = payments or {}
        self.failing = failing or set()
        self.calls = []

    async def get_donation_payment(self, tx_hash: str) -> Optional[BridgePayment]:
        self.calls.append(tx_hash)
        if tx_hash in self.failing:
            raise BridgeQueryError(tx_hash, "connection refused")
        data = self.payments.get(tx_hash)
        return BridgePayment.model_validate(data) if data is not None else None

    async def close(self):
        pass


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        supabase_url="",
        supabase_key="",
        supabase_service_key="",
        bridge_monitor_base_url="https://bridge.example.org",
        reconcile_interval_minutes=5,
        reconcile_batch_limit=100,
        bridge_expiry_days=60,
        recompute_milestone_on_cancel=False,
    )


@pytest.fixture
def store() -> MemoryRecordStore:
    return MemoryRecordStore()


@pytest.fixture
def bridge() -> FakeBridgeMonitor:
    return FakeBridgeMonitor()
