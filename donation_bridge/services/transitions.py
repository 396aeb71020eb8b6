"""Bridge status transition rules for donations."""

import logging
from datetime import datetime, timedelta
from typing import Optional

from pydantic import BaseModel

from donation_bridge.config import Settings
from donation_bridge.models.bridge import BridgeOutcome, BridgePayment
from donation_bridge.models.donation import Donation, DonationBridgeStatus
from donation_bridge.services.milestones import update_milestone_paid_in_bridge
from donation_bridge.store import RecordStore

logger = logging.getLogger(__name__)

DONATIONS_TABLE = "donations"


class BridgeTransition(BaseModel):
    """New bridge fields for a donation and whether its milestone needs a recompute."""
    bridge_status: DonationBridgeStatus
    bridge_tx_hash: Optional[str] = None
    recompute_milestone: bool = False

    def patch_fields(self) -> dict:
        fields = {"bridge_status": self.bridge_status.value}
        if self.bridge_tx_hash:
            fields["bridge_tx_hash"] = self.bridge_tx_hash
        return fields


def classify_payment(payment: Optional[BridgePayment]) -> BridgeOutcome:
    """
    Classify a bridge payment record.

    ``paid`` wins over ``canceled``. A settled record without an event
    transaction hash is not usable and counts as unresolved.
    """
    if payment is None or not payment.transaction_hash:
        return BridgeOutcome.UNRESOLVED
    if payment.paid:
        return BridgeOutcome.PAID
    if payment.canceled:
        return BridgeOutcome.CANCELLED
    return BridgeOutcome.UNRESOLVED


def unresolved_status(
    donation: Donation,
    now: datetime,
    expiry_days: int,
) -> DonationBridgeStatus:
    """Unknown until the donation is older than the expiry window."""
    if now - donation.created_at > timedelta(days=expiry_days):
        return DonationBridgeStatus.EXPIRED
    return DonationBridgeStatus.UNKNOWN


def decide_transition(
    donation: Donation,
    payment: Optional[BridgePayment],
    now: datetime,
    settings: Settings,
) -> BridgeTransition:
    """Decide the bridge transition for a donation. Performs no writes."""
    outcome = classify_payment(payment)

    if outcome == BridgeOutcome.PAID:
        return BridgeTransition(
            bridge_status=DonationBridgeStatus.PAID,
            bridge_tx_hash=payment.transaction_hash,
            recompute_milestone=donation.is_milestone_donation,
        )

    if outcome == BridgeOutcome.CANCELLED:
        return BridgeTransition(
            bridge_status=DonationBridgeStatus.CANCELLED,
            bridge_tx_hash=payment.transaction_hash,
            recompute_milestone=(
                donation.is_milestone_donation
                and settings.recompute_milestone_on_cancel
            ),
        )

    return BridgeTransition(
        bridge_status=unresolved_status(donation, now, settings.bridge_expiry_days)
    )


def apply_transition(
    store: RecordStore,
    donation: Donation,
    transition: BridgeTransition,
    settings: Settings,
) -> bool:
    """
    Write a transition to the donation and cascade to its milestone.

    Returns: True if the milestone flag was set
    """
    store.patch(DONATIONS_TABLE, donation.id, transition.patch_fields())
    logger.info(
        "update donation bridge status donation_id=%s bridge_status=%s",
        donation.id, transition.bridge_status.value
    )

    if transition.recompute_milestone and donation.owner_type_id:
        return update_milestone_paid_in_bridge(
            store, donation.owner_type_id, settings
        )
    return False
