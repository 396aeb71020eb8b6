"""Milestone aggregate status derived from donation bridge settlement."""

import logging
from typing import List, Optional

from pydantic import ValidationError

from donation_bridge.config import Settings
from donation_bridge.models.donation import (
    Donation, DonationStatus, SETTLED_BRIDGE_STATUSES
)
from donation_bridge.models.milestone import Milestone
from donation_bridge.store import RecordQuery, RecordStore

logger = logging.getLogger(__name__)

MILESTONES_TABLE = "milestones"
DONATIONS_TABLE = "donations"

IN_FLIGHT_STATUSES = (DonationStatus.COMMITTED, DonationStatus.PAYING)


def is_milestone_eligible(milestone: Milestone, zero_address: str) -> bool:
    """Only capped milestones that are fully funded or reviewed can be marked paid."""
    if not milestone.is_capped:
        return False
    return milestone.fully_funded or milestone.has_reviewer(zero_address)


def outstanding_donations(
    store: RecordStore, milestone_id: str
) -> List[Optional[Donation]]:
    """
    Donations under a milestone that still carry a remaining amount.

    Rows that fail validation come back as None.
    """
    rows = store.find(DONATIONS_TABLE, RecordQuery(
        equals={"owner_type_id": milestone_id},
        within={"status": [
            DonationStatus.COMMITTED.value,
            DonationStatus.PAYING.value,
            DonationStatus.PAID.value,
        ]},
        not_equals={"amount_remaining": "0"},
    ))
    return [_parse_donation(r) for r in rows]


def _parse_donation(row: dict) -> Optional[Donation]:
    try:
        return Donation.model_validate(row)
    except ValidationError as e:
        logger.warning("Unreadable donation %s: %s", row.get("id"), e.errors()[0]["msg"])
        return None


def update_milestone_paid_in_bridge(
    store: RecordStore,
    milestone_id: str,
    settings: Settings,
) -> bool:
    """
    Set ``is_all_donations_paid_in_bridge`` once every outstanding
    donation of the milestone has settled in the bridge.

    Never clears the flag. Returns: True if the flag was written
    """
    row = store.get(MILESTONES_TABLE, milestone_id)
    if row is None:
        logger.warning("Milestone %s not found, skipping bridge status update", milestone_id)
        return False
    milestone = Milestone.model_validate(row)

    # never set uncapped or without-reviewer non-fullyFunded milestones as paid
    if not is_milestone_eligible(milestone, settings.zero_address):
        return False

    donations = outstanding_donations(store, milestone_id)

    # an unreadable donation cannot be shown to be settled
    if any(d is None for d in donations):
        return False

    if any(d.status in IN_FLIGHT_STATUSES for d in donations):
        return False

    if any(d.bridge_status not in SETTLED_BRIDGE_STATUSES for d in donations):
        return False

    store.patch(MILESTONES_TABLE, milestone_id, {
        "is_all_donations_paid_in_bridge": True
    })
    logger.info("Milestone %s marked as all donations paid in bridge", milestone_id)
    return True
