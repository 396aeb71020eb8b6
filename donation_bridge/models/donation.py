"""Donation models."""

from enum import Enum
from pydantic import BaseModel, field_validator
from datetime import datetime, timezone
from typing import Optional


class DonationStatus(str, Enum):
    """Donation lifecycle status in the ledger."""
    PENDING = "Pending"
    PAYING = "Paying"
    PAID = "Paid"
    TO_APPROVE = "To_Approve"
    WAITING = "Waiting"
    COMMITTED = "Committed"
    CANCELED = "Canceled"
    REJECTED = "Rejected"
    FAILED = "Failed"


class DonationBridgeStatus(str, Enum):
    """Settlement status reported by the bridge monitor."""
    PENDING = "Pending"
    UNKNOWN = "Unknown"
    PAID = "Paid"
    CANCELLED = "Cancelled"
    EXPIRED = "Expired"


# Never revisited by the reconciliation scan
TERMINAL_BRIDGE_STATUSES = (
    DonationBridgeStatus.PAID,
    DonationBridgeStatus.CANCELLED,
    DonationBridgeStatus.EXPIRED,
)

# Counted as settled when recomputing a milestone
SETTLED_BRIDGE_STATUSES = (
    DonationBridgeStatus.PAID,
    DonationBridgeStatus.CANCELLED,
)


class AdminType(str, Enum):
    """Kind of entity that owns a donation."""
    GIVER = "giver"
    DAC = "dac"
    CAMPAIGN = "campaign"
    MILESTONE = "milestone"


class Donation(BaseModel):
    """Donation record as stored in the ledger."""
    id: str
    status: DonationStatus
    bridge_status: Optional[DonationBridgeStatus] = None
    bridge_tx_hash: Optional[str] = None
    tx_hash: Optional[str] = None
    amount_remaining: str = "0"
    created_at: datetime
    owner_type: Optional[AdminType] = None
    owner_type_id: Optional[str] = None

    class Config:
        from_attributes = True

    @field_validator("id", "amount_remaining", "owner_type_id", mode="before")
    @classmethod
    def numbers_as_text(cls, value):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("created_at")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def is_milestone_donation(self) -> bool:
        return self.owner_type == AdminType.MILESTONE
