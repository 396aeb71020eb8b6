"""Bridge monitor payment models."""

from enum import Enum
from pydantic import BaseModel, Field
from typing import Optional


class BridgeEvent(BaseModel):
    """Foreign bridge event attached to a payment."""
    transaction_hash: Optional[str] = Field(default=None, alias="transactionHash")

    class Config:
        populate_by_name = True


class BridgePayment(BaseModel):
    """Payment record reported by the bridge monitor."""
    paid: bool = False
    canceled: bool = False
    event: Optional[BridgeEvent] = None

    @property
    def transaction_hash(self) -> Optional[str]:
        return self.event.transaction_hash if self.event else None


class BridgeOutcome(str, Enum):
    """Classified bridge answer for a single donation."""
    PAID = "paid"
    CANCELLED = "cancelled"
    UNRESOLVED = "unresolved"
