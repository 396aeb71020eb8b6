"""Milestone models."""

from decimal import Decimal
from pydantic import BaseModel
from typing import Optional


class Milestone(BaseModel):
    """Funding milestone that owns donations."""
    id: str
    max_amount: Optional[Decimal] = None  # None or zero means uncapped
    reviewer_address: Optional[str] = None
    fully_funded: bool = False
    is_all_donations_paid_in_bridge: bool = False

    class Config:
        from_attributes = True

    @property
    def is_capped(self) -> bool:
        return bool(self.max_amount)

    def has_reviewer(self, zero_address: str) -> bool:
        """True when a reviewer other than the zero address is assigned."""
        if not self.reviewer_address:
            return False
        return self.reviewer_address.lower() != zero_address.lower()
