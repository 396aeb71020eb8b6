"""Bridge monitor client for donation settlement lookups."""

import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from donation_bridge.config import get_settings
from donation_bridge.models.bridge import BridgePayment

logger = logging.getLogger(__name__)


class BridgeQueryError(Exception):
    """The bridge monitor could not be reached or answered with an error."""

    def __init__(self, tx_hash: str, message: str):
        super().__init__(f"Bridge query for {tx_hash} failed: {message}")
        self.tx_hash = tx_hash


class BridgeMonitorClient:
    """
    Client for the bridge monitor ``/payments`` endpoint.

    Payments are looked up by the home-chain transaction hash, which the
    bridge stores as ``event.returnValues.reference``.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def get_donation_payment(self, tx_hash: str) -> Optional[BridgePayment]:
        """
        Return the first bridge payment referencing ``tx_hash``.

        Returns None when the bridge has no usable record. Raises
        BridgeQueryError on transport failures and error responses.
        """
        if not tx_hash:
            raise ValueError("tx_hash is required to query the bridge")

        try:
            response = await self.client.get(
                f"{self.base_url}/payments",
                params={"event.returnValues.reference": tx_hash},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise BridgeQueryError(
                tx_hash, f"bridge returned {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise BridgeQueryError(tx_hash, str(e) or type(e).__name__) from e

        try:
            body = response.json()
        except ValueError:
            logger.warning("Bridge returned non-JSON body for tx %s", tx_hash)
            return None

        records = body.get("data") if isinstance(body, dict) else None
        if not isinstance(records, list) or not records:
            return None

        try:
            return BridgePayment.model_validate(records[0])
        except ValidationError as e:
            logger.warning(
                "Ignoring malformed bridge payment for tx %s: %s",
                tx_hash, e.errors()[0]["msg"] if e.errors() else e
            )
            return None

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()


def get_bridge_monitor() -> BridgeMonitorClient:
    """Create a bridge monitor client from settings."""
    settings = get_settings()
    return BridgeMonitorClient(
        settings.bridge_monitor_base_url,
        timeout=settings.bridge_request_timeout_seconds,
    )
