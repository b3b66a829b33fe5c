"""
Payment Gateway Client - billing ZIP lookups per transaction.

Calls are strictly sequential with a fixed pause between them; the
gateway rate-limits aggressively and there is no retry or backoff. One
failed lookup never aborts a batch: it is recorded against its
transaction id and the loop moves on.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from config import Settings
from errors import ConfigurationError, GatewayError
from http_client import JSONHTTPClient, UpstreamHTTPError

logger = logging.getLogger(__name__)

TRANSACTION_ID_PREFIX = "t1_txn_"

# Sentinels returned in place of a ZIP code
NO_TRANSACTION_ID = "No transaction ID"
INVALID_TRANSACTION_FORMAT = "Invalid transaction format"
API_KEY_NOT_CONFIGURED = "API key not configured"
ZIP_NOT_FOUND = "ZIP not found"


def extract_zip(payload: Any) -> Optional[str]:
    """ZIP from response.data[0].zip, or None when any step is missing."""
    try:
        zip_code = payload["response"]["data"][0]["zip"]
    except (KeyError, IndexError, TypeError):
        return None
    return str(zip_code) if zip_code else None


def is_gateway_transaction_id(transaction_id: Optional[str]) -> bool:
    return bool(transaction_id) and str(transaction_id).startswith(TRANSACTION_ID_PREFIX)


@dataclass
class ZipBatchResult:
    results: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def summary(self, total: int) -> Dict[str, int]:
        return {"total": total, "successful": len(self.results), "failed": len(self.errors)}


class PaymentGatewayClient(JSONHTTPClient):
    """Client for the gateway's transaction endpoint"""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str,
        delay_seconds: float = 0.1,
        timeout_seconds: float = 30.0,
    ):
        super().__init__(base_url, timeout_seconds=timeout_seconds)
        self.api_key = api_key
        self.delay_seconds = delay_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> "PaymentGatewayClient":
        return cls(
            api_key=settings.gateway_api_key,
            base_url=settings.gateway_base_url,
            delay_seconds=settings.zip_lookup_delay,
        )

    async def pause(self):
        if self.delay_seconds > 0:
            await asyncio.sleep(self.delay_seconds)

    async def fetch_transaction(self, transaction_id: str) -> Dict[str, Any]:
        """
        GET /txns/<id>.

        Raises:
            GatewayError: non-2xx status (status set) or transport/parse failure
        """
        headers = {"Content-Type": "application/json", "APIKEY": self.api_key or ""}
        try:
            status, reason, payload = await self.request_json("GET", f"/txns/{transaction_id}", headers=headers)
        except UpstreamHTTPError as e:
            logger.error(f"Gateway lookup failed for {transaction_id}: {e.message}")
            raise GatewayError(e.message) from e

        if status >= 400:
            logger.warning(f"Gateway returned HTTP {status} for {transaction_id}")
            raise GatewayError(f"HTTP {status}: {reason}", status=status)
        return payload

    async def lookup_zip(self, transaction_id: Optional[str]) -> str:
        """ZIP code or a sentinel string; never raises."""
        if not transaction_id:
            return NO_TRANSACTION_ID
        if not is_gateway_transaction_id(transaction_id):
            return INVALID_TRANSACTION_FORMAT
        if not self.api_key:
            return API_KEY_NOT_CONFIGURED

        try:
            payload = await self.fetch_transaction(transaction_id)
        except GatewayError as e:
            if e.status is not None:
                return f"API error: {e.status}"
            return f"API error: {e.message}"

        return extract_zip(payload) or ZIP_NOT_FOUND

    async def fetch_zips(self, transaction_ids: Sequence[str]) -> ZipBatchResult:
        """
        Batch lookup for the ZIP tool: successes carry the full response,
        failures land in errors with the transaction id.
        """
        if not self.api_key:
            raise ConfigurationError("API key not configured")

        batch = ZipBatchResult()
        called = False
        for transaction_id in transaction_ids:
            if not is_gateway_transaction_id(transaction_id):
                batch.errors.append({"transactionId": transaction_id, "error": INVALID_TRANSACTION_FORMAT})
                continue

            if called:
                await self.pause()
            called = True

            try:
                payload = await self.fetch_transaction(transaction_id)
            except GatewayError as e:
                batch.errors.append({"transactionId": transaction_id, "error": e.message})
                continue

            batch.results.append(
                {
                    "transactionId": transaction_id,
                    "zipCode": extract_zip(payload) or "Not found",
                    "fullResponse": payload,
                }
            )

        logger.info(
            f"ZIP batch finished: {len(batch.results)} ok, {len(batch.errors)} failed "
            f"of {len(transaction_ids)}"
        )
        return batch
