"""
Priority fee estimation and Jito bundle relay.

The relay is an optimization. Every failure surfaces as BroadcastFailed so the
executor can fall back to a plain RPC send.
"""
import base64
import hashlib
import logging
from typing import Any, List, Optional

import httpx
from solders.instruction import Instruction
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer

from .errors import BroadcastFailed

logger = logging.getLogger(__name__)


def estimate_priority_fee_lamports(override: Optional[int] = None) -> int:
    """
    Priority fee to attach to an execution.

    Uses the configured override when positive; otherwise 0 and the network
    base fee applies.
    """
    if override and override > 0:
        return int(override)
    return 0


def _error_message(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("message") or error)
    return str(error)


class BundleRelay:
    """JSON-RPC client for a Jito block engine."""

    def __init__(self, url: Optional[str] = None, timeout: float = 5.0):
        """
        Args:
            url: Block engine bundles endpoint. None disables the relay.
            timeout: Per-request timeout in seconds
        """
        self.url = url.rstrip('/') if url else None
        self.timeout = timeout
        self.client = httpx.AsyncClient(timeout=timeout) if self.url else None
        self._tip_accounts: List[str] = []

    @property
    def enabled(self) -> bool:
        return self.url is not None

    async def _call(self, method: str, params: List[Any]) -> Any:
        """
        Send one JSON-RPC request and return its result member.

        Raises:
            BroadcastFailed: Timeout, transport error, non-2xx, non-JSON body,
                error member, or missing result
        """
        if not self.enabled:
            raise BroadcastFailed("Bundle relay is not configured")

        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        try:
            response = await self.client.post(self.url, json=payload)
        except httpx.TimeoutException as e:
            raise BroadcastFailed(f"Relay {method} timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise BroadcastFailed(f"Relay {method} request failed: {type(e).__name__}: {e}") from e

        if response.status_code >= 300:
            raise BroadcastFailed(
                f"Relay {method} failed: status={response.status_code} body={response.text[:240]!r}",
                details={"status": response.status_code},
            )
        try:
            parsed = response.json()
        except ValueError as e:
            raise BroadcastFailed(f"Relay {method} returned a non-JSON body") from e

        if not isinstance(parsed, dict):
            raise BroadcastFailed(f"Relay {method} returned an unexpected payload: {str(parsed)[:240]}")
        if parsed.get("error"):
            raise BroadcastFailed(f"Relay {method} error: {_error_message(parsed['error'])}")
        if parsed.get("result") is None:
            raise BroadcastFailed(f"Relay {method} response has no result")
        return parsed["result"]

    async def send_bundle(self, transactions: List[bytes]) -> str:
        """
        Submit signed transactions as one bundle.

        Args:
            transactions: Serialized signed transactions, in execution order

        Returns:
            Bundle id
        """
        encoded = [base64.b64encode(tx).decode("ascii") for tx in transactions]
        result = await self._call("sendBundle", [encoded, {"encoding": "base64"}])
        if not isinstance(result, str):
            raise BroadcastFailed(f"Relay sendBundle returned a non-string bundle id: {result!r}")
        logger.debug(f"Bundle accepted: {result}")
        return result

    async def get_tip_accounts(self) -> List[str]:
        """Tip accounts advertised by the block engine, cached after the first call."""
        if self._tip_accounts:
            return list(self._tip_accounts)
        result = await self._call("getTipAccounts", [])
        accounts = [str(item).strip() for item in result or [] if str(item).strip()]
        if not accounts:
            raise BroadcastFailed("Relay getTipAccounts returned no accounts")
        self._tip_accounts = accounts
        return list(accounts)

    async def build_tip_instruction(self, payer: Pubkey, lamports: int, key: str) -> Instruction:
        """
        Transfer instruction paying the bundle tip.

        The tip account is picked deterministically from key so retries of the
        same pair hit the same account.
        """
        accounts = await self.get_tip_accounts()
        index = int(hashlib.sha256(key.encode("utf-8")).hexdigest(), 16) % len(accounts)
        return transfer(TransferParams(
            from_pubkey=payer,
            to_pubkey=Pubkey.from_string(accounts[index]),
            lamports=lamports,
        ))

    async def close(self):
        if self.client is not None:
            await self.client.aclose()
