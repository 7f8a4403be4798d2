"""
Solana RPC client for blockhashes, simulation, broadcast and confirmation.
"""
import asyncio
import base64
import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

from solders.address_lookup_table_account import AddressLookupTable, AddressLookupTableAccount
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment, Confirmed
from solana.rpc.types import TxOpts

from .errors import BroadcastFailed, ConfirmationTimeout, TransactionReverted

logger = logging.getLogger(__name__)


@dataclass
class SimulationResult:
    err: Any
    logs: List[str] = field(default_factory=list)
    units_consumed: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.err is None


class SolanaClient:
    """Thin async wrapper over solana-py, shared by all executions."""

    def __init__(self, rpc_url: str):
        self.rpc_url = rpc_url
        self.client = AsyncClient(rpc_url)

    async def get_latest_blockhash(self) -> Tuple[Hash, int]:
        """
        Fetch a fresh blockhash for transaction building.

        Returns:
            (blockhash, last_valid_block_height)
        """
        result = await self.client.get_latest_blockhash(commitment=Confirmed)
        return result.value.blockhash, result.value.last_valid_block_height

    async def get_block_height(self) -> int:
        result = await self.client.get_block_height(commitment=Confirmed)
        return result.value

    async def simulate(self, tx: VersionedTransaction) -> SimulationResult:
        """
        Dry-run a transaction against current chain state.

        Signature verification is off so an unsigned transaction can be simulated
        before the wallet signs anything.
        """
        result = await self.client.simulate_transaction(tx, sig_verify=False, commitment=Confirmed)
        value = result.value
        sim = SimulationResult(
            err=value.err,
            logs=list(value.logs or []),
            units_consumed=value.units_consumed,
        )
        if sim.err is not None:
            logger.warning(f"Simulation error: {sim.err}")
        return sim

    async def broadcast(
        self,
        tx_bytes: bytes,
        skip_preflight: bool = True,
        max_retries: int = 2
    ) -> str:
        """
        Send signed transaction bytes.

        Args:
            tx_bytes: Serialized signed transaction
            skip_preflight: Skip preflight checks (we simulate before sending)
            max_retries: RPC-side resend attempts

        Returns:
            Transaction signature (base58)

        Raises:
            BroadcastFailed: RPC rejected the transaction or returned no signature
        """
        opts = TxOpts(skip_preflight=skip_preflight, max_retries=max_retries)
        try:
            result = await self.client.send_raw_transaction(tx_bytes, opts=opts)
        except Exception as e:
            raise BroadcastFailed(f"Raw send failed: {type(e).__name__}: {e}") from e
        if not result.value:
            raise BroadcastFailed("Raw send returned no signature")
        signature = str(result.value)
        logger.debug(f"Transaction sent: {signature}")
        return signature

    async def confirm(
        self,
        signature: str,
        commitment: Commitment = Confirmed,
        timeout: float = 45.0,
        last_valid_block_height: Optional[int] = None
    ):
        """
        Wait until the transaction reaches the commitment level.

        Raises:
            ConfirmationTimeout: Not confirmed within timeout or before the
                blockhash expired. The transaction may still land.
            TransactionReverted: Transaction landed with an execution error
        """
        try:
            result = await asyncio.wait_for(
                self.client.confirm_transaction(
                    Signature.from_string(signature),
                    commitment=commitment,
                    last_valid_block_height=last_valid_block_height,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise ConfirmationTimeout(
                f"Not confirmed after {timeout:.0f}s", details={"signature": signature}
            ) from e
        except Exception as e:
            # solana-py raises once the blockhash expires without a status
            raise ConfirmationTimeout(
                f"Confirmation failed: {type(e).__name__}: {e}", details={"signature": signature}
            ) from e

        statuses = result.value or []
        status = statuses[0] if statuses else None
        if status is None:
            raise ConfirmationTimeout("No signature status returned", details={"signature": signature})
        if status.err is not None:
            raise TransactionReverted(f"On-chain error: {status.err}", details={"signature": signature})

    async def get_address_lookup_table_accounts(
        self,
        addresses: List[str]
    ) -> List[AddressLookupTableAccount]:
        """
        Load Address Lookup Table accounts referenced by swap instructions.

        Raises:
            ValueError: If any ALT account cannot be loaded
        """
        alt_accounts = []
        for alt_address in addresses:
            pubkey = Pubkey.from_string(alt_address)
            account_info = await self.client.get_account_info(pubkey, commitment=Confirmed)
            if account_info.value is None:
                raise ValueError(f"ALT account {alt_address} not found")

            raw = account_info.value.data
            if isinstance(raw, str):
                raw = base64.b64decode(raw)
            table = AddressLookupTable.deserialize(bytes(raw))
            alt_accounts.append(AddressLookupTableAccount(pubkey, table.addresses))
            logger.debug(f"Loaded ALT account: {alt_address} with {len(table.addresses)} addresses")
        return alt_accounts

    async def close(self):
        """Close RPC client."""
        await self.client.close()
