"""
Transaction executor: build -> simulate -> branch-send -> confirm -> log.
"""
import asyncio
import base64
import hashlib
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction
from solana.rpc.commitment import Confirmed

from .errors import (
    ArbitrageError,
    BroadcastFailed,
    BuildTransactionFailed,
    SimulationFailed,
)
from .jupiter_client import RouteQuote, SwapInstruction, SwapInstructions
from .utils import get_terminal_colors

colors = get_terminal_colors()

logger = logging.getLogger(__name__)

MAX_TRANSACTION_SIZE = 1232
COMPUTE_UNIT_LIMIT = 1_400_000


class ExecutionMode(Enum):
    SIMULATE_ONLY = "simulate_only"
    LIVE = "live"


class ExecutionOutcome(Enum):
    """Terminal outcome. Values are the status strings written to the log."""
    SIMULATED = "simulated"
    BROADCAST = "success"
    FAILED = "failed"


class ExecutionState(Enum):
    BUILT = "built"
    SIMULATED = "simulated"
    DONE = "done"
    SUBMITTING = "submitting"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass(frozen=True)
class ExecutionRequest:
    pair_label: str
    leg_out: RouteQuote
    leg_back: RouteQuote
    wallet: Keypair
    mode: ExecutionMode = ExecutionMode.SIMULATE_ONLY
    verified_profit: int = 0

    @classmethod
    def from_candidate(cls, candidate, wallet: Keypair, mode: ExecutionMode) -> "ExecutionRequest":
        """
        Only verified candidates may become requests.

        Raises:
            ValueError: candidate.verified_profit is missing or not positive
        """
        profit = candidate.verified_profit
        if not isinstance(profit, int) or isinstance(profit, bool) or profit <= 0:
            raise ValueError(
                f"Refusing to execute {candidate.pair.label}: verified profit is {profit!r}"
            )
        return cls(
            pair_label=candidate.pair.label,
            leg_out=candidate.route_out,
            leg_back=candidate.route_back,
            wallet=wallet,
            mode=mode,
            verified_profit=profit,
        )


@dataclass(frozen=True)
class ExecutionResult:
    pair_label: str
    outcome: ExecutionOutcome
    latency_ms: int
    method: Optional[str] = None
    signature: Optional[str] = None
    reason: Optional[str] = None
    error: Optional[str] = None
    bundle_id: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        """Fields for the transaction log, without the timestamp."""
        record = {
            "pair": self.pair_label,
            "status": self.outcome.value,
            "method": self.method,
            "latencyMs": self.latency_ms,
        }
        if self.signature:
            record["signature"] = self.signature
        if self.bundle_id:
            record["bundleId"] = self.bundle_id
        if self.reason:
            record["reason"] = self.reason
        if self.error:
            record["error"] = self.error
        return record


def calculate_dynamic_slippage_bps(leg_out: RouteQuote, leg_back: RouteQuote) -> int:
    """
    Execution slippage as a step function of combined price impact.

    Lower combined impact gets a tighter tolerance.
    """
    combined = leg_out.price_impact_fraction + leg_back.price_impact_fraction
    if combined < 0.001:
        return 5
    if combined < 0.0025:
        return 10
    if combined < 0.005:
        return 20
    return 50


async def _with_timeout(coro, timeout: float, error_cls, what: str):
    """Await coro; a timeout becomes error_cls like any other failure."""
    try:
        return await asyncio.wait_for(coro, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise error_cls(f"{what} timed out after {timeout:.1f}s") from e


def _to_solders_instruction(swap_instr: SwapInstruction) -> Instruction:
    """Convert an API instruction (base58 keys, base64 data) to a solders Instruction."""
    try:
        return Instruction(
            program_id=Pubkey.from_string(swap_instr.program_id),
            accounts=[
                AccountMeta(
                    pubkey=Pubkey.from_string(meta.pubkey),
                    is_signer=meta.is_signer,
                    is_writable=meta.is_writable,
                )
                for meta in swap_instr.accounts
            ],
            data=base64.b64decode(swap_instr.data),
        )
    except ValueError as e:
        raise BuildTransactionFailed(f"Malformed instruction for {swap_instr.program_id}: {e}") from e


def _instruction_fingerprint(instruction: Instruction) -> str:
    parts = [str(instruction.program_id)]
    for account in instruction.accounts:
        parts.append(f"{account.pubkey}:{account.is_signer}:{account.is_writable}")
    parts.append(base64.b64encode(bytes(instruction.data)).decode("ascii"))
    return hashlib.sha256("|".join(parts).encode()).hexdigest()


def _deduplicate(instructions: List[Instruction]) -> List[Instruction]:
    """Drop repeated instructions, keeping the first occurrence."""
    seen = set()
    unique = []
    for instruction in instructions:
        fingerprint = _instruction_fingerprint(instruction)
        if fingerprint not in seen:
            seen.add(fingerprint)
            unique.append(instruction)
    return unique


class TransactionExecutor:
    """
    Runs one ExecutionRequest to exactly one ExecutionResult.

    Each request is independent; the executor keeps no per-request state on
    self, so several requests may run concurrently.
    """

    def __init__(
        self,
        quote_source,
        chain,
        relay,
        log_sink,
        priority_fee_lamports: int = 0,
        tip_lamports: int = 0,
        build_timeout: float = 10.0,
        simulate_timeout: float = 10.0,
        send_timeout: float = 10.0,
        confirm_timeout: float = 45.0
    ):
        """
        Args:
            quote_source: JupiterClient (or compatible) used for build_swap
            chain: SolanaClient (or compatible)
            relay: BundleRelay; a disabled relay means raw send only
            log_sink: Receives exactly one record(result) per request
            priority_fee_lamports: Total priority fee for the combined transaction
            tip_lamports: Relay tip, added in live mode when the relay is enabled.
                It stays in the bytes sent by a raw fallback.
            build_timeout: Timeout for each swap build and blockhash fetch
            simulate_timeout: Timeout for simulation
            send_timeout: Timeout for raw broadcast
            confirm_timeout: Timeout for confirmation
        """
        self.quote_source = quote_source
        self.chain = chain
        self.relay = relay
        self.log_sink = log_sink
        self.priority_fee_lamports = priority_fee_lamports
        self.tip_lamports = tip_lamports
        self.build_timeout = build_timeout
        self.simulate_timeout = simulate_timeout
        self.send_timeout = send_timeout
        self.confirm_timeout = confirm_timeout

    def _compute_budget_instructions(self) -> List[Instruction]:
        instructions = [set_compute_unit_limit(COMPUTE_UNIT_LIMIT)]
        if self.priority_fee_lamports > 0:
            micro_lamports = self.priority_fee_lamports * 1_000_000 // COMPUTE_UNIT_LIMIT
            instructions.append(set_compute_unit_price(max(1, micro_lamports)))
        return instructions

    async def _tip_instructions(self, request: ExecutionRequest) -> List[Instruction]:
        if request.mode is not ExecutionMode.LIVE or not self.relay.enabled or self.tip_lamports <= 0:
            return []
        try:
            tip = await _with_timeout(
                self.relay.build_tip_instruction(request.wallet.pubkey(), self.tip_lamports, request.pair_label),
                self.build_timeout,
                BroadcastFailed,
                "Tip account lookup",
            )
        except BroadcastFailed as e:
            logger.warning(f"{request.pair_label}: building without relay tip: {e}")
            return []
        return [tip]

    async def _build(self, request: ExecutionRequest, slippage_bps: int) -> Tuple[MessageV0, int]:
        """
        Materialize both legs into one atomic v0 message.

        Order: compute budget, setup (deduplicated), swap out, swap back,
        cleanup (deduplicated), tip.

        Returns:
            (message, last_valid_block_height)

        Raises:
            BuildTransactionFailed: Any leg failed to materialize, or the
                result does not fit in one transaction
        """
        signer = str(request.wallet.pubkey())
        legs: List[SwapInstructions] = []
        for index, route in enumerate((request.leg_out, request.leg_back), start=1):
            try:
                legs.append(await _with_timeout(
                    self.quote_source.build_swap(route, signer, wrap_native_asset=True, slippage_bps=slippage_bps),
                    self.build_timeout,
                    BuildTransactionFailed,
                    f"Swap build for leg {index}",
                ))
            except BuildTransactionFailed:
                raise
            except Exception as e:
                raise BuildTransactionFailed(f"Swap build for leg {index} failed: {e}") from e

        alt_addresses = list(dict.fromkeys(a for leg in legs for a in leg.address_lookup_tables))
        try:
            alt_accounts = await _with_timeout(
                self.chain.get_address_lookup_table_accounts(alt_addresses),
                self.build_timeout,
                BuildTransactionFailed,
                "Lookup table load",
            ) if alt_addresses else []
        except BuildTransactionFailed:
            raise
        except Exception as e:
            raise BuildTransactionFailed(f"Failed to load lookup tables: {e}") from e

        setup = _deduplicate([_to_solders_instruction(i) for leg in legs for i in leg.setup_instructions])
        swaps = [_to_solders_instruction(leg.swap_instruction) for leg in legs]
        cleanup = _deduplicate([
            _to_solders_instruction(leg.cleanup_instruction) for leg in legs if leg.cleanup_instruction
        ])
        instructions = (
            self._compute_budget_instructions() + setup + swaps + cleanup
            + await self._tip_instructions(request)
        )

        try:
            blockhash, last_valid_block_height = await _with_timeout(
                self.chain.get_latest_blockhash(),
                self.build_timeout,
                BuildTransactionFailed,
                "Blockhash fetch",
            )
        except BuildTransactionFailed:
            raise
        except Exception as e:
            raise BuildTransactionFailed(f"Failed to fetch blockhash: {e}") from e

        try:
            message = MessageV0.try_compile(
                payer=request.wallet.pubkey(),
                instructions=instructions,
                address_lookup_table_accounts=alt_accounts,
                recent_blockhash=blockhash,
            )
        except Exception as e:
            raise BuildTransactionFailed(f"Failed to compile message: {e}") from e

        size = len(bytes(self._unsigned(message)))
        if size > MAX_TRANSACTION_SIZE:
            raise BuildTransactionFailed(
                f"Atomic transaction is {size} bytes, limit is {MAX_TRANSACTION_SIZE}",
                details={"size": size, "instructions": len(instructions), "alts": len(alt_accounts)},
            )

        logger.debug(
            f"{request.pair_label}: built {colors['GREEN']}{len(instructions)}{colors['RESET']} instructions, "
            f"{len(alt_accounts)} ALTs, {size} bytes"
        )
        return message, last_valid_block_height

    @staticmethod
    def _unsigned(message: MessageV0) -> VersionedTransaction:
        placeholders = [Signature.default()] * message.header.num_required_signatures
        return VersionedTransaction.populate(message, placeholders)

    async def _simulate(self, message: MessageV0):
        """
        Raises:
            SimulationFailed: Chain rejected the dry run, or the call failed
        """
        try:
            sim = await _with_timeout(
                self.chain.simulate(self._unsigned(message)),
                self.simulate_timeout,
                SimulationFailed,
                "Simulation",
            )
        except SimulationFailed:
            raise
        except Exception as e:
            raise SimulationFailed(f"Simulation request failed: {type(e).__name__}: {e}") from e
        if sim.err is not None:
            tail = " | ".join(sim.logs[-5:]) if sim.logs else "no logs"
            raise SimulationFailed(f"Simulation error: {sim.err} ({tail})", details={"logs": sim.logs})

    async def _submit(self, request: ExecutionRequest, tx: VersionedTransaction) -> Tuple[str, str, Optional[str]]:
        """
        Send through the relay when configured, else (or on relay failure) raw.

        The same signed bytes go down both paths, so a relay that accepted the
        bundle after reporting an error cannot produce a second transaction.

        Returns:
            (method, signature, bundle_id)

        Raises:
            BroadcastFailed: Raw send failed
        """
        tx_bytes = bytes(tx)
        signature = str(tx.signatures[0])

        if self.relay.enabled:
            try:
                bundle_id = await self.relay.send_bundle([tx_bytes])
                logger.info(f"{request.pair_label}: bundle accepted {colors['CYAN']}{bundle_id}{colors['RESET']}")
                return "bundle", signature, bundle_id
            except BroadcastFailed as e:
                logger.warning(f"{request.pair_label}: relay failed, falling back to raw send: {e}")

        sent = await _with_timeout(
            self.chain.broadcast(tx_bytes, skip_preflight=True, max_retries=2),
            self.send_timeout,
            BroadcastFailed,
            "Raw send",
        )
        return "raw", sent or signature, None

    def _record(self, result: ExecutionResult):
        try:
            self.log_sink.record(result)
        except Exception as e:
            logger.error(f"Failed to record execution result for {result.pair_label}: {e}")

    async def execute(self, request: ExecutionRequest) -> ExecutionResult:
        """
        Run one request through the state machine.

        Never raises; every failure becomes a FAILED result.

        Args:
            request: ExecutionRequest built from a verified candidate

        Returns:
            ExecutionResult, also passed once to the log sink
        """
        started = time.monotonic()
        state = ExecutionState.BUILT
        method: Optional[str] = None
        signature: Optional[str] = None
        bundle_id: Optional[str] = None

        def elapsed_ms() -> int:
            return int((time.monotonic() - started) * 1000)

        try:
            slippage_bps = calculate_dynamic_slippage_bps(request.leg_out, request.leg_back)
            message, last_valid_block_height = await self._build(request, slippage_bps)

            await self._simulate(message)
            state = ExecutionState.SIMULATED

            if request.mode is ExecutionMode.SIMULATE_ONLY:
                state = ExecutionState.DONE
                result = ExecutionResult(
                    pair_label=request.pair_label,
                    outcome=ExecutionOutcome.SIMULATED,
                    latency_ms=elapsed_ms(),
                    method="simulate",
                )
            else:
                state = ExecutionState.SUBMITTING
                tx = VersionedTransaction(message, [request.wallet])
                # raw is the last path tried if _submit raises
                method = "raw"
                method, signature, bundle_id = await self._submit(request, tx)
                await self.chain.confirm(
                    signature,
                    commitment=Confirmed,
                    timeout=self.confirm_timeout,
                    last_valid_block_height=last_valid_block_height,
                )
                state = ExecutionState.CONFIRMED
                result = ExecutionResult(
                    pair_label=request.pair_label,
                    outcome=ExecutionOutcome.BROADCAST,
                    latency_ms=elapsed_ms(),
                    method=method,
                    signature=signature,
                    bundle_id=bundle_id,
                )
        except ArbitrageError as e:
            result = ExecutionResult(
                pair_label=request.pair_label,
                outcome=ExecutionOutcome.FAILED,
                latency_ms=elapsed_ms(),
                method=method,
                signature=signature,
                bundle_id=bundle_id,
                reason=e.code,
                error=str(e),
            )
        except Exception as e:
            logger.error(f"{request.pair_label}: unexpected error in state {state.value}: {e}", exc_info=True)
            result = ExecutionResult(
                pair_label=request.pair_label,
                outcome=ExecutionOutcome.FAILED,
                latency_ms=elapsed_ms(),
                method=method,
                signature=signature,
                bundle_id=bundle_id,
                reason="UnexpectedError",
                error=f"{type(e).__name__}: {e}",
            )

        if result.outcome is ExecutionOutcome.FAILED:
            logger.warning(
                f"{colors['RED']}{request.pair_label}: {result.reason} after {state.value}{colors['RESET']}: {result.error}"
            )
        else:
            logger.info(
                f"{colors['GREEN']}{request.pair_label}: {result.outcome.value}{colors['RESET']} "
                f"via {result.method} in {result.latency_ms}ms"
                + (f" sig={result.signature}" if result.signature else "")
            )
        self._record(result)
        return result
