"""
Scan loop: poll configured pairs, filter cheaply, verify, hand off for execution.
"""
import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .config import BotConfig, TokenPair
from .errors import SKIP_CODES, ArbitrageError, NoProfitAfterRoundtrip, QuoteUnavailable
from .jupiter_client import RouteQuote
from .route_evaluator import (
    check_price_impact,
    estimate_profit_usd,
    evaluate_round_trip,
    profit_bps,
)
from .utils import get_terminal_colors

colors = get_terminal_colors()

logger = logging.getLogger(__name__)


@dataclass
class ArbitrageCandidate:
    """Opportunity found on one tick. Lives for a single execution attempt."""
    pair: TokenPair
    amount_in: int
    route_out: RouteQuote
    route_back: RouteQuote
    preliminary_profit: int
    verified_profit: Optional[int] = None
    profit_usd_estimate: Optional[float] = None

    @property
    def pair_id(self) -> str:
        return self.pair.pair_id


@dataclass
class TickStats:
    pairs_scanned: int = 0
    candidates: int = 0
    dispatched: int = 0
    dropped: int = 0
    errors: int = 0
    rejections: Counter = field(default_factory=Counter)
    duration_ms: int = 0


class _PairOutcome:
    """Per-pair result collected by a tick."""
    __slots__ = ("candidate", "rejection", "error")

    def __init__(self, candidate=None, rejection=None, error=None):
        self.candidate = candidate
        self.rejection = rejection
        self.error = error


class Scanner:
    """
    Long-running scan loop.

    Pairs are evaluated in batches of max_concurrent_pairs; a batch is awaited
    as a whole before the next starts. Candidates go to dispatch, which must
    not block (the dispatcher only enqueues).
    """

    def __init__(
        self,
        config: BotConfig,
        quote_source,
        verifier,
        dispatch: Optional[Callable[[ArbitrageCandidate], bool]] = None
    ):
        self.config = config
        self.quote_source = quote_source
        self.verifier = verifier
        self.dispatch = dispatch
        self.pairs: List[TokenPair] = list(config.pairs)
        self.iterations = 0
        self._stop_event = asyncio.Event()

    async def _quote(self, input_mint: str, output_mint: str, amount: int) -> RouteQuote:
        try:
            routes = await asyncio.wait_for(
                self.quote_source.compute_routes(input_mint, output_mint, amount, self.config.scan_slippage_bps),
                timeout=self.config.quote_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise QuoteUnavailable(f"Quote timed out after {self.config.quote_timeout_seconds}s") from e
        if not routes:
            raise QuoteUnavailable(f"No route {input_mint[:8]}... -> {output_mint[:8]}...")
        best = routes[0]
        check_price_impact(best, self.config.max_price_impact)
        return best

    async def evaluate_pair(self, pair: TokenPair) -> Optional[ArbitrageCandidate]:
        """
        Run the cheap filter and the anti-loss gate for one pair.

        Returns:
            Verified candidate, or None when the pair is not worth executing

        Raises:
            ArbitrageError: Benign rejection (no route, impact, no profit)
        """
        amount = self.config.sample_amount

        route_out = await self._quote(pair.base_mint, pair.quote_mint, amount)
        # Second leg is priced on what the first leg actually returns
        route_back = await self._quote(pair.quote_mint, pair.base_mint, route_out.out_amount)

        preliminary = evaluate_round_trip(amount, route_out, route_back, self.config.max_price_impact)
        if preliminary <= 0:
            raise NoProfitAfterRoundtrip(f"Round trip returns {route_back.out_amount} for {amount}")

        logger.debug(
            f"{pair.label}: preliminary profit {preliminary} ({profit_bps(amount, preliminary)} bps), verifying"
        )
        verified = await self.verifier.verify(pair, amount)
        if verified is None:
            return None

        return ArbitrageCandidate(
            pair=pair,
            amount_in=amount,
            route_out=verified.leg_out,
            route_back=verified.leg_back,
            preliminary_profit=preliminary,
            verified_profit=verified.profit,
            profit_usd_estimate=estimate_profit_usd(pair.base_mint, verified.profit, self.config.sol_price_usdc),
        )

    async def _evaluate_isolated(self, pair: TokenPair) -> _PairOutcome:
        """Evaluate one pair; no exception escapes except cancellation."""
        try:
            return _PairOutcome(candidate=await self.evaluate_pair(pair))
        except ArbitrageError as e:
            if e.code in SKIP_CODES:
                logger.debug(f"{pair.label}: skipped: {e}")
            else:
                logger.warning(f"{pair.label}: rejected: {e}")
            return _PairOutcome(rejection=e.code)
        except Exception as e:
            logger.error(f"{pair.label}: evaluation error: {type(e).__name__}: {e}", exc_info=True)
            return _PairOutcome(error=e)

    def _handle_candidate(self, candidate: ArbitrageCandidate, stats: TickStats):
        usd = (
            f" (~${candidate.profit_usd_estimate:.4f})" if candidate.profit_usd_estimate is not None else ""
        )
        venues = " -> ".join(
            "+".join(route.venues) or "?" for route in (candidate.route_out, candidate.route_back)
        )
        logger.info(
            f"Opportunity {colors['CYAN']}{candidate.pair.label}{colors['RESET']}: "
            f"verified profit {colors['YELLOW']}{candidate.verified_profit}{colors['RESET']} "
            f"({profit_bps(candidate.amount_in, candidate.verified_profit)} bps){usd} via {venues}"
        )
        if not self.config.dispatch_enabled or self.dispatch is None:
            return
        try:
            accepted = self.dispatch(candidate)
        except Exception as e:
            logger.error(f"{candidate.pair.label}: dispatch failed: {e}", exc_info=True)
            accepted = False
        if accepted:
            stats.dispatched += 1
        else:
            stats.dropped += 1

    async def tick(self) -> TickStats:
        """Evaluate every configured pair once, in bounded batches."""
        started = time.monotonic()
        stats = TickStats()
        batch_size = self.config.max_concurrent_pairs

        for start in range(0, len(self.pairs), batch_size):
            batch = self.pairs[start:start + batch_size]
            outcomes = await asyncio.gather(*(self._evaluate_isolated(pair) for pair in batch))
            for outcome in outcomes:
                stats.pairs_scanned += 1
                if outcome.error is not None:
                    stats.errors += 1
                elif outcome.rejection is not None:
                    stats.rejections[outcome.rejection] += 1
                elif outcome.candidate is not None:
                    stats.candidates += 1
                    self._handle_candidate(outcome.candidate, stats)
                else:
                    stats.rejections["VerificationRejected"] += 1

        stats.duration_ms = int((time.monotonic() - started) * 1000)
        return stats

    async def run(self):
        """Tick forever at the configured interval until stop() is called."""
        logger.info(
            f"Scanner started: {colors['GREEN']}{len(self.pairs)}{colors['RESET']} pairs, "
            f"mode={colors['CYAN']}{self.config.mode}{colors['RESET']}, "
            f"interval={self.config.tick_interval_seconds}s, concurrency={self.config.max_concurrent_pairs}"
        )
        while not self._stop_event.is_set():
            self.iterations += 1
            try:
                stats = await self.tick()
                rejections = ", ".join(f"{code}={count}" for code, count in stats.rejections.most_common())
                logger.info(
                    f"{colors['DIM']}Iteration {self.iterations}: {stats.pairs_scanned} pairs, "
                    f"{stats.candidates} candidates, {stats.dispatched} dispatched, {stats.dropped} dropped, "
                    f"{stats.errors} errors in {stats.duration_ms}ms"
                    f"{f' [{rejections}]' if rejections else ''}{colors['RESET']}"
                )
            except Exception as e:
                logger.error(f"Scan iteration {self.iterations} failed: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.config.tick_interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info(f"{colors['DIM']}Scanner stopped after {self.iterations} iterations{colors['RESET']}")

    def stop(self):
        self._stop_event.set()
