"""
Anti-loss gate: re-quote both legs with a tighter tolerance right before execution.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from .config import TokenPair
from .errors import ArbitrageError, NoProfitAfterRoundtrip, QuoteUnavailable
from .jupiter_client import RouteQuote
from .route_evaluator import DEFAULT_MAX_PRICE_IMPACT, check_price_impact

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerifiedRoundTrip:
    """Fresh legs whose round trip strictly improves on the starting amount."""
    leg_out: RouteQuote
    leg_back: RouteQuote
    initial_amount: int
    final_amount: int

    def __post_init__(self):
        if self.final_amount <= self.initial_amount:
            raise ValueError(
                f"Verified round trip must be profitable: {self.final_amount} <= {self.initial_amount}"
            )

    @property
    def profit(self) -> int:
        return self.final_amount - self.initial_amount


class AntiLossVerifier:
    """
    Sole authority for committing capital.

    A rejection or a failure is a normal outcome and is returned as None,
    never raised.
    """

    def __init__(
        self,
        quote_source,
        verify_slippage_bps: int = 20,
        max_price_impact: float = DEFAULT_MAX_PRICE_IMPACT,
        quote_timeout: float = 5.0
    ):
        self.quote_source = quote_source
        self.verify_slippage_bps = verify_slippage_bps
        self.max_price_impact = max_price_impact
        self.quote_timeout = quote_timeout

    async def _best_route(self, input_mint: str, output_mint: str, amount: int) -> RouteQuote:
        try:
            routes = await asyncio.wait_for(
                self.quote_source.compute_routes(input_mint, output_mint, amount, self.verify_slippage_bps),
                timeout=self.quote_timeout,
            )
        except asyncio.TimeoutError as e:
            raise QuoteUnavailable(f"Verification quote timed out after {self.quote_timeout}s") from e
        if not routes:
            raise QuoteUnavailable(f"No route {input_mint[:8]}... -> {output_mint[:8]}...")
        best = routes[0]
        check_price_impact(best, self.max_price_impact)
        return best

    async def verify(self, pair: TokenPair, amount: int) -> Optional[VerifiedRoundTrip]:
        """
        Re-fetch A -> B -> A and confirm final > initial.

        Args:
            pair: Pair to verify (base is A, quote is B)
            amount: Starting amount of A

        Returns:
            VerifiedRoundTrip, or None if the opportunity did not survive
        """
        try:
            leg_out = await self._best_route(pair.base_mint, pair.quote_mint, amount)
            leg_back = await self._best_route(pair.quote_mint, pair.base_mint, leg_out.out_amount)
            if leg_back.out_amount <= amount:
                raise NoProfitAfterRoundtrip(
                    f"Fresh round trip returns {leg_back.out_amount} for {amount}",
                    details={"initial": amount, "final": leg_back.out_amount},
                )
        except ArbitrageError as e:
            logger.debug(f"{pair.label}: verification rejected: {e}")
            return None
        except Exception as e:
            logger.warning(f"{pair.label}: verification failed: {type(e).__name__}: {e}")
            return None

        verified = VerifiedRoundTrip(
            leg_out=leg_out,
            leg_back=leg_back,
            initial_amount=amount,
            final_amount=leg_back.out_amount,
        )
        logger.debug(f"{pair.label}: verified profit {verified.profit} at {self.verify_slippage_bps} bps")
        return verified
