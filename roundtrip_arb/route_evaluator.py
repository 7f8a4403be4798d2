"""
Profit and price-impact verdicts for quoted routes.

Everything here is pure: no I/O, integer amounts in, integer profit out.
"""
from fractions import Fraction
from typing import Optional, Sequence

from .errors import PriceImpactExceeded
from .jupiter_client import RouteQuote
from .token_pairs import STABLE_MINTS, TOKENS

DEFAULT_MAX_PRICE_IMPACT = 0.005


def is_route_usable(route: RouteQuote, max_price_impact: float = DEFAULT_MAX_PRICE_IMPACT) -> bool:
    """A route above the impact ceiling is never usable, whatever it pays."""
    return route.price_impact_fraction <= max_price_impact


def check_price_impact(route: RouteQuote, max_price_impact: float = DEFAULT_MAX_PRICE_IMPACT):
    """
    Raises:
        PriceImpactExceeded: route impact is above max_price_impact
    """
    if not is_route_usable(route, max_price_impact):
        raise PriceImpactExceeded(
            f"Price impact {route.price_impact_fraction:.4%} above ceiling {max_price_impact:.4%} "
            f"for {route.input_mint[:8]}... -> {route.output_mint[:8]}...",
            details={"price_impact": route.price_impact_fraction, "ceiling": max_price_impact},
        )


def evaluate_round_trip(
    amount_in: int,
    route_out: RouteQuote,
    route_back: RouteQuote,
    max_price_impact: float = DEFAULT_MAX_PRICE_IMPACT
) -> int:
    """
    Profit of an A -> B -> A round trip in units of A.

    Args:
        amount_in: Starting amount of A (smallest unit)
        route_out: A -> B quote
        route_back: B -> A quote
        max_price_impact: Impact ceiling as a fraction

    Returns:
        route_back.out_amount - amount_in (may be negative)

    Raises:
        ValueError: Non-positive amount, or the routes do not form A -> B -> A
        PriceImpactExceeded: Either leg is above the ceiling
    """
    if not isinstance(amount_in, int) or isinstance(amount_in, bool) or amount_in <= 0:
        raise ValueError(f"amount_in must be a positive integer, got {amount_in!r}")
    if route_out.input_mint == route_out.output_mint:
        raise ValueError("Round trip needs two different assets")
    if route_out.output_mint != route_back.input_mint or route_back.output_mint != route_out.input_mint:
        raise ValueError(
            f"Routes do not form a round trip: {route_out.input_mint[:8]}->{route_out.output_mint[:8]}, "
            f"{route_back.input_mint[:8]}->{route_back.output_mint[:8]}"
        )

    check_price_impact(route_out, max_price_impact)
    check_price_impact(route_back, max_price_impact)

    return route_back.out_amount - amount_in


def evaluate_cycle(
    amount_in: int,
    routes: Sequence[RouteQuote],
    max_price_impact: float = DEFAULT_MAX_PRICE_IMPACT
) -> float:
    """
    Cumulative percentage gain of a multi-leg cycle (e.g. A -> B -> C -> A).

    Each leg's quoted rate (out/in) is applied in turn to amount_in, so legs
    quoted at different sizes can still be chained. Rates are kept as exact
    fractions until the final percentage.

    Raises:
        ValueError: Zero amount, identical assets on a leg, broken chain, or
            a cycle that does not return to its starting asset
        PriceImpactExceeded: Any leg is above the ceiling
    """
    if not isinstance(amount_in, int) or isinstance(amount_in, bool) or amount_in <= 0:
        raise ValueError(f"amount_in must be a positive integer, got {amount_in!r}")
    if len(routes) < 2:
        raise ValueError("A cycle needs at least two legs")

    for i, route in enumerate(routes):
        if route.input_mint == route.output_mint:
            raise ValueError(f"Leg {i + 1} swaps {route.input_mint[:8]}... into itself")
        if route.in_amount <= 0:
            raise ValueError(f"Leg {i + 1} has a zero input amount")
        if i > 0 and routes[i - 1].output_mint != route.input_mint:
            raise ValueError(f"Leg {i} output does not feed leg {i + 1}")
    if routes[-1].output_mint != routes[0].input_mint:
        raise ValueError("Cycle does not return to its starting asset")

    for route in routes:
        check_price_impact(route, max_price_impact)

    amount = Fraction(amount_in)
    for route in routes:
        amount = amount * route.out_amount / route.in_amount

    return float((amount - amount_in) / amount_in * 100)


def profit_bps(amount_in: int, profit: int) -> int:
    """Profit in basis points of amount_in, rounded toward zero."""
    if amount_in <= 0:
        return 0
    return int(Fraction(profit * 10_000, amount_in))


def estimate_profit_usd(start_mint: str, profit: int, sol_price_usdc: float) -> Optional[float]:
    """
    Rough USD value of a profit, for log display only.

    Returns None for assets without a known price.
    """
    if start_mint in STABLE_MINTS:
        return profit / 10**6
    if start_mint == TOKENS["SOL"]:
        return profit / 10**9 * sol_price_usdc
    return None
