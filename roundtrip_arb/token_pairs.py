"""
Static token list and default round-trip pairs.
"""
from typing import Dict, List, Tuple

TOKENS: Dict[str, str] = {
    "SOL": "So11111111111111111111111111111111111111112",
    "USDC": "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
    "USDT": "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB",
    "mSOL": "mSoLzYCxHdYgdzU16g5QSh3i5K3z3KZK7ytfqcJm7So",
    "jitoSOL": "J1toso1uCk3RLmjorhTtrVwY9HJ7X8V9yYac6Y7kGCPn",
    "JUP": "JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN",
    "BONK": "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263",
}

# Mints quoted in 6-decimal dollar units
STABLE_MINTS = frozenset({TOKENS["USDC"], TOKENS["USDT"]})

DEFAULT_PAIRS: List[Tuple[str, str]] = [
    ("SOL", "USDC"),
    ("SOL", "USDT"),
    ("SOL", "mSOL"),
    ("SOL", "jitoSOL"),
    ("SOL", "JUP"),
    ("SOL", "BONK"),
    ("USDC", "USDT"),
]


def symbol_for(mint: str) -> str:
    """Reverse lookup of a mint's symbol; falls back to a short mint prefix."""
    for symbol, address in TOKENS.items():
        if address == mint:
            return symbol
    return mint[:8]


def resolve_mint(value: str) -> str:
    """Accept either a known symbol or a raw mint address."""
    return TOKENS.get(value, value)
