"""
Pytest configuration and fixtures for the round-trip arbitrage bot tests.
"""
import base64

import pytest
from unittest.mock import AsyncMock, MagicMock
from solders.keypair import Keypair

from roundtrip_arb.config import BotConfig, TokenPair
from roundtrip_arb.jupiter_client import RouteQuote, SwapAccountMeta, SwapInstruction, SwapInstructions

JUPITER_PROGRAM_ID = "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4"


@pytest.fixture
def mock_keypair():
    """Create a keypair for testing."""
    return Keypair()


@pytest.fixture
def mock_jupiter_client():
    """Create a mock JupiterClient for testing."""
    return AsyncMock()


@pytest.fixture
def sol_mint():
    """SOL mint address."""
    return "So11111111111111111111111111111111111111112"


@pytest.fixture
def usdc_mint():
    """USDC mint address."""
    return "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


@pytest.fixture
def jup_mint():
    """JUP mint address."""
    return "JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN"


@pytest.fixture
def bonk_mint():
    """BONK mint address."""
    return "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"


@pytest.fixture
def sol_usdc_pair():
    """SOL -> USDC -> SOL pair."""
    return TokenPair.from_symbols("SOL", "USDC")


def build_route(input_mint, output_mint, in_amount, out_amount, impact=0.0, venues=("Raydium",)):
    """RouteQuote with a raw payload shaped like a Jupiter quote."""
    raw = {
        "inputMint": input_mint,
        "outputMint": output_mint,
        "inAmount": str(in_amount),
        "outAmount": str(out_amount),
        "otherAmountThreshold": str(out_amount),
        "swapMode": "ExactIn",
        "slippageBps": 50,
        "priceImpactPct": str(impact),
        "routePlan": [{"swapInfo": {"label": label}, "percent": 100} for label in venues],
    }
    return RouteQuote(
        input_mint=input_mint,
        output_mint=output_mint,
        in_amount=in_amount,
        out_amount=out_amount,
        price_impact_fraction=impact,
        venues=tuple(venues),
        raw=raw,
    )


@pytest.fixture
def make_route():
    """Factory for RouteQuote objects."""
    return build_route


@pytest.fixture
def bot_config(sol_usdc_pair):
    """Small, fast configuration for tests."""
    return BotConfig(
        sample_amount=10_000_000,
        scan_slippage_bps=50,
        verify_slippage_bps=20,
        max_price_impact=0.005,
        tick_interval_seconds=0.01,
        max_concurrent_pairs=4,
        mode="simulate",
        quote_timeout_seconds=1.0,
        pairs=[sol_usdc_pair],
    )


@pytest.fixture
def make_swap_instructions():
    """Factory for one materialized leg whose only signer is the given wallet."""
    def _make(wallet: Keypair, data: bytes = b"\x01\x02\x03", alts=None):
        return SwapInstructions(
            setup_instructions=[],
            swap_instruction=SwapInstruction(
                program_id=JUPITER_PROGRAM_ID,
                accounts=[SwapAccountMeta(pubkey=str(wallet.pubkey()), is_signer=True, is_writable=True)],
                data=base64.b64encode(data).decode("ascii"),
            ),
            cleanup_instruction=None,
            address_lookup_tables=list(alts or []),
            last_valid_block_height=1_000,
        )
    return _make


@pytest.fixture
def mock_log_sink():
    """Log sink that only records calls."""
    return MagicMock()
