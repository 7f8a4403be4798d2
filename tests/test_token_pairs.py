"""
Tests for token_pairs.py
"""
import pytest
from solders.pubkey import Pubkey

from roundtrip_arb.config import TokenPair
from roundtrip_arb.route_evaluator import estimate_profit_usd
from roundtrip_arb.token_pairs import DEFAULT_PAIRS, STABLE_MINTS, TOKENS, resolve_mint, symbol_for


class TestTokenTable:
    @pytest.mark.parametrize("symbol", sorted(TOKENS))
    def test_every_mint_is_a_valid_pubkey(self, symbol):
        assert str(Pubkey.from_string(TOKENS[symbol])) == TOKENS[symbol]

    def test_canonical_mainnet_mints(self):
        assert TOKENS["USDC"] == "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
        assert TOKENS["USDT"] == "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"
        assert TOKENS["mSOL"] == "mSoLzYCxHdYgdzU16g5QSh3i5K3z3KZK7ytfqcJm7So"
        assert TOKENS["jitoSOL"] == "J1toso1uCk3RLmjorhTtrVwY9HJ7X8V9yYac6Y7kGCPn"

    def test_mints_are_unique(self):
        assert len(set(TOKENS.values())) == len(TOKENS)

    def test_default_pairs_resolve(self):
        pairs = [TokenPair.from_symbols(base, quote) for base, quote in DEFAULT_PAIRS]

        assert [p.label for p in pairs] == [f"{base}/{quote}" for base, quote in DEFAULT_PAIRS]

    def test_stable_mints(self):
        assert STABLE_MINTS == {TOKENS["USDC"], TOKENS["USDT"]}
        assert estimate_profit_usd(TOKENS["USDT"], 1_000_000, 150.0) == pytest.approx(1.0)

    def test_lookups(self):
        assert resolve_mint("mSOL") == TOKENS["mSOL"]
        assert resolve_mint(TOKENS["BONK"]) == TOKENS["BONK"]
        assert symbol_for(TOKENS["USDT"]) == "USDT"
        assert symbol_for("7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU") == "7xKXtg2C"
