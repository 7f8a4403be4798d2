"""
Tests for wallet loading in main.py
"""
import json

import base58
import pytest
from solders.keypair import Keypair

from roundtrip_arb.config import BotConfig
from roundtrip_arb.errors import ConfigError
from roundtrip_arb.main import load_wallet, resolve_wallet


class TestLoadWallet:
    def test_base58(self, mock_keypair):
        encoded = base58.b58encode(bytes(mock_keypair)).decode()

        assert load_wallet(encoded).pubkey() == mock_keypair.pubkey()

    def test_json_array(self, mock_keypair):
        encoded = json.dumps(list(bytes(mock_keypair)))

        assert load_wallet(encoded).pubkey() == mock_keypair.pubkey()

    def test_missing(self):
        assert load_wallet(None) is None
        assert load_wallet("") is None

    @pytest.mark.parametrize("bad", ["not-base58-0OIl", "[1, 2, 3", "[1, 2, 3]"])
    def test_invalid_key_is_config_error(self, bad):
        with pytest.raises(ConfigError):
            load_wallet(bad)


class TestResolveWallet:
    def test_live_requires_key(self):
        with pytest.raises(ConfigError, match="WALLET_PRIVATE_KEY"):
            resolve_wallet(BotConfig(mode="live"))

    @pytest.mark.parametrize("mode", ["scan", "simulate"])
    def test_ephemeral_keypair_outside_live(self, mode):
        assert isinstance(resolve_wallet(BotConfig(mode=mode)), Keypair)

    def test_configured_key_wins(self, mock_keypair):
        config = BotConfig(mode="live", wallet_private_key=base58.b58encode(bytes(mock_keypair)).decode())

        assert resolve_wallet(config).pubkey() == mock_keypair.pubkey()
