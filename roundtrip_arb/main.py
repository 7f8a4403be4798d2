"""
Main entry point: wire the pipeline from configuration and run the scan loop.
"""
import json
import logging
from typing import Optional

import base58
from solders.keypair import Keypair

from .config import BotConfig, load_config
from .dispatcher import ExecutionDispatcher
from .errors import ConfigError
from .executor import ExecutionMode, TransactionExecutor
from .jupiter_client import JupiterClient
from .relay import BundleRelay, estimate_priority_fee_lamports
from .scanner import Scanner
from .solana_client import SolanaClient
from .tx_log import TransactionLog
from .utils import get_terminal_colors, setup_logging
from .verifier import AntiLossVerifier

colors = get_terminal_colors()

logger = logging.getLogger(__name__)


def load_wallet(private_key_str: Optional[str]) -> Optional[Keypair]:
    """
    Load the signing keypair from a base58 string or a JSON byte array.

    Raises:
        ConfigError: The key is present but cannot be decoded
    """
    if not private_key_str:
        return None
    try:
        if private_key_str.lstrip().startswith('['):
            return Keypair.from_bytes(bytes(json.loads(private_key_str)))
        return Keypair.from_bytes(base58.b58decode(private_key_str))
    except ValueError as e:
        raise ConfigError(f"WALLET_PRIVATE_KEY could not be decoded: {e}") from e


def resolve_wallet(config: BotConfig) -> Keypair:
    """
    Wallet for this run. Live mode without a key is fatal; other modes fall
    back to a throwaway keypair that can only simulate.
    """
    wallet = load_wallet(config.wallet_private_key)
    if wallet is not None:
        return wallet
    if not config.simulate_only:
        raise ConfigError("Live mode requires WALLET_PRIVATE_KEY")
    logger.warning("No wallet configured, using an ephemeral keypair (simulations may fail on balances)")
    return Keypair()


async def main(mode: Optional[str] = None):
    """Main function."""
    config = load_config(mode=mode)
    setup_logging(config.log_level, config.bot_log_path)
    wallet = resolve_wallet(config)

    logger.info(
        f"Starting round-trip arbitrage bot: mode={colors['CYAN']}{config.mode}{colors['RESET']}, "
        f"wallet={colors['CYAN']}{wallet.pubkey()}{colors['RESET']}, "
        f"relay={'on' if config.jito_rpc_url else 'off'}"
    )

    jupiter = JupiterClient(
        api_url=config.jupiter_api_url,
        api_key=config.jupiter_api_key,
        timeout=config.quote_timeout_seconds,
        requests_per_second=config.jupiter_requests_per_second,
    )
    solana = SolanaClient(config.rpc_url)
    relay = BundleRelay(config.jito_rpc_url, timeout=config.relay_timeout_seconds)
    tx_log = TransactionLog(config.tx_log_path)
    tx_log.start()

    executor = TransactionExecutor(
        quote_source=jupiter,
        chain=solana,
        relay=relay,
        log_sink=tx_log,
        priority_fee_lamports=estimate_priority_fee_lamports(config.priority_fee_lamports),
        tip_lamports=config.jito_tip_lamports,
        build_timeout=config.build_timeout_seconds,
        simulate_timeout=config.build_timeout_seconds,
        send_timeout=config.send_timeout_seconds,
        confirm_timeout=config.confirm_timeout_seconds,
    )
    dispatcher = ExecutionDispatcher(
        executor,
        wallet,
        mode=ExecutionMode.SIMULATE_ONLY if config.simulate_only else ExecutionMode.LIVE,
        queue_size=config.execution_queue_size,
        workers=config.execution_workers,
    )
    verifier = AntiLossVerifier(
        jupiter,
        verify_slippage_bps=config.verify_slippage_bps,
        max_price_impact=config.max_price_impact,
        quote_timeout=config.quote_timeout_seconds,
    )
    scanner = Scanner(config, jupiter, verifier, dispatch=dispatcher.submit)

    if config.dispatch_enabled:
        dispatcher.start()
    try:
        await scanner.run()
    finally:
        scanner.stop()
        await dispatcher.stop()
        await jupiter.close()
        await solana.close()
        await relay.close()
        tx_log.stop()
        logger.info(f"{colors['DIM']}Execution outcomes: {dict(dispatcher.outcomes)}{colors['RESET']}")
