"""
Runtime configuration, built once at startup from .env and config.json.
"""
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import dotenv

from .errors import ConfigError
from .token_pairs import DEFAULT_PAIRS, resolve_mint, symbol_for

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).parent.parent

MODES = ("scan", "simulate", "live")


@dataclass(frozen=True)
class TokenPair:
    """Round-trip pair: start in base, hop through quote, return to base."""
    base_mint: str
    quote_mint: str
    base_symbol: str = ""
    quote_symbol: str = ""

    def __post_init__(self):
        if self.base_mint == self.quote_mint:
            raise ValueError(f"Pair must use two different mints, got {self.base_mint} twice")

    @property
    def pair_id(self) -> str:
        return f"{self.base_mint}:{self.quote_mint}"

    @property
    def label(self) -> str:
        base = self.base_symbol or symbol_for(self.base_mint)
        quote = self.quote_symbol or symbol_for(self.quote_mint)
        return f"{base}/{quote}"

    @classmethod
    def from_symbols(cls, base: str, quote: str) -> "TokenPair":
        base_mint = resolve_mint(base)
        quote_mint = resolve_mint(quote)
        return cls(
            base_mint=base_mint,
            quote_mint=quote_mint,
            base_symbol=symbol_for(base_mint),
            quote_symbol=symbol_for(quote_mint),
        )


@dataclass
class BotConfig:
    """All tunables for one process. Passed explicitly to every component."""
    rpc_url: str = "https://api.mainnet-beta.solana.com"
    jupiter_api_url: Optional[str] = None
    jupiter_api_key: Optional[str] = None
    jupiter_requests_per_second: float = 5.0

    sample_amount: int = 100_000_000  # 0.1 SOL in lamports
    scan_slippage_bps: int = 50
    verify_slippage_bps: int = 20
    max_price_impact: float = 0.005

    tick_interval_seconds: float = 3.0
    max_concurrent_pairs: int = 4
    mode: str = "simulate"

    jito_rpc_url: Optional[str] = None
    jito_tip_lamports: int = 10_000
    priority_fee_lamports: int = 0

    quote_timeout_seconds: float = 5.0
    build_timeout_seconds: float = 10.0
    send_timeout_seconds: float = 10.0
    confirm_timeout_seconds: float = 45.0
    relay_timeout_seconds: float = 5.0

    execution_queue_size: int = 16
    execution_workers: int = 2

    tx_log_path: str = "logs/transactions.log"
    bot_log_path: str = "arbitrage_bot.log"
    log_level: str = "INFO"
    sol_price_usdc: float = 150.0

    wallet_private_key: Optional[str] = field(default=None, repr=False)
    pairs: List[TokenPair] = field(default_factory=list)

    @property
    def simulate_only(self) -> bool:
        return self.mode != "live"

    @property
    def dispatch_enabled(self) -> bool:
        return self.mode != "scan"

    def validate(self):
        """Check value ranges. Raises ConfigError on the first problem found."""
        if self.mode not in MODES:
            raise ConfigError(f"MODE must be one of {', '.join(MODES)}, got '{self.mode}'")
        if self.sample_amount <= 0:
            raise ConfigError(f"SAMPLE_AMOUNT must be positive, got {self.sample_amount}")
        if not 0 < self.max_price_impact < 1:
            raise ConfigError(f"MAX_PRICE_IMPACT must be a fraction in (0, 1), got {self.max_price_impact}")
        if self.max_concurrent_pairs < 1:
            raise ConfigError("MAX_CONCURRENT_PAIRS must be at least 1")
        if self.execution_queue_size < 1 or self.execution_workers < 1:
            raise ConfigError("EXECUTION_QUEUE_SIZE and EXECUTION_WORKERS must be at least 1")
        if self.tick_interval_seconds <= 0:
            raise ConfigError("TICK_INTERVAL_SECONDS must be positive")
        if self.scan_slippage_bps <= 0 or self.verify_slippage_bps <= 0:
            raise ConfigError("Slippage tolerances must be positive")
        if not self.pairs:
            raise ConfigError("No token pairs configured")

        # Verification must be stricter than scanning
        if self.verify_slippage_bps >= self.scan_slippage_bps:
            clamped = max(1, self.scan_slippage_bps // 2)
            logger.warning(
                f"VERIFY_SLIPPAGE_BPS ({self.verify_slippage_bps}) is not tighter than "
                f"SCAN_SLIPPAGE_BPS ({self.scan_slippage_bps}). Using {clamped} bps for verification."
            )
            self.verify_slippage_bps = clamped


def _env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_int(name: str, default: int) -> int:
    value = _env_str(name)
    if value is None:
        return default
    try:
        return int(value.replace("_", ""))
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got '{value}'") from e


def _env_float(name: str, default: float) -> float:
    value = _env_str(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got '{value}'") from e


def _env_bool(name: str) -> bool:
    return (_env_str(name, "") or "").lower() in ("1", "true", "yes", "on")


def _parse_pairs(raw_pairs: List[Any]) -> List[TokenPair]:
    pairs = []
    for entry in raw_pairs:
        if isinstance(entry, dict):
            base, quote = entry.get("base"), entry.get("quote")
        elif isinstance(entry, (list, tuple)) and len(entry) == 2:
            base, quote = entry
        else:
            raise ConfigError(f"Invalid pair entry in config.json: {entry!r}")
        if not base or not quote:
            raise ConfigError(f"Pair entry is missing base or quote: {entry!r}")
        try:
            pairs.append(TokenPair.from_symbols(str(base), str(quote)))
        except ValueError as e:
            raise ConfigError(str(e)) from e
    return pairs


def load_json_config(config_path: Path) -> Dict[str, Any]:
    """Read config.json. A missing file is not an error."""
    if not config_path.exists():
        logger.warning(f"config.json not found at {config_path}, using built-in pair list")
        return {}
    try:
        with open(config_path, 'r') as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"config.json is not valid JSON: {e}") from e


def load_config(
    mode: Optional[str] = None,
    env_path: Optional[Path] = None,
    config_path: Optional[Path] = None,
) -> BotConfig:
    """
    Build the process configuration.

    Environment variables win over config.json; an explicit mode argument
    (from the command line) wins over MODE. PAPER=true always forces
    simulate-only execution.

    Args:
        mode: Operation mode override (scan, simulate, live)
        env_path: Path to .env (default: project root)
        config_path: Path to config.json (default: project root)

    Returns:
        Validated BotConfig

    Raises:
        ConfigError: On unparseable or out-of-range values
    """
    env_path = env_path or PROJECT_ROOT / '.env'
    if env_path.exists():
        dotenv.load_dotenv(env_path)
    else:
        logger.debug(f".env file not found at {env_path}")

    file_config = load_json_config(config_path or PROJECT_ROOT / 'config.json')

    resolved_mode = (mode or _env_str('MODE', 'simulate')).lower()
    if resolved_mode == "live" and _env_bool('PAPER'):
        logger.warning("PAPER=true overrides live mode, transactions will only be simulated")
        resolved_mode = "simulate"

    raw_pairs = file_config.get('pairs')
    pairs = _parse_pairs(raw_pairs) if raw_pairs else [
        TokenPair.from_symbols(base, quote) for base, quote in DEFAULT_PAIRS
    ]

    defaults = BotConfig()
    config = BotConfig(
        rpc_url=_env_str('RPC_URL', defaults.rpc_url),
        jupiter_api_url=_env_str('JUPITER_API_URL'),
        jupiter_api_key=_env_str('JUPITER_API_KEY'),
        jupiter_requests_per_second=_env_float('JUPITER_RPS', defaults.jupiter_requests_per_second),
        sample_amount=_env_int('SAMPLE_AMOUNT', file_config.get('sample_amount', defaults.sample_amount)),
        scan_slippage_bps=_env_int('SCAN_SLIPPAGE_BPS', defaults.scan_slippage_bps),
        verify_slippage_bps=_env_int('VERIFY_SLIPPAGE_BPS', defaults.verify_slippage_bps),
        max_price_impact=_env_float('MAX_PRICE_IMPACT', defaults.max_price_impact),
        tick_interval_seconds=_env_float('TICK_INTERVAL_SECONDS', defaults.tick_interval_seconds),
        max_concurrent_pairs=_env_int('MAX_CONCURRENT_PAIRS', defaults.max_concurrent_pairs),
        mode=resolved_mode,
        jito_rpc_url=_env_str('JITO_RPC_URL'),
        jito_tip_lamports=_env_int('JITO_TIP_LAMPORTS', defaults.jito_tip_lamports),
        priority_fee_lamports=_env_int('PRIORITY_FEE_LAMPORTS', defaults.priority_fee_lamports),
        quote_timeout_seconds=_env_float('QUOTE_TIMEOUT_SECONDS', defaults.quote_timeout_seconds),
        build_timeout_seconds=_env_float('BUILD_TIMEOUT_SECONDS', defaults.build_timeout_seconds),
        send_timeout_seconds=_env_float('SEND_TIMEOUT_SECONDS', defaults.send_timeout_seconds),
        confirm_timeout_seconds=_env_float('CONFIRM_TIMEOUT_SECONDS', defaults.confirm_timeout_seconds),
        relay_timeout_seconds=_env_float('RELAY_TIMEOUT_SECONDS', defaults.relay_timeout_seconds),
        execution_queue_size=_env_int('EXECUTION_QUEUE_SIZE', defaults.execution_queue_size),
        execution_workers=_env_int('EXECUTION_WORKERS', defaults.execution_workers),
        tx_log_path=_env_str('TX_LOG_PATH', defaults.tx_log_path),
        bot_log_path=_env_str('BOT_LOG_PATH', defaults.bot_log_path),
        log_level=(_env_str('LOG_LEVEL', defaults.log_level)).upper(),
        sol_price_usdc=_env_float('SOL_PRICE_USDC', defaults.sol_price_usdc),
        wallet_private_key=_env_str('WALLET_PRIVATE_KEY'),
        pairs=pairs,
    )
    config.validate()
    return config
