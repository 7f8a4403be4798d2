"""
Typed errors for the round-trip arbitrage pipeline.

Quote-side codes (QuoteUnavailable, PriceImpactExceeded, NoProfitAfterRoundtrip)
are skip reasons for a single pair. Everything else ends one execution attempt.
"""
from typing import Any, Dict, Optional


class ArbitrageError(Exception):
    """Base error carrying a stable code for logs and execution results."""

    code = "ArbitrageError"

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(message or self.code)
        self.details = details or {}

    def __str__(self):
        return f"[{self.code}] {super().__str__()}"


class QuoteUnavailable(ArbitrageError):
    """No route for a leg, or the quote source could not be reached."""
    code = "QuoteUnavailable"


class PriceImpactExceeded(ArbitrageError):
    """Route price impact is above the configured ceiling."""
    code = "PriceImpactExceeded"


class NoProfitAfterRoundtrip(ArbitrageError):
    """Round trip does not return more than it started with."""
    code = "NoProfitAfterRoundtrip"


class BuildTransactionFailed(ArbitrageError):
    code = "BuildTransactionFailed"


class SimulationFailed(ArbitrageError):
    code = "SimulationFailed"


class BroadcastFailed(ArbitrageError):
    """Relay or raw-send failure."""
    code = "BroadcastFailed"


class ConfirmationTimeout(ArbitrageError):
    """Transaction was sent but not confirmed in time. It may still land."""
    code = "ConfirmationTimeout"


class TransactionReverted(ArbitrageError):
    """Transaction landed but failed on-chain."""
    code = "TransactionReverted"


class ConfigError(ArbitrageError):
    """Invalid or missing configuration. Fatal at startup."""
    code = "ConfigError"


SKIP_CODES = frozenset({
    QuoteUnavailable.code,
    PriceImpactExceeded.code,
    NoProfitAfterRoundtrip.code,
})
