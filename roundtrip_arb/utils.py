"""
Terminal colours and logging setup.
"""
import logging
import sys
from typing import Dict, Optional


def get_terminal_colors() -> Dict[str, str]:
    """
    Get ANSI color codes for terminal output.

    Returns empty strings if output is not a TTY (e.g., redirected to file),
    so log files stay free of escape codes.

    Returns:
        Dictionary with color codes: GREEN, CYAN, YELLOW, RED, DIM, RESET
    """
    use_color = sys.stdout.isatty()
    return {
        'GREEN': '\033[92m' if use_color else '',   # Neutral numbers (counts, sizes, config values)
        'CYAN': '\033[96m' if use_color else '',    # Identifiers (pairs, modes, signatures)
        'YELLOW': '\033[93m' if use_color else '',  # Economic signals (profit, bps, backpressure)
        'RED': '\033[91m' if use_color else '',     # Failed executions
        'DIM': '\033[90m' if use_color else '',     # Service messages (start/stop, iteration summaries)
        'RESET': '\033[0m' if use_color else ''
    }


def setup_logging(level: str = "INFO", log_file: Optional[str] = "arbitrage_bot.log"):
    """Log to stdout and, when log_file is set, to a file."""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
