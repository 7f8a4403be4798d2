#!/usr/bin/env python3
"""
Simple launcher script for the round-trip arbitrage bot.
"""
import argparse
import asyncio
import sys

from roundtrip_arb.errors import ConfigError
from roundtrip_arb.main import main

if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Solana round-trip arbitrage bot')
    parser.add_argument(
        'mode',
        nargs='?',
        default=None,
        choices=['scan', 'simulate', 'live'],
        help='Operation mode: scan, simulate (default, or MODE from .env), or live'
    )

    args = parser.parse_args()

    try:
        asyncio.run(main(mode=args.mode))
    except KeyboardInterrupt:
        print("\nBot stopped by user")
        sys.exit(0)
    except ConfigError as e:
        print(f"Configuration error: {e}")
        sys.exit(2)
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)
