"""
Debt Tracker CLI - Rank wallets by outstanding debt to the lending contract

Usage:
    debt-tracker                          # Last 3 days (default)
    debt-tracker --days 30                # Last 30 days
    debt-tracker --full-history           # Back to contract deployment
    debt-tracker --json                   # Machine-readable output
    debt-tracker --output lenders.csv     # Export ranked lenders to CSV
    debt-tracker --debug                  # Verbose logs to debt_tracker_debug.log
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

import pandas as pd

from .config.lending_config import (
    DEFAULT_LOOKBACK_DAYS, FULL_HISTORY_LOOKBACK_DAYS, REQUEST_TIMEOUT_SECONDS,
    SETTLEMENT_ASSET_ADDRESS, SETTLEMENT_ASSET_DECIMALS, SETTLEMENT_ASSET_SYMBOL, UNIT_SCALE,
)
from .logging_config import ProgressLogger, setup_logging
from .services.debt_engine.errors import DebtTrackerError, ReconstructionTimeout
from .services.debt_engine.models import LiquiditySource, ResultSet
from .services.debt_engine.reconstructor import DebtReconstructor
from .services.debt_engine.reporter import format_address, format_percentage, format_units

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FETCH_FAILED = 1
EXIT_TIMEOUT = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='debt-tracker',
        description='Reconstruct outstanding lending balances from Base chain history',
    )
    parser.add_argument('--token', type=str, default=SETTLEMENT_ASSET_ADDRESS,
                        help='Token address used to label the result')
    parser.add_argument('--days', type=float, default=DEFAULT_LOOKBACK_DAYS, help='Days to look back')
    parser.add_argument('--full-history', action='store_true',
                        help=f'Look back {FULL_HISTORY_LOOKBACK_DAYS} days (past contract deployment)')
    parser.add_argument('--timeout', type=float, default=REQUEST_TIMEOUT_SECONDS,
                        help='Overall deadline in seconds')
    parser.add_argument('--no-index', action='store_true', help='Skip the index API, scan node logs only')
    parser.add_argument('--json', action='store_true', help='Print the result as JSON')
    parser.add_argument('--output', '-o', type=str, help='Export ranked lenders to CSV')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    return parser


def render_table(result: ResultSet) -> str:
    """Human-readable ranking, balances in whole units."""
    if result.is_empty:
        return "No lending activity found"

    df = pd.DataFrame([
        {
            'Rank': rank,
            'Address': format_address(lender.address),
            f'Balance ({SETTLEMENT_ASSET_SYMBOL})': format_units(lender.balance, SETTLEMENT_ASSET_DECIMALS),
            'Pool %': format_percentage(lender.pool_percentage),
        }
        for rank, lender in enumerate(result.lenders, start=1)
    ])
    lines = [
        df.to_string(index=False),
        "",
        f"Total lent:     {format_units(result.total_lent)} {SETTLEMENT_ASSET_SYMBOL}",
        f"Pool liquidity: {format_units(result.total_pool_liquidity)} {SETTLEMENT_ASSET_SYMBOL}"
        + (" (fallback estimate)" if result.liquidity_source == LiquiditySource.FALLBACK else ""),
    ]
    return "\n".join(lines)


def main(argv: Optional[List[str]] = None, reconstructor: Optional[DebtReconstructor] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(level=logging.DEBUG if args.debug else logging.INFO, debug=args.debug)

    lookback_days = FULL_HISTORY_LOOKBACK_DAYS if args.full_history else args.days
    engine = reconstructor or DebtReconstructor.build_default(use_index=not args.no_index)

    try:
        result = engine.reconstruct(
            args.token,
            lookback_days=lookback_days,
            deadline_seconds=args.timeout,
            progress_callback=ProgressLogger(),
        )
    except ReconstructionTimeout as e:
        print(f"Timed out: {e}", file=sys.stderr)
        return EXIT_TIMEOUT
    except DebtTrackerError as e:
        print(f"Failed to fetch data: {e}", file=sys.stderr)
        return EXIT_FETCH_FAILED

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print(render_table(result))

    if args.output:
        result.to_dataframe(UNIT_SCALE).to_csv(args.output, index=False)
        logger.info(f"Exported {len(result.lenders)} lenders to {args.output}")

    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
