#!/usr/bin/env python3
"""
Settle, preview or revert revenue-share agreements for a calendar month.

Uses the active configuration (get_active_config) for the database URL and
log level.  Each invocation runs in one database transaction: a failure
rolls back everything it wrote.

Usage:
    python3 scripts/run_settlement.py settle-all --year 2024 --month 5
    python3 scripts/run_settlement.py settle --agreement <uuid> --year 2024 --month 5
    python3 scripts/run_settlement.py preview --agreement <uuid> --year 2024 --month 5
    python3 scripts/run_settlement.py revert --agreement <uuid> --year 2024 --month 5

Exit status is 1 when a settle-all run collected per-agreement errors.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from uuid import UUID

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Monthly minimum-guarantee settlement.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "action",
        choices=("settle", "settle-all", "preview", "revert"),
    )
    parser.add_argument("--year", type=int, required=True)
    parser.add_argument("--month", type=int, required=True)
    parser.add_argument(
        "--agreement",
        type=UUID,
        default=None,
        help="Agreement UUID (required for settle, preview and revert).",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Configuration YAML (default: REVSHARE_CONFIG env or packaged defaults).",
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables before running (local databases).",
    )
    args = parser.parse_args()
    if args.action != "settle-all" and args.agreement is None:
        parser.error(f"--agreement is required for {args.action}")
    return args


def _print_result(result) -> None:
    print(
        f"{result.agreement_id} {result.year}-{result.month:02d} {result.status.value}: "
        f"raw={result.raw_partner_share} guarantee={result.minimum_guarantee} "
        f"adjustment={result.adjustment} final={result.final_partner_share} "
        f"transactions={result.transaction_count}"
        + (" (already settled)" if result.already_settled else "")
    )


def main() -> int:
    args = _parse_args()

    # Lazy imports so we fail fast on args first
    from revshare_config import get_active_config
    from revshare_kernel.api import RevenueShareKernel
    from revshare_kernel.db.engine import create_tables, init_engine_from_url, session_scope
    from revshare_kernel.exceptions import RevShareError
    from revshare_kernel.logging_config import configure_logging

    config = get_active_config(args.config)
    configure_logging(level=config.logging.level)
    init_engine_from_url(
        config.database.url,
        echo=config.database.echo,
        pool_size=config.database.pool_size,
        max_overflow=config.database.max_overflow,
    )
    if args.create_tables:
        create_tables()

    try:
        with session_scope() as session:
            kernel = RevenueShareKernel(session, config=config)

            if args.action == "settle-all":
                batch = kernel.settle_all_agreements(args.year, args.month)
                for result in batch.results:
                    _print_result(result)
                for error in batch.errors:
                    print(f"ERROR {error.item_id}: {error.code} {error.message}", file=sys.stderr)
                return 1 if batch.errors else 0

            if args.action == "settle":
                _print_result(kernel.settle_month(args.agreement, args.year, args.month))
            elif args.action == "preview":
                _print_result(kernel.preview_month(args.agreement, args.year, args.month))
            else:
                kernel.revert_settlement(args.agreement, args.year, args.month)
                print(f"Reverted {args.agreement} {args.year}-{args.month:02d}")
    except RevShareError as exc:
        print(f"ERROR: {exc.code} {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
