#!/usr/bin/env python3
"""
Recalculate the split links of a merchant's completed transactions.

Every COMPLETED transaction dated within [--start, --end] has its links
deleted and rebuilt against the agreements in force today.  Each
transaction is isolated in a SAVEPOINT; failures are listed and the rest
is committed.

Usage:
    python3 scripts/run_recalculation.py --merchant <uuid> --start 2024-01-01 --end 2024-03-31
"""

from __future__ import annotations

import argparse
import sys
from datetime import date
from pathlib import Path
from uuid import UUID

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Bulk split recalculation for one merchant.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--merchant", type=UUID, required=True, help="Merchant UUID.")
    parser.add_argument(
        "--start",
        type=lambda s: date.fromisoformat(s),
        required=True,
        help="First transaction date (YYYY-MM-DD).",
    )
    parser.add_argument(
        "--end",
        type=lambda s: date.fromisoformat(s),
        required=True,
        help="Last transaction date (YYYY-MM-DD).",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Configuration YAML (default: REVSHARE_CONFIG env or packaged defaults).",
    )
    args = parser.parse_args()
    if args.end < args.start:
        parser.error("--end must not be before --start")
    return args


def main() -> int:
    args = _parse_args()

    from revshare_config import get_active_config
    from revshare_kernel.api import RevenueShareKernel
    from revshare_kernel.db.engine import init_engine_from_url, session_scope
    from revshare_kernel.logging_config import configure_logging

    config = get_active_config(args.config)
    configure_logging(level=config.logging.level)
    init_engine_from_url(config.database.url, echo=config.database.echo)

    with session_scope() as session:
        result = RevenueShareKernel(session, config=config).bulk_recalculate(
            args.merchant, args.start, args.end
        )

    print(f"Recalculated {result.processed} transaction(s)")
    for error in result.errors:
        print(f"ERROR {error.item_id}: {error.code} {error.message}", file=sys.stderr)
    return 1 if result.errors else 0


if __name__ == "__main__":
    sys.exit(main())
