#!/usr/bin/env python3
"""
Wallet Balance Repair Script.

Compares every user's cached wallet and hold balances with the ledgers
(completed wallet transactions, active balance holds) and overwrites the
cache where they disagree.

Usage:
    python scripts/fix_wallet_balances.py
    python scripts/fix_wallet_balances.py <user_id>
    python scripts/fix_wallet_balances.py --dry-run
"""

import argparse
import asyncio
import sys

from tourney.logging_config import configure_logging
from tourney.services.reconciliation import LedgerReconciler
from tourney.utils.db import standalone_session_factory
from tourney.utils.errors import ServiceError


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Repair cached wallet balances from the ledger")
    parser.add_argument("user_id", nargs="?", help="Only check this user")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report discrepancies without writing",
    )
    return parser.parse_args(argv)


async def fix_wallet_balances(user_id: str | None, dry_run: bool) -> int:
    """Report and repair discrepancies. Returns the process exit code."""
    async with standalone_session_factory() as session_factory:
        async with session_factory() as session:
            reconciler = LedgerReconciler(session)
            reports = await reconciler.reconcile(user_id)

            if not reports:
                print("✅ All balances match the ledger")
                return 0

            print(f"Found {len(reports)} discrepancy(ies):")
            for report in reports:
                print(
                    f"  {report.username} ({report.user_id}): "
                    f"balance {report.current_balance} -> {report.calculated_balance}, "
                    f"hold {report.current_hold} -> {report.calculated_hold}"
                )

            if dry_run:
                print("Dry run, nothing written")
                return 0

            # Release the read transaction before taking per-user locks
            await session.rollback()

            failed = 0
            for report in reports:
                try:
                    await reconciler.apply_reconciliation(report.user_id)
                except ServiceError as e:
                    failed += 1
                    print(f"  ❌ {report.user_id}: {e.message}")

            print(f"Fixed {len(reports) - failed}, failed {failed}")
            return 1 if failed else 0


async def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = parse_args(argv)
    configure_logging(log_level="INFO")

    try:
        code = await fix_wallet_balances(args.user_id, args.dry_run)
    except Exception as e:
        print(f"ERROR: Failed to reconcile balances: {e}")
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    asyncio.run(main())
