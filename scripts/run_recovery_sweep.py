#!/usr/bin/env python3
"""Resolve privacy transactions left pending by a crashed process.

A pending marker whose audit entry exists is committed; one without an
audit entry is discarded. Markers younger than the grace period are left
alone because their request may still be running.

The API runs the same sweep at startup; this script is for operators
who need it without restarting the service.

Usage:
    python scripts/run_recovery_sweep.py
    python scripts/run_recovery_sweep.py --account-id acct-42
    python scripts/run_recovery_sweep.py --grace-seconds 0 -v
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import timedelta

from src.bootstrap.database import close_database_engine
from src.bootstrap.logging import configure_logging
from src.bootstrap.privacy_core import build_privacy_core
from src.config.privacy_core_config import PrivacyCoreSettings


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument(
        "--account-id",
        default=None,
        help="Only resolve markers of this account (default: all accounts)",
    )
    parser.add_argument(
        "--grace-seconds",
        type=float,
        default=None,
        help="Minimum marker age in seconds (default: PRIVACY_PENDING_GRACE_SECONDS)",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Print resolved transaction ids"
    )
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    settings = PrivacyCoreSettings.from_environment()
    configure_logging(settings)
    if settings.storage_backend != "postgres":
        print("Warning: memory backend has nothing to recover across processes")

    core = await build_privacy_core(settings)
    grace = timedelta(seconds=args.grace_seconds) if args.grace_seconds is not None else None
    try:
        report = await core.enforcer.recover_pending(account_id=args.account_id, grace=grace)
    finally:
        if settings.storage_backend == "postgres":
            await close_database_engine()

    print(f"Committed: {len(report.committed)}")
    print(f"Discarded: {len(report.discarded)}")
    print(f"Skipped:   {report.skipped}")
    if args.verbose:
        for transaction_id in report.committed:
            print(f"  committed {transaction_id}")
        for transaction_id in report.discarded:
            print(f"  discarded {transaction_id}")
    return 0


def main(argv: list[str] | None = None) -> int:
    return asyncio.run(run(parse_args(argv)))


if __name__ == "__main__":
    sys.exit(main())
