#!/usr/bin/env python3
"""
Automatic Accounting Sync Script.

Runs an automatic sync for every active accounting integration whose sync
frequency has elapsed, and removes expired OAuth states. Meant to be run from
cron every few minutes.

Usage:
    # Show which integrations are due
    python -m scripts.run_automatic_sync --dry-run

    # Run the due syncs
    python -m scripts.run_automatic_sync
"""
import asyncio
import argparse
import logging
import sys

from gymledger.database import AsyncSessionLocal
from gymledger.accounting.automatic import find_due_integrations, run_due_syncs
from gymledger.accounting.connections import ConnectionManager

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


async def main(dry_run: bool = False) -> int:
    print("\n" + "=" * 60)
    print("AUTOMATIC ACCOUNTING SYNC")
    print("=" * 60)

    async with AsyncSessionLocal() as db:
        if dry_run:
            print("\n[DRY RUN MODE - No syncs will be run]\n")
            due = await find_due_integrations(db)
            for integration in due:
                print(f"  [Would sync {integration.provider} for gym {integration.gym_id}]")
            print(f"\n{len(due)} integrations due")
            return 0

        removed = await ConnectionManager(db).cleanup_expired_states()
        print(f"\nRemoved {removed} expired OAuth states")

        outcomes = await run_due_syncs(db)

    failures = 0
    for outcome in outcomes:
        label = f"{outcome.provider} / gym {outcome.gym_id}"
        if outcome.skipped:
            print(f"  - Skipped {label} (sync already in progress)")
        elif outcome.error:
            failures += 1
            print(f"  ✗ {label}: {outcome.error}")
        else:
            result = outcome.result
            print(
                f"  ✓ {label}: {result.status} "
                f"({result.succeeded} succeeded, {result.failed} failed)"
            )

    print("\n" + "=" * 60)
    print(f"Done: {len(outcomes)} integrations processed, {failures} errors")
    print("=" * 60 + "\n")
    return 1 if failures else 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run due automatic accounting syncs")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List due integrations without syncing",
    )
    args = parser.parse_args()

    sys.exit(asyncio.run(main(dry_run=args.dry_run)))
