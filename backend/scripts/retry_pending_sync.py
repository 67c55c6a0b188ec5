from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import timedelta
from pathlib import Path

# Ensure the backend project root (the directory containing the "bookingsync"
# package) is on sys.path so this script can be executed from the repo root or backend/.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from bookingsync.core.database import AsyncSessionLocal
from bookingsync.services.booking_notifier import BookingNotifier
from bookingsync.services.sync_reconciler import SyncAction, SyncReconciler


async def retry_pending_sync(older_than_minutes: int, skip_creates: bool) -> int:
    """Finish failed calendar deletes and re-attempt stuck event creation."""
    notifier = BookingNotifier()
    async with AsyncSessionLocal() as session:
        reconciler = SyncReconciler(session, notifier=notifier)
        results = await reconciler.retry_pending_cancellations()
        if not skip_creates:
            results += await reconciler.retry_unconfirmed(timedelta(minutes=older_than_minutes))
    await notifier.drain()

    failed = [r for r in results if r.action == SyncAction.FAILED]
    for result in results:
        marker = "❌" if result.action == SyncAction.FAILED else "✅"
        print(f"{marker} {result.booking_id}: {result.action.value} {result.detail or ''}".rstrip())
    print(f"Done: {len(results) - len(failed)} reconciled, {len(failed)} still failing")
    return 1 if failed else 0


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Retry calendar operations that failed during booking changes."
    )
    parser.add_argument(
        "--older-than-minutes",
        type=int,
        default=5,
        help="Only retry pending bookings created at least this long ago (default: 5)",
    )
    parser.add_argument(
        "--skip-creates",
        action="store_true",
        help="Only retry pending cancellations",
    )
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO)
    sys.exit(asyncio.run(retry_pending_sync(args.older_than_minutes, args.skip_creates)))


if __name__ == "__main__":
    main()
