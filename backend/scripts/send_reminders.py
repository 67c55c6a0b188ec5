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
from bookingsync.services.reminders import ReminderService


async def send_reminders(lead_hours: int) -> int:
    """Send reminders for confirmed bookings starting within ``lead_hours``."""
    async with AsyncSessionLocal() as session:
        service = ReminderService(session, BookingNotifier())
        run = await service.send_due_reminders(lead=timedelta(hours=lead_hours))

    print(f"✅ Reminders sent: {len(run.sent)}, skipped: {len(run.skipped)}, failed: {len(run.failed)}")
    return 1 if run.failed else 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Send SMS reminders for upcoming bookings.")
    parser.add_argument(
        "--lead-hours",
        type=int,
        default=24,
        help="How far ahead to look for bookings (default: 24)",
    )
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO)
    sys.exit(asyncio.run(send_reminders(args.lead_hours)))


if __name__ == "__main__":
    main()
