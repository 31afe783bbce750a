#!/usr/bin/env python3
"""
Abandoned Booking Cleanup Script

Cancels pending bookings whose checkout was never completed. Safe to run while
students are confirming: a booking that is no longer pending is left alone.

Usage:
    python cleanup_abandoned_bookings.py
    python cleanup_abandoned_bookings.py --ttl-minutes 60
"""

from __future__ import annotations

import argparse
import sys
from datetime import timedelta
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from api.dependencies import get_container
from core.logging import configure_logging


def main() -> int:
    parser = argparse.ArgumentParser(description="Cancel abandoned pending bookings")
    parser.add_argument(
        "--ttl-minutes",
        type=int,
        default=None,
        help="Age after which a pending booking is abandoned (default: PENDING_BOOKING_TTL_MINUTES)",
    )
    args = parser.parse_args()

    container = get_container()
    configure_logging(container.settings.log_level)

    ttl = timedelta(minutes=args.ttl_minutes) if args.ttl_minutes else container.settings.pending_booking_ttl
    cancelled = container.bookings.cleanup_abandoned(ttl)

    print(f"Cancelled {len(cancelled)} abandoned pending bookings (older than {ttl})")
    for occurrence in cancelled:
        print(f"  - {occurrence.occurrence_id}  {occurrence.slot.canonical_id}  student={occurrence.student_id}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
