#!/usr/bin/env python3
"""
Availability Regeneration Script

Rebuilds a teacher's availability windows for the next 30 days from a weekly
template stored as JSON. Meant to run nightly; the swap is atomic per teacher.

Template file format:
    {
      "timezone": "America/New_York",
      "rules": [
        {"day_of_week": 1, "start_time": "09:00", "end_time": "12:00"},
        {"day_of_week": 3, "start_time": "14:00", "end_time": "18:00"}
      ]
    }

Usage:
    python regenerate_availability.py --teacher teacher-123 --template teacher-123.json
    python regenerate_availability.py --teacher teacher-123 --template t.json --first-day 2025-03-10 --days 14
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import date, time
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from api.dependencies import get_container
from core.config import Settings
from core.logging import configure_logging
from domain.availability import WeeklyAvailabilityRule, WeeklyTemplate
from domain.time import HORIZON_DAYS, Weekday, utc_now


def load_template(path: Path) -> WeeklyTemplate:
    """
    Read a weekly template from a JSON file.

    Raises:
        ValueError: If the file is malformed or a rule is invalid
        InvalidTimezone: If the timezone is not a known IANA zone
    """
    data = json.loads(path.read_text(encoding="utf-8"))
    rules = tuple(
        WeeklyAvailabilityRule(
            day_of_week=Weekday(int(rule["day_of_week"])),
            start_time=time.fromisoformat(rule["start_time"]),
            end_time=time.fromisoformat(rule["end_time"]),
        )
        for rule in data.get("rules", [])
    )
    return WeeklyTemplate(timezone=data["timezone"], rules=rules)


def main() -> int:
    parser = argparse.ArgumentParser(description="Regenerate a teacher's availability windows")
    parser.add_argument("--teacher", required=True, help="Teacher id")
    parser.add_argument("--template", required=True, type=Path, help="Path to the weekly template JSON")
    parser.add_argument("--first-day", type=date.fromisoformat, default=None, help="First local date (default: today UTC)")
    parser.add_argument("--days", type=int, default=HORIZON_DAYS, help=f"Number of days (max {HORIZON_DAYS})")
    args = parser.parse_args()

    configure_logging(Settings.from_env().log_level)

    template = load_template(args.template)
    first_day = args.first_day or utc_now().date()

    container = get_container()
    written = container.availability.regenerate(args.teacher, template, first_day, args.days)

    print("=" * 50)
    print("AVAILABILITY REGENERATED")
    print("=" * 50)
    print(f"Teacher:         {args.teacher}")
    print(f"Timezone:        {template.timezone}")
    print(f"Range:           {first_day.isoformat()} + {args.days} days")
    print(f"Windows written: {written}")
    print("=" * 50)
    return 0


if __name__ == "__main__":
    sys.exit(main())
