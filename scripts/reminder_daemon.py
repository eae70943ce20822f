"""
Daemon that runs the daily anniversary reminder check at a fixed local time.
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from datetime import datetime, timedelta
from pathlib import Path
from zoneinfo import ZoneInfo

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from lovestory.config import get_settings
from lovestory.dependencies import build_dispatcher, get_db_client
from lovestory.reminders import ReminderService

logger = logging.getLogger(__name__)


def seconds_until_next_run(now: datetime, hour: int, minute: int) -> float:
    """Seconds from `now` (tz-aware) until the next hour:minute in the same zone."""
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


def main() -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Anniversary reminder daemon")
    parser.add_argument(
        "--hour",
        type=int,
        choices=range(0, 24),
        default=settings.reminder_daily_hour,
        help="Local hour of the daily run",
    )
    parser.add_argument(
        "--minute",
        type=int,
        choices=range(0, 60),
        default=settings.reminder_daily_minute,
        help="Local minute of the daily run",
    )
    parser.add_argument(
        "--same-day",
        action="store_true",
        help="Also send on the anniversary day itself (cron endpoint rule)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single check now and exit",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    zone = ZoneInfo(settings.reminder_timezone)
    service = ReminderService(
        db=get_db_client(),
        dispatcher_factory=build_dispatcher,
        timezone_name=settings.reminder_timezone,
    )

    while True:
        if not args.once:
            sleep_for = seconds_until_next_run(datetime.now(zone), args.hour, args.minute)
            logger.info(
                "Next reminder check at %02d:%02d %s (in %.0fs)",
                args.hour,
                args.minute,
                settings.reminder_timezone,
                sleep_for,
            )
            time.sleep(sleep_for)

        try:
            summary = service.run_daily(include_same_day=args.same_day)
            logger.info("Reminder check complete: %s", summary.as_dict())
        except Exception as exc:
            logger.exception("Reminder check failed: %s", exc)
            if args.once:
                return 1

        if args.once:
            return 0


if __name__ == "__main__":
    raise SystemExit(main())
