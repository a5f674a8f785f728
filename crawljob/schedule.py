"""Next-run computation for recurring jobs.

The engine has no wall-clock scheduler. An external trigger calls
`CrawlEngine.start` at the time computed here.
"""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta, timezone

from .config import ScheduleConfig
from .types import ScheduleFrequency


def _sunday_based_weekday(moment: datetime) -> int:
    # datetime.weekday() is Monday=0; schedules use Sunday=0.
    return (moment.weekday() + 1) % 7


def _at_day_of_month(year: int, month: int, day: int, hour: int) -> datetime:
    last_day = calendar.monthrange(year, month)[1]
    return datetime(year, month, min(day, last_day), hour, tzinfo=timezone.utc)


def next_run_time(schedule: ScheduleConfig, from_time: datetime | None = None) -> datetime:
    """Return the next UTC run time strictly after `from_time`.

    - daily: today at `hour`, else tomorrow.
    - weekly: next `day_of_week` (0 = Sunday, default Sunday) at `hour`.
    - biweekly: like weekly, one week further out.
    - monthly: `day_of_month` (default 1) at `hour`, clamped to the month's last day.
    """

    now = from_time or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)

    candidate = now.replace(hour=schedule.hour, minute=0, second=0, microsecond=0)

    if schedule.frequency == ScheduleFrequency.DAILY:
        if candidate <= now:
            candidate += timedelta(days=1)
        return candidate

    if schedule.frequency in (ScheduleFrequency.WEEKLY, ScheduleFrequency.BIWEEKLY):
        target = schedule.day_of_week if schedule.day_of_week is not None else 0
        days_until = target - _sunday_based_weekday(candidate)
        passed = days_until < 0 or (days_until == 0 and candidate <= now)

        if schedule.frequency == ScheduleFrequency.WEEKLY:
            if passed:
                days_until += 7
        elif passed:
            days_until += 14
        else:
            days_until += 7
        return candidate + timedelta(days=days_until)

    day = schedule.day_of_month if schedule.day_of_month is not None else 1
    candidate = _at_day_of_month(now.year, now.month, day, schedule.hour)
    if candidate <= now:
        year, month = (now.year + 1, 1) if now.month == 12 else (now.year, now.month + 1)
        candidate = _at_day_of_month(year, month, day, schedule.hour)
    return candidate


def next_run_iso(schedule: ScheduleConfig, from_time: datetime | None = None) -> str | None:
    """ISO timestamp of the next run, or `None` when scheduling is disabled."""

    if not schedule.enabled:
        return None
    return next_run_time(schedule, from_time).isoformat(timespec="milliseconds")


__all__ = [
    "next_run_iso",
    "next_run_time",
]
