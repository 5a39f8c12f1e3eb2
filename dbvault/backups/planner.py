from __future__ import annotations

import calendar
from datetime import date, datetime, time, timedelta, timezone, tzinfo

from dbvault.db.models import BackupFrequency, Schedule, Weekday


def _localize(day: date, run_time: time, tz: tzinfo | None) -> datetime:
    if tz is None:
        return datetime.combine(day, run_time).astimezone()
    return datetime.combine(day, run_time, tzinfo=tz)


def _to_local(reference: datetime, tz: tzinfo | None) -> datetime:
    if reference.tzinfo is None:
        reference = reference.replace(tzinfo=timezone.utc)
    return reference.astimezone(tz) if tz is not None else reference.astimezone()


def _next_daily(reference: datetime, run_time: time, tz: tzinfo | None) -> datetime:
    candidate = _localize(reference.date(), run_time, tz)
    if candidate <= reference:
        candidate = _localize(reference.date() + timedelta(days=1), run_time, tz)
    return candidate


def _next_weekly(reference: datetime, run_time: time, days: list[Weekday], tz: tzinfo | None) -> datetime:
    today = reference.weekday()
    selected = {day.index for day in days} or {today}
    ordered = sorted(selected, key=lambda index: (index - today) % 7)

    for index in ordered:
        delta = (index - today) % 7
        candidate = _localize(reference.date() + timedelta(days=delta), run_time, tz)
        if candidate > reference:
            return candidate

    fallback = (ordered[0] - today) % 7 or 7
    return _localize(reference.date() + timedelta(days=fallback), run_time, tz)


def _monthly_candidate(year: int, month: int, day_of_month: int, run_time: time, tz: tzinfo | None) -> datetime:
    safe_day = min(day_of_month, calendar.monthrange(year, month)[1])
    return _localize(date(year, month, safe_day), run_time, tz)


def _next_monthly(reference: datetime, run_time: time, day_of_month: int, tz: tzinfo | None) -> datetime:
    desired = 1 if day_of_month <= 0 else min(day_of_month, 31)
    candidate = _monthly_candidate(reference.year, reference.month, desired, run_time, tz)
    if candidate <= reference:
        year, month = (reference.year + 1, 1) if reference.month == 12 else (reference.year, reference.month + 1)
        candidate = _monthly_candidate(year, month, desired, run_time, tz)
    return candidate


def next_run(schedule: Schedule, reference: datetime | None = None, *, tz: tzinfo | None = None) -> datetime | None:
    if not schedule.enabled:
        return None

    local_reference = _to_local(reference or datetime.now(tz=timezone.utc), tz)
    run_time = schedule.local_run_time.replace(tzinfo=None)
    frequency = schedule.frequency

    if frequency == BackupFrequency.ONCE:
        if schedule.last_run_at is not None:
            return None
        candidate = _next_daily(local_reference, run_time, tz)
    elif frequency == BackupFrequency.WEEKLY:
        candidate = _next_weekly(local_reference, run_time, schedule.days_of_week, tz)
    elif frequency == BackupFrequency.MONTHLY:
        candidate = _next_monthly(local_reference, run_time, schedule.day_of_month, tz)
    elif frequency == BackupFrequency.CUSTOM_INTERVAL:
        minutes = schedule.custom_interval_minutes if schedule.custom_interval_minutes > 0 else 60
        candidate = local_reference + timedelta(minutes=minutes)
    else:
        candidate = _next_daily(local_reference, run_time, tz)

    return candidate.astimezone(timezone.utc)


def refresh_next_run(schedule: Schedule, reference: datetime | None = None, *, tz: tzinfo | None = None) -> Schedule:
    schedule.next_run_at = next_run(schedule, reference, tz=tz)
    return schedule
