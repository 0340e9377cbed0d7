"""Helper functions for maintenance due dates, status buckets and warranty checks."""

from datetime import date, datetime, time, timedelta
from typing import Any, Optional, Union

from dateutil.relativedelta import relativedelta

from .schedule import Interval, IntervalUnit
from .status import MaintenanceStatus

DUE_SOON_DAYS = 30
WARRANTY_EXPIRING_MONTHS = 3

_FIXED_UNITS = {
    IntervalUnit.HOUR: timedelta(hours=1),
    IntervalUnit.DAY: timedelta(days=1),
    IntervalUnit.WEEK: timedelta(days=7),
}


def _as_datetime(value: Union[date, datetime]) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min)


def _as_date(value: Union[date, datetime]) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def calc_next_due(
    last_serviced: Union[date, datetime], interval_value: int, interval_unit: Union[IntervalUnit, str]
) -> datetime:
    """
    Calculate the next due timestamp: last serviced + interval.

    - hour/day/week add a fixed duration (week = 7 days)
    - month/year add calendar fields via relativedelta; when the day of month
      does not exist in the target month it is clamped to the month's last day
      (31 Jan + 1 month -> 29 Feb 2024)
    """
    interval = Interval(interval_value, IntervalUnit.parse(interval_unit))
    start = _as_datetime(last_serviced)
    if interval.unit.is_calendar:
        return start + relativedelta(**{f"{interval.unit.value}s": interval.value})
    return start + _FIXED_UNITS[interval.unit] * interval.value


def start_of_day(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), time.min)


def week_bounds(day: date) -> tuple:
    """Return (first, last) calendar dates of the Sunday-based week containing day."""
    first = day - timedelta(days=(day.weekday() + 1) % 7)
    return first, first + timedelta(days=6)


def classify_maintenance(
    now: datetime, next_due: Optional[Union[date, datetime]], has_schedule: bool
) -> MaintenanceStatus:
    """Bucket a next-due timestamp relative to now. First matching rule wins."""
    if not has_schedule or next_due is None:
        return MaintenanceStatus.NO_MAINTENANCE

    due = _as_datetime(next_due)
    today = now.date()

    if due < start_of_day(now):
        return MaintenanceStatus.OVERDUE
    if due.date() == today:
        return MaintenanceStatus.DUE_TODAY
    _, week_end = week_bounds(today)
    if due.date() <= week_end:
        return MaintenanceStatus.DUE_THIS_WEEK
    if (due.year, due.month) == (today.year, today.month):
        return MaintenanceStatus.DUE_THIS_MONTH
    if due <= now + timedelta(days=DUE_SOON_DAYS):
        return MaintenanceStatus.DUE_NEXT_30_DAYS
    return MaintenanceStatus.UPCOMING


def asset_maintenance_status(asset: Any, now: datetime) -> MaintenanceStatus:
    """Classify an asset record; it has a schedule only with both schedule id and last date."""
    has_schedule = bool(
        getattr(asset, "maintenance_schedule_id", None)
        and getattr(asset, "last_maintenance_date", None)
    )
    return classify_maintenance(now, getattr(asset, "next_maintenance_date", None), has_schedule)


def calc_warranty_end(
    start: Optional[date], period_months: Optional[int]
) -> Optional[date]:
    """Warranty end date: start + period months (None if either is missing)."""
    if start is None or period_months is None:
        return None
    return _as_date(start) + relativedelta(months=int(period_months))


def is_warranty_active(
    start: Optional[date], period_months: Optional[int], now: Union[date, datetime]
) -> bool:
    """True while now <= start + period months; False when either field is missing."""
    end = calc_warranty_end(start, period_months)
    if end is None:
        return False
    return _as_date(now) <= end


def warranty_status(end: Optional[date], now: Union[date, datetime]) -> Optional[str]:
    """Classify a warranty end date as 'active', 'expiring' or 'expired'."""
    if end is None:
        return None
    today = _as_date(now)
    end = _as_date(end)
    if end < today:
        return "expired"
    if end <= today + relativedelta(months=WARRANTY_EXPIRING_MONTHS):
        return "expiring"
    return "active"
