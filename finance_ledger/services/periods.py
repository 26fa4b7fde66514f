# services/periods.py
#
# Date & Period Helpers
# Month bounds for budgets and reports, interval stepping for recurring
# schedules, and a single source of "now" for the ledger.

from datetime import date, datetime, time, timedelta, timezone

from dateutil.relativedelta import relativedelta

from finance_ledger.models import RecurringInterval


# ---- Clock ----

def utcnow() -> datetime:
    """Current time as naive UTC (how every DateTime column is stored)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime | date | None) -> datetime | None:
    """
    Normalize client-supplied dates/datetimes to naive UTC datetimes.
    A bare date becomes midnight of that day.
    """
    if value is None:
        return None
    if not isinstance(value, datetime):
        return datetime.combine(value, time.min)
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# ---- Month Ranges ----

def get_month_range(year: int, month: int) -> tuple[datetime, datetime]:
    """
    Returns (first_instant, last_instant) of the calendar month, both inclusive.
    """
    if not (1 <= month <= 12):
        raise ValueError(f"month must be in 1..12, got {month}")

    start = datetime(year, month, 1)
    next_month_start = start + relativedelta(months=1)
    end = next_month_start - timedelta(microseconds=1)
    return start, end


def previous_month(year: int, month: int) -> tuple[int, int]:
    if month == 1:
        return year - 1, 12
    return year, month - 1


# ---- Recurring Intervals ----

def next_run_date(current: datetime, interval: RecurringInterval) -> datetime:
    """
    Advance `current` by exactly one interval step.

    MONTHLY and YEARLY keep the day of month where it exists and clamp to
    the last day of a shorter month (Jan 31 -> Feb 29 -> Mar 29 ...).
    """
    if interval == RecurringInterval.DAILY:
        return current + timedelta(days=1)
    if interval == RecurringInterval.WEEKLY:
        return current + timedelta(days=7)
    if interval == RecurringInterval.MONTHLY:
        return current + relativedelta(months=1)
    if interval == RecurringInterval.YEARLY:
        return current + relativedelta(years=1)
    raise ValueError(f"Unknown recurring interval: {interval!r}")
