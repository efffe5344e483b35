import re
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, Optional, Union

from models import Granularity

# date.weekday(): Monday == 0, so Saturday == 5.
WEEK_START_WEEKDAY = 5

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_MONTH_KEY = re.compile(r"^\d{4}-\d{2}$")

MONTH_NAMES_ES = (
    "enero",
    "febrero",
    "marzo",
    "abril",
    "mayo",
    "junio",
    "julio",
    "agosto",
    "septiembre",
    "octubre",
    "noviembre",
    "diciembre",
)


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def parse_record_date(value: Union[str, date, None]) -> Optional[date]:
    """Parse a record's ``YYYY-MM-DD`` date, returning None when unusable.

    Python dates carry no time or zone, so bucket arithmetic on them cannot
    drift across a local-midnight boundary.
    """
    if isinstance(value, date):
        return value
    if not value or not _ISO_DATE.match(value.strip()):
        return None
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        return None


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(base: date, months: int) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date(year, month, min(base.day, days_in_month(year, month)))


def month_start(d: date) -> date:
    return d.replace(day=1)


def month_end(d: date) -> date:
    return d.replace(day=days_in_month(d.year, d.month))


def week_start(d: date) -> date:
    return d - timedelta(days=(d.weekday() - WEEK_START_WEEKDAY) % 7)


def day_bucket(d: date) -> str:
    return d.isoformat()


def week_bucket(d: date) -> str:
    return week_start(d).isoformat()


def month_bucket(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}"


def bucket_key(d: date, granularity: Granularity) -> str:
    if granularity == Granularity.day:
        return day_bucket(d)
    if granularity == Granularity.week:
        return week_bucket(d)
    return month_bucket(d)


def bucket_start(key: str, granularity: Granularity) -> date:
    if granularity == Granularity.month:
        if not _MONTH_KEY.match(key):
            raise ValueError(f"Invalid month bucket '{key}'")
        return date(int(key[:4]), int(key[5:7]), 1)
    parsed = parse_record_date(key)
    if parsed is None:
        raise ValueError(f"Invalid {granularity.value} bucket '{key}'")
    if granularity == Granularity.week:
        return week_start(parsed)
    return parsed


def bucket_end(key: str, granularity: Granularity) -> date:
    start = bucket_start(key, granularity)
    if granularity == Granularity.day:
        return start
    if granularity == Granularity.week:
        return start + timedelta(days=6)
    return month_end(start)


def next_bucket_start(start: date, granularity: Granularity) -> date:
    if granularity == Granularity.day:
        return start + timedelta(days=1)
    if granularity == Granularity.week:
        return start + timedelta(days=7)
    return add_months(month_start(start), 1)


def enumerate_buckets(start: date, end: date, granularity: Granularity) -> list[str]:
    """Every bucket touching ``[start, end]``, in order and without gaps."""
    if start > end:
        return []
    current = bucket_start(bucket_key(start, granularity), granularity)
    keys: list[str] = []
    while current <= end:
        keys.append(bucket_key(current, granularity))
        current = next_bucket_start(current, granularity)
    return keys


def bucket_range(start_key: str, end_key: str, granularity: Granularity) -> list[str]:
    return enumerate_buckets(
        bucket_start(start_key, granularity),
        bucket_start(end_key, granularity),
        granularity,
    )


def months_of_year(year: int) -> list[str]:
    return [f"{year:04d}-{month:02d}" for month in range(1, 13)]


def days_of_week(d: date) -> list[str]:
    first = week_start(d)
    return [(first + timedelta(days=offset)).isoformat() for offset in range(7)]


def resolve_range(
    record_dates: Iterable[date],
    start: Optional[date] = None,
    end: Optional[date] = None,
    *,
    extend_to: Optional[date] = None,
) -> Optional[Period]:
    """Table range for a view.

    Missing bounds default to the first/last record date. ``extend_to`` pushes
    a defaulted end forward (dashboard-style views that always reach today).
    Returns None when there is nothing to show.
    """
    dates = sorted(record_dates)
    if start and end and start > end:
        raise ValueError("Start date must be before end date")
    range_start = start or (dates[0] if dates else None)
    range_end = end
    if range_end is None:
        range_end = dates[-1] if dates else None
        if extend_to is not None and (range_end is None or range_end < extend_to):
            range_end = extend_to
    if range_start is None or range_end is None:
        return None
    slug = "custom" if start or end else "all"
    return Period(slug, range_start, range_end)


def resolve_dashboard_period(year: int, period_type: str, period: int = 0) -> Period:
    if period_type == "year" or period == 0:
        return Period("year", date(year, 1, 1), date(year, 12, 31))
    if period_type == "month":
        if not 1 <= period <= 12:
            raise ValueError("Month must be between 1 and 12")
        first = date(year, period, 1)
        return Period("month", first, month_end(first))
    if period_type == "quarter":
        if not 1 <= period <= 4:
            raise ValueError("Quarter must be between 1 and 4")
        first = date(year, (period - 1) * 3 + 1, 1)
        return Period("quarter", first, month_end(add_months(first, 2)))
    if period_type == "semester":
        if not 1 <= period <= 2:
            raise ValueError("Semester must be 1 or 2")
        first = date(year, (period - 1) * 6 + 1, 1)
        return Period("semester", first, month_end(add_months(first, 5)))
    raise ValueError(f"Unknown period type '{period_type}'")


def format_day(key: str) -> str:
    if not _ISO_DATE.match(key):
        return key
    year, month, day = key.split("-")
    return f"{day}/{month}/{year}"


def format_day_short(key: str) -> str:
    if not _ISO_DATE.match(key):
        return key
    _, month, day = key.split("-")
    return f"{day}/{month}"


def format_week(key: str) -> str:
    start = bucket_start(key, Granularity.week)
    end = start + timedelta(days=6)
    return f"{format_day(start.isoformat())} al {format_day(end.isoformat())}"


def format_month(key: str) -> str:
    parts = key.split("-")
    if len(parts) < 2:
        return key
    return f"{parts[1]}/{parts[0]}"


def format_month_name(key: str) -> str:
    parts = key.split("-")
    if len(parts) < 2 or not parts[0].isdigit() or not parts[1].isdigit():
        return key
    month = int(parts[1])
    if not 1 <= month <= 12:
        return key
    return f"{MONTH_NAMES_ES[month - 1]} de {int(parts[0])}"


def format_bucket(key: str, granularity: Granularity) -> str:
    if granularity == Granularity.day:
        return format_day(key)
    if granularity == Granularity.week:
        return format_week(key)
    return format_month_name(key)
