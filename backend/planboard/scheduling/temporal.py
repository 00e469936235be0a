"""
Date-only arithmetic shared by every scheduling component.

All values are calendar dates; there is no time-of-day and no timezone,
so day differences are exact and never need DST correction.
"""

import calendar
import math
from datetime import date, timedelta
from typing import Iterable, Optional

from ..config import get_settings


def add_days(value: date, days: int) -> date:
    return value + timedelta(days=days)


def day_diff(start: date, end: date) -> int:
    """Whole days from start to end (end - start)."""
    return (end - start).days


def date_range_union(dates: Iterable[date], today: Optional[date] = None) -> tuple[date, date]:
    """
    Smallest (min, max) pair covering every date.

    An empty input collapses to (today, today) so callers always get a
    usable range.
    """
    values = list(dates)
    if not values:
        anchor = today or date.today()
        return anchor, anchor
    return min(values), max(values)


def padded_range(
    dates: Iterable[date],
    today: Optional[date] = None,
    padding_days: Optional[int] = None,
) -> tuple[date, date]:
    """Chart bounds: the union of the dates widened by the padding on both sides."""
    if padding_days is None:
        padding_days = get_settings().date_padding_days
    start, end = date_range_union(dates, today)
    return add_days(start, -padding_days), add_days(end, padding_days)


def is_weekend(value: date) -> bool:
    return value.weekday() >= 5


def week_number(value: date) -> int:
    """
    Week of the year counted from the week containing January 1st,
    with weeks starting on Sunday.
    """
    jan_first = date(value.year, 1, 1)
    days_past = day_diff(jan_first, value)
    jan_first_weekday = jan_first.isoweekday() % 7  # Sunday == 0
    return math.ceil((days_past + jan_first_weekday + 1) / 7)


def last_day_of_month(value: date) -> date:
    return value.replace(day=calendar.monthrange(value.year, value.month)[1])


def first_day_of_next_month(value: date) -> date:
    return add_days(last_day_of_month(value), 1)


def round_half_up(value: float) -> int:
    """Nearest integer, halves rounded toward positive infinity (unlike round())."""
    return math.floor(value + 0.5)
