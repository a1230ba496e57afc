"""Relative date resolution for automation actions and filters.

Every function returns an aware ``datetime`` at 00:00:00.000 of the resolved
calendar day, in the timezone of the reference instant. Weekdays follow
Python's convention (Monday=0 ... Sunday=6); weeks start on Monday.
"""

import calendar
import re
from datetime import date, datetime, timedelta, tzinfo
from typing import Literal

from automation_engine.core.clock import SystemClock
from automation_engine.core.exceptions import InvalidDateParamsError, UnhandledDateOptionError

MonthTarget = Literal["this_month", "next_month"]

WEEKDAY_MAP: dict[str, int] = {
    "monday": 0,
    "tuesday": 1,
    "wednesday": 2,
    "thursday": 3,
    "friday": 4,
    "saturday": 5,
    "sunday": 6,
}

ORDINAL_MAP: dict[str, int | str] = {
    "first": 1,
    "second": 2,
    "third": 3,
    "fourth": 4,
    "last": "last",
}

_WEEKDAY_NAMES = "|".join(WEEKDAY_MAP)
_DAY_OF_MONTH_RE = re.compile(r"^day_of_month_(\d+)$")
_NEXT_WEEK_ON_RE = re.compile(rf"^next_week_({_WEEKDAY_NAMES})$")
_NEXT_WEEKDAY_RE = re.compile(rf"^next_({_WEEKDAY_NAMES})$")
_NTH_WEEKDAY_RE = re.compile(rf"^({'|'.join(ORDINAL_MAP)})_({_WEEKDAY_NAMES})_of_month$")

RELATIVE_DATE_OPTIONS: frozenset[str] = frozenset(
    [
        "today",
        "tomorrow",
        "next_working_day",
        "last_day_of_month",
        "last_working_day_of_month",
        "specific_date",
    ]
    + [f"next_{name}" for name in WEEKDAY_MAP]
    + [f"next_week_{name}" for name in WEEKDAY_MAP]
    + [f"day_of_month_{n}" for n in range(1, 32)]
    + [f"{ordinal}_{name}_of_month" for ordinal in ORDINAL_MAP for name in WEEKDAY_MAP]
)


def is_valid_date_option(option: str) -> bool:
    """Check whether ``option`` belongs to the closed relative-date option set."""
    return option in RELATIVE_DATE_OPTIONS


def _at_midnight(day: date, tz: tzinfo | None) -> datetime:
    return datetime(day.year, day.month, day.day, tzinfo=tz)


def start_of_day(value: datetime) -> datetime:
    """Normalize ``value`` to 00:00:00.000 of the same calendar day."""
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def is_working_day(value: date) -> bool:
    """Check if a date is Monday-Friday."""
    return value.weekday() < 5


def _shift_month(day: date, months: int) -> date:
    month_index = day.month - 1 + months
    return date(day.year + month_index // 12, month_index % 12 + 1, 1)


def _last_day_of_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def _target_month_start(reference: date, month_target: MonthTarget | None) -> date:
    first = reference.replace(day=1)
    if month_target == "next_month":
        return _shift_month(first, 1)
    return first


def calculate_working_days(n: int, reference: datetime) -> datetime:
    """Walk ``n`` working days forward from ``reference``, skipping weekends.

    When ``n`` is 0 the reference day is returned if it is a working day,
    otherwise the following Monday.

    Args:
        n: Number of working days to add (0 or positive)
        reference: Reference instant

    Returns:
        Start of the resulting working day
    """
    current = reference.date()

    if n == 0:
        while not is_working_day(current):
            current += timedelta(days=1)
        return _at_midnight(current, reference.tzinfo)

    added = 0
    while added < n:
        current += timedelta(days=1)
        if is_working_day(current):
            added += 1

    return _at_midnight(current, reference.tzinfo)


def count_working_days_between(start: datetime, end: datetime) -> int:
    """Count working days strictly between two instants (both endpoints excluded)."""
    current = start.date() + timedelta(days=1)
    last = end.date()

    count = 0
    while current < last:
        if is_working_day(current):
            count += 1
        current += timedelta(days=1)
    return count


def calculate_next_weekday(weekday: int, reference: datetime) -> datetime:
    """Next occurrence of ``weekday`` strictly after the reference day."""
    current = reference.date()
    days_to_add = weekday - current.weekday()
    if days_to_add <= 0:
        days_to_add += 7
    return _at_midnight(current + timedelta(days=days_to_add), reference.tzinfo)


def calculate_next_week_on(weekday: int, reference: datetime) -> datetime:
    """``weekday`` in the Monday-start calendar week following the reference's week."""
    current = reference.date()
    next_monday = current - timedelta(days=current.weekday()) + timedelta(days=7)
    return _at_midnight(next_monday + timedelta(days=weekday), reference.tzinfo)


def calculate_day_of_month(
    day: int | Literal["last", "last_working"],
    month_target: MonthTarget | None,
    reference: datetime,
) -> datetime:
    """Resolve a day of this or next month.

    Numeric days are clamped to the month's last valid day; ``last_working``
    walks back from the last day to the nearest Monday-Friday.
    """
    first = _target_month_start(reference.date(), month_target)
    last_day = _last_day_of_month(first.year, first.month)

    if day == "last":
        return _at_midnight(first.replace(day=last_day), reference.tzinfo)

    if day == "last_working":
        result = first.replace(day=last_day)
        while not is_working_day(result):
            result -= timedelta(days=1)
        return _at_midnight(result, reference.tzinfo)

    return _at_midnight(first.replace(day=min(day, last_day)), reference.tzinfo)


def calculate_nth_weekday_of_month(
    nth: int | Literal["last"],
    weekday: int,
    month_target: MonthTarget | None,
    reference: datetime,
) -> datetime:
    """Resolve the nth (1-4 or 'last') occurrence of ``weekday`` in a month.

    Asking for an occurrence the month does not have (e.g. a 5th Monday)
    falls back to the last occurrence.
    """
    first = _target_month_start(reference.date(), month_target)
    last_day = _last_day_of_month(first.year, first.month)
    occurrences = [
        first.replace(day=d)
        for d in range(1, last_day + 1)
        if first.replace(day=d).weekday() == weekday
    ]

    if nth == "last" or nth > len(occurrences):
        return _at_midnight(occurrences[-1], reference.tzinfo)
    return _at_midnight(occurrences[nth - 1], reference.tzinfo)


def calculate_specific_date(month: int, day: int, reference: datetime) -> datetime:
    """Nearest future occurrence of month/day (this year, else next year).

    February 29th maps to February 28th in non-leap years; other days are
    clamped to the month's length.
    """
    current = reference.date()

    def resolve(year: int) -> date:
        if month == 2 and day == 29 and not calendar.isleap(year):
            return date(year, 2, 28)
        return date(year, month, min(day, _last_day_of_month(year, month)))

    result = resolve(current.year)
    if month < current.month or (month == current.month and day < current.day):
        result = resolve(current.year + 1)

    return _at_midnight(result, reference.tzinfo)


def calculate_relative_date(
    option: str,
    reference: datetime | None = None,
    *,
    specific_month: int | None = None,
    specific_day: int | None = None,
    month_target: MonthTarget | None = None,
) -> datetime:
    """Resolve a symbolic relative-date option to an absolute start of day.

    Args:
        option: Relative date option (e.g. 'next_monday', 'day_of_month_15')
        reference: Reference instant (defaults to the system clock)
        specific_month: Month 1-12, required by 'specific_date'
        specific_day: Day 1-31, required by 'specific_date'
        month_target: 'this_month' (default) or 'next_month' for month-based options

    Returns:
        Aware datetime at 00:00:00.000 of the resolved day

    Raises:
        InvalidDateParamsError: If 'specific_date' is missing month or day
        UnhandledDateOptionError: If the option is outside the closed set

    Example:
        calculate_relative_date("day_of_month_15", now, month_target="next_month")
    """
    if reference is None:
        reference = SystemClock().to_datetime()

    if option == "today":
        return start_of_day(reference)
    if option == "tomorrow":
        return _at_midnight(reference.date() + timedelta(days=1), reference.tzinfo)
    if option == "next_working_day":
        return calculate_working_days(1, reference)

    if option == "last_day_of_month":
        return calculate_day_of_month("last", month_target, reference)
    if option == "last_working_day_of_month":
        return calculate_day_of_month("last_working", month_target, reference)

    if option == "specific_date":
        if not specific_month or not specific_day:
            raise InvalidDateParamsError(
                "specific_date option requires specific_month and specific_day parameters"
            )
        return calculate_specific_date(specific_month, specific_day, reference)

    match = _DAY_OF_MONTH_RE.match(option)
    if match and 1 <= int(match.group(1)) <= 31:
        return calculate_day_of_month(int(match.group(1)), month_target, reference)

    match = _NEXT_WEEK_ON_RE.match(option)
    if match:
        return calculate_next_week_on(WEEKDAY_MAP[match.group(1)], reference)

    match = _NEXT_WEEKDAY_RE.match(option)
    if match:
        return calculate_next_weekday(WEEKDAY_MAP[match.group(1)], reference)

    match = _NTH_WEEKDAY_RE.match(option)
    if match:
        return calculate_nth_weekday_of_month(
            ORDINAL_MAP[match.group(1)],
            WEEKDAY_MAP[match.group(2)],
            month_target,
            reference,
        )

    raise UnhandledDateOptionError(option)
