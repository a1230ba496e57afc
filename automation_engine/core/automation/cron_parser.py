"""Conversion between 5-field cron strings and structured cron schedules.

Supported: numeric literals, comma lists, ranges, ``*`` and steps
(``*/n``, ``a-b/n``, ``a/n``) in the day fields. Minute and hour must
resolve to a single value. Rejected: 6/7-field expressions, ``L``, ``W``,
``#``, ``?`` and any month other than ``*``.
"""

import re

from automation_engine.core.exceptions import CronParseError
from automation_engine.schemas.automation import CronSchedule

_UNSUPPORTED_CHARS = re.compile(r"[LWlw#?]")

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]
DAY_NAMES_SHORT = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]


def _parse_int(text: str, minimum: int, maximum: int, field_name: str) -> int:
    if not text.isdigit():
        raise CronParseError(f'Invalid value "{text}" in {field_name} field')
    value = int(text)
    if value < minimum or value > maximum:
        raise CronParseError(
            f'Invalid value "{text}" in {field_name} field (expected {minimum}-{maximum})'
        )
    return value


def _parse_range(text: str, minimum: int, maximum: int, field_name: str) -> tuple[int, int]:
    parts = text.split("-")
    if len(parts) != 2:
        raise CronParseError(f'Invalid range "{text}" in {field_name} field')
    start = _parse_int(parts[0], minimum, maximum, field_name)
    end = _parse_int(parts[1], minimum, maximum, field_name)
    if start > end:
        raise CronParseError(f'Invalid range "{text}" in {field_name} field')
    return start, end


def _parse_part(part: str, minimum: int, maximum: int, field_name: str) -> list[int]:
    """Expand one comma-separated element of a field."""
    if "/" in part:
        range_part, _, step_text = part.partition("/")
        if not step_text.isdigit() or int(step_text) < 1:
            raise CronParseError(f'Invalid step value "{step_text}" in {field_name} field')
        step = int(step_text)

        if range_part == "*":
            start, end = minimum, maximum
        elif "-" in range_part:
            start, end = _parse_range(range_part, minimum, maximum, field_name)
        else:
            start, end = _parse_int(range_part, minimum, maximum, field_name), maximum

        # a step wider than the range yields only the start value
        return list(range(start, end + 1, step))

    if "-" in part:
        start, end = _parse_range(part, minimum, maximum, field_name)
        return list(range(start, end + 1))

    return [_parse_int(part, minimum, maximum, field_name)]


def _parse_field(field: str, minimum: int, maximum: int, field_name: str) -> list[int] | None:
    """Expand a field into a sorted, de-duplicated list.

    Returns:
        None for the ``*`` wildcard, otherwise the expanded values
    """
    if field == "*":
        return None

    values: set[int] = set()
    for part in field.split(","):
        if not part:
            raise CronParseError(f'Invalid value "{field}" in {field_name} field')
        values.update(_parse_part(part, minimum, maximum, field_name))
    return sorted(values)


def _parse_single(field: str, minimum: int, maximum: int, field_name: str) -> int:
    values = _parse_field(field, minimum, maximum, field_name)
    if values is None:
        raise CronParseError(
            f"Wildcard (*) for {field_name} field produces multiple values "
            "and cannot be represented as a single schedule"
        )
    if len(values) != 1:
        raise CronParseError(
            f'The {field_name} field "{field}" produces multiple values '
            "and cannot be represented as a single schedule"
        )
    return values[0]


def parse_cron_expression(expression: str) -> CronSchedule:
    """Parse a 5-field cron expression into a structured schedule.

    Format: ``minute hour day-of-month month day-of-week``.

    Args:
        expression: Cron string (e.g. '30 8 * * 1-5')

    Returns:
        CronSchedule

    Raises:
        CronParseError: If the expression is outside the supported subset
    """
    trimmed = expression.strip()
    if not trimmed:
        raise CronParseError("Cron expression is required", expression)

    match = _UNSUPPORTED_CHARS.search(trimmed)
    if match:
        raise CronParseError(
            f'Unsupported character "{match.group(0)}" in cron expression', expression
        )

    fields = trimmed.split()
    if len(fields) != 5:
        message = (
            "Expected 5 fields (minute hour day-of-month month day-of-week), "
            f"got {len(fields)}"
        )
        if len(fields) > 5:
            message += (
                ". 6-field (seconds) and 7-field (year) cron expressions are not supported."
            )
        raise CronParseError(message, expression)

    minute_field, hour_field, dom_field, month_field, dow_field = fields

    if month_field != "*":
        raise CronParseError(
            "Month filtering is not supported. Use * for the month field.", expression
        )

    try:
        minute = _parse_single(minute_field, 0, 59, "minute")
        hour = _parse_single(hour_field, 0, 23, "hour")
        days_of_month = _parse_field(dom_field, 1, 31, "day-of-month") or []
        days_of_week = _parse_field(dow_field, 0, 6, "day-of-week") or []
    except CronParseError as e:
        raise CronParseError(e.message, expression) from e

    if days_of_month and days_of_week:
        raise CronParseError(
            "Day-of-month and day-of-week cannot both be set; use * for one of them",
            expression,
        )

    return CronSchedule(
        hour=hour, minute=minute, days_of_week=days_of_week, days_of_month=days_of_month
    )


def validate_cron_expression(expression: str) -> bool:
    """Check whether an expression parses."""
    try:
        parse_cron_expression(expression)
    except CronParseError:
        return False
    return True


def to_cron_expression(schedule: CronSchedule) -> str:
    """Serialize a schedule back to a 5-field cron string.

    Empty day lists become ``*``; the month field is always ``*``.
    """
    dom = ",".join(str(d) for d in schedule.days_of_month) or "*"
    dow = ",".join(str(d) for d in schedule.days_of_week) or "*"
    return f"{schedule.minute} {schedule.hour} {dom} * {dow}"


def ordinal(n: int) -> str:
    """English ordinal for ``n`` (1st, 2nd, 3rd, 11th, 22nd ...)."""
    if 10 <= n % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


def format_time(hour: int, minute: int) -> str:
    return f"{hour:02d}:{minute:02d}"


def cron_expression_description(schedule: CronSchedule) -> str:
    """Human-readable description of a cron schedule.

    Example:
        "Every Monday at 09:00", "Every 1st, 15th of month at 09:00"
    """
    time = format_time(schedule.hour, schedule.minute)

    if schedule.days_of_week:
        if len(schedule.days_of_week) == 1:
            return f"Every {DAY_NAMES[schedule.days_of_week[0]]} at {time}"
        days = ", ".join(DAY_NAMES_SHORT[d] for d in schedule.days_of_week)
        return f"Every {days} at {time}"

    if schedule.days_of_month:
        days = ", ".join(ordinal(d) for d in schedule.days_of_month)
        return f"Every {days} of month at {time}"

    return f"Every day at {time}"
