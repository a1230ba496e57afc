"""Placeholder interpolation for titles of cards created by automations."""

from automation_engine.core.clock import Clock

WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
MONTHS = [
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
]


def interpolate_title(template: str, clock: Clock) -> str:
    """Replace ``{{date}}``, ``{{day}}``, ``{{weekday}}`` and ``{{month}}``.

    ``{{day}}`` is an alias for ``{{date}}`` (YYYY-MM-DD). Unknown
    placeholders are left untouched.

    Example:
        interpolate_title("Standup {{date}}", clock) -> "Standup 2024-03-04"
    """
    today = clock.to_datetime()
    date_str = today.date().isoformat()
    return (
        template.replace("{{date}}", date_str)
        .replace("{{day}}", date_str)
        .replace("{{weekday}}", WEEKDAYS[today.weekday()])
        .replace("{{month}}", MONTHS[today.month - 1])
    )
