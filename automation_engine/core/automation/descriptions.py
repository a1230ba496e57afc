"""Short human-readable descriptions of triggers and schedules.

Used for execution-log entries and rule cards.
"""

from datetime import datetime

from automation_engine.core.automation.cron_parser import DAY_NAMES_SHORT, format_time, ordinal
from automation_engine.core.clock import from_ms, to_ms

MONTH_ABBREVS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


def _plural(value: int, unit: str) -> str:
    return f"{value} {unit}" if value == 1 else f"{value} {unit}s"


def format_short_date(value: datetime) -> str:
    """Format as 'Mar 4, 2024'."""
    return f"{MONTH_ABBREVS[value.month - 1]} {value.day}, {value.year}"


def format_fire_at(value: datetime) -> str:
    """Format as 'Mar 4, 2024 at 09:30'."""
    return f"{format_short_date(value)} at {format_time(value.hour, value.minute)}"


def format_duration(ms: int) -> str:
    minutes = round(ms / 60_000)
    if minutes < 60:
        return f"{minutes} min"
    hours = round(minutes / 60)
    if hours < 24:
        return f"{hours}h"
    return f"{round(hours / 24)}d"


def describe_schedule(trigger) -> str:
    """Describe a scheduled trigger's schedule.

    Example:
        "2 hours", "Mon, Wed at 09:00", "1 day before due date"
    """
    schedule = getattr(trigger, "schedule", None)
    if schedule is None:
        return "Unknown"

    if trigger.type == "scheduled_interval":
        minutes = schedule.interval_minutes
        if minutes >= 1440 and minutes % 1440 == 0:
            return _plural(minutes // 1440, "day")
        if minutes >= 60 and minutes % 60 == 0:
            return _plural(minutes // 60, "hour")
        return _plural(minutes, "minute")

    if trigger.type == "scheduled_cron":
        time = format_time(schedule.hour, schedule.minute)
        if schedule.days_of_week:
            days = ", ".join(DAY_NAMES_SHORT[d] for d in schedule.days_of_week)
            return f"{days} at {time}"
        if schedule.days_of_month:
            days = ", ".join(ordinal(d) for d in schedule.days_of_month)
            return f"{days} of month at {time}"
        return f"day at {time}"

    if trigger.type == "scheduled_due_date_relative":
        offset = schedule.offset_minutes
        magnitude = abs(offset)
        direction = "before" if offset < 0 else "after"
        unit = schedule.display_unit
        if unit == "days" or (unit is None and magnitude >= 1440):
            text = _plural(round(magnitude / 1440), "day")
        elif unit == "hours" or (unit is None and magnitude >= 60):
            text = _plural(round(magnitude / 60), "hour")
        else:
            text = _plural(magnitude, "minute")
        return f"{text} {direction} due date"

    if trigger.type == "scheduled_one_time":
        return f"On {format_fire_at(schedule.fire_at)}"

    return "Unknown"


def describe_trigger(trigger, section_name: str | None = None) -> str:
    """Describe what triggers a rule.

    Args:
        trigger: Rule trigger
        section_name: Name of the section the trigger watches, if any

    Returns:
        Description such as "Card moved into 'Done'" or "Every 2 hours"
    """
    section_labels = {
        "card_moved_into_section": "Card moved into",
        "card_moved_out_of_section": "Card moved out of",
        "card_created_in_section": "Card created in",
    }
    if trigger.type in section_labels:
        label = section_labels[trigger.type]
        return f"{label} '{section_name}'" if section_name else f"{label} section"

    fixed = {
        "card_marked_complete": "Card marked complete",
        "card_marked_incomplete": "Card marked incomplete",
        "section_created": "Section created",
        "section_renamed": "Section renamed",
    }
    if trigger.type in fixed:
        return fixed[trigger.type]

    if trigger.type == "scheduled_one_time":
        return describe_schedule(trigger)
    if trigger.type.startswith("scheduled_"):
        return f"Every {describe_schedule(trigger)}"

    return "Unknown trigger"


def compute_next_run_description(trigger, now_ms: int, enabled: bool = True) -> str:
    """Describe when a scheduled trigger fires next.

    Example:
        "in 45 min", "Fires today at 14:00", "Fired on Mar 4, 2024"
    """
    schedule = getattr(trigger, "schedule", None)
    if schedule is None:
        return "Unknown"

    if trigger.type == "scheduled_interval":
        if trigger.last_evaluated_at is None:
            return "On next tick"
        next_ms = to_ms(trigger.last_evaluated_at) + schedule.interval_minutes * 60_000
        if next_ms - now_ms <= 0:
            return "On next tick"
        return f"in {format_duration(next_ms - now_ms)}"

    if trigger.type == "scheduled_cron":
        return f"Next: {describe_schedule(trigger)}"

    if trigger.type == "scheduled_due_date_relative":
        return "Checks on next tick"

    if trigger.type == "scheduled_one_time":
        now = from_ms(now_ms)
        fire_at = schedule.fire_at.astimezone(now.tzinfo)
        date_str = format_short_date(fire_at)
        if not enabled:
            return f"Fired on {date_str}"
        if fire_at.date() == now.date():
            return f"Fires today at {format_time(fire_at.hour, fire_at.minute)}"
        days = round((to_ms(fire_at) - now_ms) / 86_400_000)
        return f"Fires on {date_str} (in {_plural(days, 'day')})"

    return "Unknown"
