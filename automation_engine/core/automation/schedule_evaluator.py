"""Decides whether scheduled rules are due.

Everything here is pure: evaluations never touch a store. Callers persist
``new_last_evaluated_at`` themselves.
"""

import calendar
from collections.abc import Iterable
from datetime import UTC, datetime, time, timedelta

from pydantic import BaseModel, Field

from automation_engine.core.clock import from_ms, to_ms
from automation_engine.schemas.automation import (
    AutomationRule,
    CronSchedule,
    is_scheduled_trigger,
)
from automation_engine.schemas.task import Task

CRON_LOOKBACK_DAYS = 7
DUE_DATE_FIRST_LOOKBACK_MS = 60_000


class ScheduleEvaluation(BaseModel):
    """Outcome of evaluating one scheduled rule."""

    should_fire: bool
    new_last_evaluated_at: datetime = Field(
        ..., description="Value to write back as the trigger's last_evaluated_at"
    )
    matching_task_ids: list[str] | None = Field(
        None, description="Cards whose due date triggered a due-date-relative rule"
    )


def evaluate_interval_schedule(
    now_ms: int, last_evaluated_at: datetime | None, interval_minutes: int
) -> ScheduleEvaluation:
    """Fire when a full interval has elapsed, or immediately on first evaluation."""
    now = from_ms(now_ms)

    if last_evaluated_at is None:
        return ScheduleEvaluation(should_fire=True, new_last_evaluated_at=now)

    if now_ms - to_ms(last_evaluated_at) >= interval_minutes * 60_000:
        return ScheduleEvaluation(should_fire=True, new_last_evaluated_at=now)

    return ScheduleEvaluation(should_fire=False, new_last_evaluated_at=last_evaluated_at)


def _cron_day_of_week(value: datetime) -> int:
    # cron counts from Sunday=0, Python from Monday=0
    return (value.weekday() + 1) % 7


def find_most_recent_cron_match(now: datetime, schedule: CronSchedule) -> datetime | None:
    """Walk back from ``now`` to the latest instant matching the schedule.

    Searches up to 7 days back. Day-of-month values past the end of a month
    are clamped to its last day, so ``31`` also matches April 30th. A wall time
    skipped by a DST jump is read with the offset in force before the jump.
    """
    now_ms = to_ms(now)
    for day_offset in range(CRON_LOOKBACK_DAYS + 1):
        day = now.date() - timedelta(days=day_offset)
        wall_time = datetime.combine(day, time(schedule.hour, schedule.minute), tzinfo=now.tzinfo)
        # round-trip through UTC so nonexistent local times become real instants
        candidate = wall_time.astimezone(UTC).astimezone(now.tzinfo)

        if to_ms(candidate) > now_ms:
            continue

        if schedule.days_of_week and _cron_day_of_week(candidate) not in schedule.days_of_week:
            continue

        if schedule.days_of_month:
            last_day = calendar.monthrange(day.year, day.month)[1]
            if day.day not in {min(d, last_day) for d in schedule.days_of_month}:
                continue

        return candidate

    return None


def evaluate_cron_schedule(
    now_ms: int, last_evaluated_at: datetime | None, schedule: CronSchedule
) -> ScheduleEvaluation:
    """Fire once for the most recent missed cron window.

    On first evaluation the rule only fires while inside the matching minute.
    """
    now = from_ms(now_ms)
    most_recent = find_most_recent_cron_match(now, schedule)

    if most_recent is None:
        return ScheduleEvaluation(
            should_fire=False, new_last_evaluated_at=last_evaluated_at or now
        )

    if last_evaluated_at is None:
        in_window = now_ms - to_ms(most_recent) < 60_000
        return ScheduleEvaluation(should_fire=in_window, new_last_evaluated_at=now)

    if to_ms(most_recent) > to_ms(last_evaluated_at):
        return ScheduleEvaluation(should_fire=True, new_last_evaluated_at=now)

    return ScheduleEvaluation(should_fire=False, new_last_evaluated_at=last_evaluated_at)


def evaluate_due_date_relative_schedule(
    now_ms: int,
    last_evaluated_at: datetime | None,
    offset_minutes: int,
    tasks: Iterable[Task],
) -> ScheduleEvaluation:
    """Find cards whose ``due_date + offset`` falls in ``(last_evaluated_at, now]``.

    Completed cards and subtasks are ignored. Without a previous evaluation
    the window looks back one minute.
    """
    window_start = (
        to_ms(last_evaluated_at)
        if last_evaluated_at is not None
        else now_ms - DUE_DATE_FIRST_LOOKBACK_MS
    )
    offset_ms = offset_minutes * 60_000

    matching_task_ids = []
    for task in tasks:
        if task.due_date is None or task.completed or task.parent_task_id is not None:
            continue
        trigger_ms = to_ms(task.due_date) + offset_ms
        if window_start < trigger_ms <= now_ms:
            matching_task_ids.append(task.id)

    return ScheduleEvaluation(
        should_fire=bool(matching_task_ids),
        new_last_evaluated_at=from_ms(now_ms),
        matching_task_ids=matching_task_ids,
    )


def evaluate_one_time_schedule(
    now_ms: int, last_evaluated_at: datetime | None, fire_at: datetime
) -> ScheduleEvaluation:
    """Fire once when ``now >= fire_at`` unless already evaluated past ``fire_at``."""
    now = from_ms(now_ms)
    fire_at_ms = to_ms(fire_at)

    if now_ms < fire_at_ms:
        return ScheduleEvaluation(
            should_fire=False, new_last_evaluated_at=last_evaluated_at or now
        )

    if last_evaluated_at is not None and to_ms(last_evaluated_at) >= fire_at_ms:
        return ScheduleEvaluation(should_fire=False, new_last_evaluated_at=last_evaluated_at)

    return ScheduleEvaluation(should_fire=True, new_last_evaluated_at=now)


def evaluate_rule_schedule(
    now_ms: int, rule: AutomationRule, tasks: Iterable[Task]
) -> ScheduleEvaluation | None:
    """Evaluate one rule's trigger.

    Returns:
        ScheduleEvaluation, or None if the rule is not scheduled
    """
    trigger = rule.trigger
    last = getattr(trigger, "last_evaluated_at", None)

    if trigger.type == "scheduled_interval":
        return evaluate_interval_schedule(now_ms, last, trigger.schedule.interval_minutes)
    if trigger.type == "scheduled_cron":
        return evaluate_cron_schedule(now_ms, last, trigger.schedule)
    if trigger.type == "scheduled_due_date_relative":
        project_tasks = [t for t in tasks if t.project_id == rule.project_id]
        return evaluate_due_date_relative_schedule(
            now_ms, last, trigger.schedule.offset_minutes, project_tasks
        )
    if trigger.type == "scheduled_one_time":
        return evaluate_one_time_schedule(now_ms, last, trigger.schedule.fire_at)
    return None


def evaluate_scheduled_rules(
    now_ms: int, rules: Iterable[AutomationRule], tasks: Iterable[Task]
) -> list[tuple[AutomationRule, ScheduleEvaluation]]:
    """Evaluate every enabled, non-broken scheduled rule.

    Args:
        now_ms: Current instant in epoch ms
        rules: All rules
        tasks: All cards

    Returns:
        (rule, evaluation) pairs for the rules that should fire, in input order
    """
    tasks = list(tasks)
    results = []

    for rule in rules:
        if not rule.enabled or rule.broken_reason is not None:
            continue
        if not is_scheduled_trigger(rule.trigger):
            continue

        evaluation = evaluate_rule_schedule(now_ms, rule, tasks)
        if evaluation is not None and evaluation.should_fire:
            results.append((rule, evaluation))

    return results
