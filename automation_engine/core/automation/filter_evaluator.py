"""Card filter evaluator for automation rules."""

import logging
from collections.abc import Callable
from datetime import date, datetime, timedelta

from pydantic import BaseModel

from automation_engine.core.automation.date_calculations import calculate_working_days
from automation_engine.core.clock import to_ms
from automation_engine.core.exceptions import UnknownFilterTypeError
from automation_engine.schemas.automation import CardFilter
from automation_engine.schemas.task import Task

logger = logging.getLogger(__name__)

DAY_MS = 86_400_000


class FilterContext(BaseModel):
    """Reference instant filters are evaluated against."""

    now: datetime


FilterPredicate = Callable[[Task, CardFilter, FilterContext], bool]


def _local_day(value: datetime, ctx: FilterContext) -> date:
    """Calendar day of ``value`` in the timezone of ``ctx.now``."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=ctx.now.tzinfo)
    return value.astimezone(ctx.now.tzinfo).date()


def _monday_of(day: date) -> date:
    return day - timedelta(days=day.weekday())


def _month_after(day: date) -> tuple[int, int]:
    if day.month == 12:
        return day.year + 1, 1
    return day.year, day.month + 1


def _target_day(value: int, unit: str, ctx: FilterContext) -> date:
    if unit == "working_days":
        return calculate_working_days(value, ctx.now).date()
    return ctx.now.date() + timedelta(days=value)


def _elapsed_ms(since: datetime, ctx: FilterContext) -> int:
    return to_ms(ctx.now) - to_ms(since)


def _threshold_ms(value: int) -> int:
    # days and working_days share the same calendar-day threshold
    return value * DAY_MS


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------


def _in_section(task: Task, f: CardFilter, ctx: FilterContext) -> bool:
    return task.section_id == f.section_id


def _not_in_section(task: Task, f: CardFilter, ctx: FilterContext) -> bool:
    return task.section_id != f.section_id


def _has_due_date(task: Task, f: CardFilter, ctx: FilterContext) -> bool:
    return task.due_date is not None


def _no_due_date(task: Task, f: CardFilter, ctx: FilterContext) -> bool:
    return task.due_date is None


def _is_overdue(task: Task, f: CardFilter, ctx: FilterContext) -> bool:
    if task.due_date is None or task.completed:
        return False
    return to_ms(task.due_date) < to_ms(ctx.now)


def _due_today(task: Task, f: CardFilter, ctx: FilterContext) -> bool:
    if task.due_date is None:
        return False
    return _local_day(task.due_date, ctx) == ctx.now.date()


def _due_tomorrow(task: Task, f: CardFilter, ctx: FilterContext) -> bool:
    if task.due_date is None:
        return False
    return _local_day(task.due_date, ctx) == ctx.now.date() + timedelta(days=1)


def _due_this_week(task: Task, f: CardFilter, ctx: FilterContext) -> bool:
    if task.due_date is None:
        return False
    return _monday_of(_local_day(task.due_date, ctx)) == _monday_of(ctx.now.date())


def _due_next_week(task: Task, f: CardFilter, ctx: FilterContext) -> bool:
    if task.due_date is None:
        return False
    next_monday = _monday_of(ctx.now.date()) + timedelta(days=7)
    due_day = _local_day(task.due_date, ctx)
    return next_monday <= due_day <= next_monday + timedelta(days=6)


def _due_this_month(task: Task, f: CardFilter, ctx: FilterContext) -> bool:
    if task.due_date is None:
        return False
    due_day = _local_day(task.due_date, ctx)
    return (due_day.year, due_day.month) == (ctx.now.year, ctx.now.month)


def _due_next_month(task: Task, f: CardFilter, ctx: FilterContext) -> bool:
    if task.due_date is None:
        return False
    due_day = _local_day(task.due_date, ctx)
    return (due_day.year, due_day.month) == _month_after(ctx.now.date())


def _negate(positive: FilterPredicate) -> FilterPredicate:
    """Negation of a due-window predicate that also matches cards without a due date."""

    def predicate(task: Task, f: CardFilter, ctx: FilterContext) -> bool:
        if task.due_date is None:
            return True
        return not positive(task, f, ctx)

    return predicate


def _due_in_less_than(task: Task, f: CardFilter, ctx: FilterContext) -> bool:
    if task.due_date is None:
        return False
    due_day = _local_day(task.due_date, ctx)
    return ctx.now.date() < due_day <= _target_day(f.value, f.unit, ctx)


def _due_in_more_than(task: Task, f: CardFilter, ctx: FilterContext) -> bool:
    if task.due_date is None:
        return False
    return _local_day(task.due_date, ctx) > _target_day(f.value, f.unit, ctx)


def _due_in_exactly(task: Task, f: CardFilter, ctx: FilterContext) -> bool:
    if task.due_date is None:
        return False
    return _local_day(task.due_date, ctx) == _target_day(f.value, f.unit, ctx)


def _due_in_between(task: Task, f: CardFilter, ctx: FilterContext) -> bool:
    if task.due_date is None:
        return False
    due_day = _local_day(task.due_date, ctx)
    return _target_day(f.min_value, f.unit, ctx) <= due_day <= _target_day(f.max_value, f.unit, ctx)


def _is_complete(task: Task, f: CardFilter, ctx: FilterContext) -> bool:
    return task.completed


def _is_incomplete(task: Task, f: CardFilter, ctx: FilterContext) -> bool:
    return not task.completed


def _created_more_than(task: Task, f: CardFilter, ctx: FilterContext) -> bool:
    return _elapsed_ms(task.created_at, ctx) > _threshold_ms(f.value)


def _completed_more_than(task: Task, f: CardFilter, ctx: FilterContext) -> bool:
    if not task.completed:
        return False
    if task.completed_at is None:
        # legacy cards completed before completed_at was tracked
        return True
    return _elapsed_ms(task.completed_at, ctx) > _threshold_ms(f.value)


def _last_updated_more_than(task: Task, f: CardFilter, ctx: FilterContext) -> bool:
    return _elapsed_ms(task.updated_at, ctx) > _threshold_ms(f.value)


def _overdue_by_more_than(task: Task, f: CardFilter, ctx: FilterContext) -> bool:
    if task.due_date is None or task.completed:
        return False
    return _elapsed_ms(task.due_date, ctx) > _threshold_ms(f.value)


def _in_section_for_more_than(task: Task, f: CardFilter, ctx: FilterContext) -> bool:
    entered_at = task.moved_to_section_at or task.created_at
    return _elapsed_ms(entered_at, ctx) > _threshold_ms(f.value)


FILTER_PREDICATES: dict[str, FilterPredicate] = {
    "in_section": _in_section,
    "not_in_section": _not_in_section,
    "has_due_date": _has_due_date,
    "no_due_date": _no_due_date,
    "is_overdue": _is_overdue,
    "due_today": _due_today,
    "due_tomorrow": _due_tomorrow,
    "due_this_week": _due_this_week,
    "due_next_week": _due_next_week,
    "due_this_month": _due_this_month,
    "due_next_month": _due_next_month,
    "not_due_today": _negate(_due_today),
    "not_due_tomorrow": _negate(_due_tomorrow),
    "not_due_this_week": _negate(_due_this_week),
    "not_due_next_week": _negate(_due_next_week),
    "not_due_this_month": _negate(_due_this_month),
    "not_due_next_month": _negate(_due_next_month),
    "due_in_less_than": _due_in_less_than,
    "due_in_more_than": _due_in_more_than,
    "due_in_exactly": _due_in_exactly,
    "due_in_between": _due_in_between,
    "is_complete": _is_complete,
    "is_incomplete": _is_incomplete,
    "created_more_than": _created_more_than,
    "completed_more_than": _completed_more_than,
    "last_updated_more_than": _last_updated_more_than,
    "not_modified_in": _last_updated_more_than,
    "overdue_by_more_than": _overdue_by_more_than,
    "in_section_for_more_than": _in_section_for_more_than,
}


class FilterEvaluator:
    """Evaluator for card filters."""

    def __init__(self, predicates: dict[str, FilterPredicate] | None = None):
        """Initialize evaluator.

        Args:
            predicates: Predicate registry keyed by filter type (defaults to the built-in set)
        """
        self.predicates = predicates or FILTER_PREDICATES

    def evaluate(self, card_filter: CardFilter, task: Task, ctx: FilterContext) -> bool:
        """Evaluate a single filter against a card.

        Raises:
            UnknownFilterTypeError: If no predicate handles the filter type
        """
        predicate = self.predicates.get(card_filter.type)
        if predicate is None:
            logger.error(f"No predicate registered for filter type {card_filter.type}")
            raise UnknownFilterTypeError(card_filter.type)
        return predicate(task, card_filter, ctx)

    def evaluate_all(self, filters: list[CardFilter], task: Task, ctx: FilterContext) -> bool:
        """Evaluate filters with AND semantics.

        Args:
            filters: Filters to apply (an empty list matches every card)
            task: Card to evaluate
            ctx: Evaluation context

        Returns:
            True if the card passes every filter, False otherwise
        """
        if not filters:
            return True

        for card_filter in filters:
            if not self.evaluate(card_filter, task, ctx):
                return False

        return True


_default_evaluator = FilterEvaluator()


def evaluate_filter(card_filter: CardFilter, task: Task, ctx: FilterContext) -> bool:
    return _default_evaluator.evaluate(card_filter, task, ctx)


def evaluate_filters(filters: list[CardFilter], task: Task, ctx: FilterContext) -> bool:
    return _default_evaluator.evaluate_all(filters, task, ctx)
