"""Unit tests for FilterEvaluator."""

from datetime import UTC, datetime, timedelta

import pytest
from pydantic import TypeAdapter

from automation_engine.core.automation.filter_evaluator import (
    FILTER_PREDICATES,
    FilterContext,
    FilterEvaluator,
    evaluate_filter,
    evaluate_filters,
)
from automation_engine.core.exceptions import UnknownFilterTypeError
from automation_engine.schemas.automation import CardFilter

# Wednesday
NOW = datetime(2024, 3, 6, 10, 0, tzinfo=UTC)

_adapter = TypeAdapter(CardFilter)


def f(**data):
    return _adapter.validate_python(data)


@pytest.fixture
def ctx():
    return FilterContext(now=NOW)


@pytest.fixture
def evaluator():
    return FilterEvaluator()


class TestSectionFilters:
    def test_in_section(self, evaluator, ctx, make_task):
        task = make_task(section_id="section-todo")
        assert evaluator.evaluate(f(type="in_section", section_id="section-todo"), task, ctx)
        assert not evaluator.evaluate(f(type="in_section", section_id="section-done"), task, ctx)

    def test_not_in_section(self, evaluator, ctx, make_task):
        task = make_task(section_id="section-todo")
        assert evaluator.evaluate(f(type="not_in_section", section_id="section-done"), task, ctx)


class TestDueDateFilters:
    """Tests for due-window filters."""

    @pytest.mark.parametrize(
        "filter_type,due_date,expected",
        [
            ("due_today", datetime(2024, 3, 6, 23, 0, tzinfo=UTC), True),
            ("due_today", datetime(2024, 3, 7, 0, 0, tzinfo=UTC), False),
            ("due_tomorrow", datetime(2024, 3, 7, 8, 0, tzinfo=UTC), True),
            ("due_this_week", datetime(2024, 3, 4, tzinfo=UTC), True),
            ("due_this_week", datetime(2024, 3, 10, 23, tzinfo=UTC), True),
            ("due_this_week", datetime(2024, 3, 11, tzinfo=UTC), False),
            ("due_next_week", datetime(2024, 3, 11, tzinfo=UTC), True),
            ("due_next_week", datetime(2024, 3, 17, tzinfo=UTC), True),
            ("due_next_week", datetime(2024, 3, 18, tzinfo=UTC), False),
            ("due_this_month", datetime(2024, 3, 31, tzinfo=UTC), True),
            ("due_this_month", datetime(2023, 3, 15, tzinfo=UTC), False),
            ("due_next_month", datetime(2024, 4, 2, tzinfo=UTC), True),
            ("due_next_month", datetime(2024, 5, 2, tzinfo=UTC), False),
        ],
    )
    def test_due_windows(self, evaluator, ctx, make_task, filter_type, due_date, expected):
        task = make_task(due_date=due_date)
        assert evaluator.evaluate(f(type=filter_type), task, ctx) is expected

    def test_next_month_wraps_year(self, evaluator, make_task):
        ctx = FilterContext(now=datetime(2024, 12, 20, tzinfo=UTC))
        task = make_task(due_date=datetime(2025, 1, 3, tzinfo=UTC))
        assert evaluator.evaluate(f(type="due_next_month"), task, ctx)

    def test_has_and_no_due_date(self, evaluator, ctx, make_task):
        with_due = make_task(due_date=NOW)
        without_due = make_task()
        assert evaluator.evaluate(f(type="has_due_date"), with_due, ctx)
        assert not evaluator.evaluate(f(type="has_due_date"), without_due, ctx)
        assert evaluator.evaluate(f(type="no_due_date"), without_due, ctx)

    def test_is_overdue(self, evaluator, ctx, make_task):
        assert evaluator.evaluate(f(type="is_overdue"), make_task(due_date=NOW - timedelta(minutes=1)), ctx)
        assert not evaluator.evaluate(f(type="is_overdue"), make_task(due_date=NOW + timedelta(minutes=1)), ctx)
        assert not evaluator.evaluate(
            f(type="is_overdue"), make_task(due_date=NOW - timedelta(days=1), completed=True), ctx
        )
        assert not evaluator.evaluate(f(type="is_overdue"), make_task(), ctx)

    def test_window_filters_never_match_without_due_date(self, evaluator, ctx, make_task):
        task = make_task()
        for filter_type in ("due_today", "due_tomorrow", "due_this_week", "due_next_month"):
            assert not evaluator.evaluate(f(type=filter_type), task, ctx)


@pytest.mark.parametrize(
    "positive",
    [
        "due_today",
        "due_tomorrow",
        "due_this_week",
        "due_next_week",
        "due_this_month",
        "due_next_month",
    ],
)
def test_negated_filters_complement_positive(evaluator, ctx, make_task, positive):
    """Test not_* filters are exact complements, and match cards without a due date."""
    negative = f"not_{positive}"
    for offset_days in (-40, -3, 0, 1, 2, 6, 9, 30, 70):
        task = make_task(due_date=NOW + timedelta(days=offset_days))
        assert evaluator.evaluate(f(type=negative), task, ctx) is not evaluator.evaluate(
            f(type=positive), task, ctx
        )
    assert evaluator.evaluate(f(type=negative), make_task(), ctx)


def test_completion_filters_complement(evaluator, ctx, make_task):
    for completed in (True, False):
        task = make_task(completed=completed)
        assert evaluator.evaluate(f(type="is_complete"), task, ctx) is completed
        assert evaluator.evaluate(f(type="is_incomplete"), task, ctx) is not completed


class TestDueComparisonFilters:
    def test_due_in_less_than(self, evaluator, ctx, make_task):
        flt = f(type="due_in_less_than", value=3)
        assert evaluator.evaluate(flt, make_task(due_date=NOW + timedelta(days=3)), ctx)
        assert not evaluator.evaluate(flt, make_task(due_date=NOW + timedelta(days=4)), ctx)
        assert not evaluator.evaluate(flt, make_task(due_date=NOW), ctx)

    def test_due_in_more_than(self, evaluator, ctx, make_task):
        flt = f(type="due_in_more_than", value=3)
        assert evaluator.evaluate(flt, make_task(due_date=NOW + timedelta(days=4)), ctx)
        assert not evaluator.evaluate(flt, make_task(due_date=NOW + timedelta(days=3)), ctx)

    def test_due_in_exactly_working_days(self, evaluator, ctx, make_task):
        # Wednesday + 3 working days = Monday
        flt = f(type="due_in_exactly", value=3, unit="working_days")
        assert evaluator.evaluate(flt, make_task(due_date=datetime(2024, 3, 11, 17, tzinfo=UTC)), ctx)
        assert not evaluator.evaluate(flt, make_task(due_date=datetime(2024, 3, 9, tzinfo=UTC)), ctx)

    def test_due_in_between_inclusive(self, evaluator, ctx, make_task):
        flt = f(type="due_in_between", min_value=1, max_value=5)
        assert evaluator.evaluate(flt, make_task(due_date=NOW + timedelta(days=1)), ctx)
        assert evaluator.evaluate(flt, make_task(due_date=NOW + timedelta(days=5)), ctx)
        assert not evaluator.evaluate(flt, make_task(due_date=NOW + timedelta(days=6)), ctx)
        assert not evaluator.evaluate(flt, make_task(), ctx)

    def test_due_in_between_rejects_inverted_range(self):
        with pytest.raises(ValueError):
            f(type="due_in_between", min_value=5, max_value=1)


class TestAgeFilters:
    """Tests for elapsed-time filters."""

    def test_created_more_than_is_strict(self, evaluator, ctx, make_task):
        flt = f(type="created_more_than", value=2)
        assert not evaluator.evaluate(flt, make_task(created_at=NOW - timedelta(days=2)), ctx)
        assert evaluator.evaluate(
            flt, make_task(created_at=NOW - timedelta(days=2, milliseconds=1)), ctx
        )

    def test_completed_more_than(self, evaluator, ctx, make_task):
        flt = f(type="completed_more_than", value=1)
        assert not evaluator.evaluate(flt, make_task(), ctx)
        assert evaluator.evaluate(
            flt, make_task(completed=True, completed_at=NOW - timedelta(days=3)), ctx
        )
        assert evaluator.evaluate(flt, make_task(completed=True, completed_at=None), ctx)

    def test_not_modified_in_uses_updated_at(self, evaluator, ctx, make_task):
        task = make_task(created_at=NOW, updated_at=NOW - timedelta(days=8))
        assert evaluator.evaluate(f(type="not_modified_in", value=7), task, ctx)
        assert evaluator.evaluate(f(type="last_updated_more_than", value=7), task, ctx)

    def test_overdue_by_more_than(self, evaluator, ctx, make_task):
        flt = f(type="overdue_by_more_than", value=1)
        assert evaluator.evaluate(flt, make_task(due_date=NOW - timedelta(days=2)), ctx)
        assert not evaluator.evaluate(flt, make_task(due_date=NOW - timedelta(hours=2)), ctx)
        assert not evaluator.evaluate(
            flt, make_task(due_date=NOW - timedelta(days=2), completed=True), ctx
        )

    def test_in_section_for_more_than_falls_back_to_created_at(self, evaluator, ctx, make_task):
        flt = f(type="in_section_for_more_than", value=3)
        assert evaluator.evaluate(flt, make_task(created_at=NOW - timedelta(days=4)), ctx)
        assert not evaluator.evaluate(
            flt,
            make_task(
                created_at=NOW - timedelta(days=4),
                moved_to_section_at=NOW - timedelta(days=1),
            ),
            ctx,
        )

    def test_working_days_unit_uses_calendar_threshold(self, evaluator, ctx, make_task):
        task = make_task(created_at=NOW - timedelta(days=3, hours=1))
        assert evaluator.evaluate(f(type="created_more_than", value=3, unit="working_days"), task, ctx)

    @pytest.mark.parametrize(
        "filter_type,field",
        [
            ("created_more_than", "created_at"),
            ("last_updated_more_than", "updated_at"),
            ("not_modified_in", "updated_at"),
            ("overdue_by_more_than", "due_date"),
        ],
    )
    def test_age_filters_stay_matched_as_time_passes(self, evaluator, make_task, filter_type, field):
        task = make_task(**{field: NOW - timedelta(days=5)})
        flt = f(type=filter_type, value=5)
        matched = False
        for hours in range(0, 24 * 4, 6):
            result = evaluator.evaluate(flt, task, FilterContext(now=NOW + timedelta(hours=hours)))
            if matched:
                assert result
            matched = matched or result
        assert matched


def test_empty_filter_list_matches(ctx, make_task):
    assert evaluate_filters([], make_task(), ctx)


def test_module_level_evaluate_filter(ctx, make_task):
    task = make_task(section_id="section-doing")
    assert evaluate_filter(f(type="in_section", section_id="section-doing"), task, ctx)
    assert not evaluate_filter(f(type="not_in_section", section_id="section-doing"), task, ctx)


def test_filters_are_anded(evaluator, ctx, make_task):
    task = make_task(section_id="section-todo", due_date=NOW + timedelta(hours=2))
    filters = [f(type="in_section", section_id="section-todo"), f(type="due_today")]
    assert evaluator.evaluate_all(filters, task, ctx)
    filters.append(f(type="is_complete"))
    assert not evaluator.evaluate_all(filters, task, ctx)


def test_unknown_filter_type_raises(ctx, make_task):
    predicates = dict(FILTER_PREDICATES)
    del predicates["due_today"]
    evaluator = FilterEvaluator(predicates)
    with pytest.raises(UnknownFilterTypeError):
        evaluator.evaluate(f(type="due_today"), make_task(due_date=NOW), ctx)
