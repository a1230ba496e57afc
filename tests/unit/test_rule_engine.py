"""Unit tests for RuleEngine event matching."""

from datetime import timedelta

import pytest

from automation_engine.core.automation.rule_engine import (
    EvaluationContext,
    RuleEngine,
    build_rule_index,
)
from automation_engine.schemas.automation import DomainEvent


@pytest.fixture
def engine():
    return RuleEngine()


@pytest.fixture
def context(make_task, sections, now):
    return EvaluationContext(
        all_tasks=[
            make_task("task-1", section_id="section-done", due_date=now + timedelta(hours=1)),
            make_task("task-2", section_id="section-todo"),
            make_task("sub-1", parent_task_id="task-1"),
        ],
        all_sections=sections,
        now=now,
    )


def moved(task_id="task-1", to="section-done", frm="section-todo"):
    return DomainEvent(
        type="task.updated",
        entity_id=task_id,
        project_id="project-1",
        changes={"section_id": to},
        previous_values={"section_id": frm},
    )


def test_build_rule_index_skips_disabled_and_broken(make_rule):
    rules = [
        make_rule("a"),
        make_rule("b", enabled=False),
        make_rule("c", broken_reason="section_deleted"),
        make_rule("d"),
    ]
    index = build_rule_index(rules)
    assert [r.id for r in index["card_moved_into_section"]] == ["a", "d"]


class TestTaskUpdated:
    def test_moved_into_section(self, engine, context, make_rule):
        rule = make_rule()
        [action] = engine.evaluate(moved(), [rule], context)
        assert action.rule_id == rule.id
        assert action.target_entity_id == "task-1"
        assert action.action_type == "mark_card_complete"

    def test_moved_into_other_section_does_not_match(self, engine, context, make_rule):
        assert engine.evaluate(moved(to="section-doing"), [make_rule()], context) == []

    def test_moved_out_of_section(self, engine, context, make_rule):
        rule = make_rule(trigger={"type": "card_moved_out_of_section", "section_id": "section-todo"})
        assert len(engine.evaluate(moved(), [rule], context)) == 1

    def test_trigger_without_section_matches_any(self, engine, context, make_rule):
        rule = make_rule(trigger={"type": "card_moved_into_section"})
        assert len(engine.evaluate(moved(to="section-doing"), [rule], context)) == 1

    def test_reorder_in_same_section_is_not_a_move(self, engine, context, make_rule):
        event = moved(to="section-done", frm="section-done")
        assert engine.evaluate(event, [make_rule()], context) == []

    def test_marked_complete_and_incomplete(self, engine, context, make_rule):
        complete = make_rule("c", trigger={"type": "card_marked_complete"})
        incomplete = make_rule("i", trigger={"type": "card_marked_incomplete"})
        event = DomainEvent(
            type="task.updated",
            entity_id="task-1",
            changes={"completed": True},
            previous_values={"completed": False},
        )
        assert [a.rule_id for a in engine.evaluate(event, [complete, incomplete], context)] == ["c"]

    def test_filters_apply_to_the_card(self, engine, context, make_rule):
        rule = make_rule(filters=[{"type": "due_today"}])
        assert len(engine.evaluate(moved(), [rule], context)) == 1
        rule = make_rule(filters=[{"type": "no_due_date"}])
        assert engine.evaluate(moved(), [rule], context) == []

    def test_disabled_rule_ignored(self, engine, context, make_rule):
        assert engine.evaluate(moved(), [make_rule(enabled=False)], context) == []


def test_card_created_in_section(engine, context, make_rule):
    rule = make_rule(trigger={"type": "card_created_in_section", "section_id": "section-todo"})
    event = DomainEvent(
        type="task.created", entity_id="task-2", changes={"section_id": "section-todo"}
    )
    assert len(engine.evaluate(event, [rule], context)) == 1


def test_section_created_and_renamed(engine, context, make_rule):
    created = make_rule(
        "created",
        trigger={"type": "section_created"},
        action={"type": "create_card", "section_id": "__trigger_section__", "card_title": "Intro"},
    )
    renamed = make_rule("renamed", trigger={"type": "section_renamed"})

    event = DomainEvent(type="section.created", entity_id="section-new")
    [action] = engine.evaluate(event, [created, renamed], context)
    assert action.rule_id == "created"
    assert action.target_entity_id == "section-new"

    rename = DomainEvent(
        type="section.updated",
        entity_id="section-todo",
        changes={"name": "Backlog"},
        previous_values={"name": "To Do"},
    )
    assert [a.rule_id for a in engine.evaluate(rename, [created, renamed], context)] == ["renamed"]


class TestScheduleFired:
    @pytest.fixture
    def scheduled_rule(self, make_rule):
        return make_rule(
            "sched",
            trigger={"type": "scheduled_interval", "schedule": {"interval_minutes": 60}},
            filters=[{"type": "in_section", "section_id": "section-todo"}],
        )

    def fired(self, rule_id="sched", **changes):
        return DomainEvent(
            type="schedule.fired", entity_id=rule_id, triggered_by_rule=rule_id, changes=changes
        )

    def test_applies_filters_across_top_level_cards(self, engine, context, scheduled_rule):
        actions = engine.evaluate(self.fired(), [scheduled_rule], context)
        assert [a.target_entity_id for a in actions] == ["task-2"]

    def test_uses_matching_task_ids(self, engine, context, make_rule):
        rule = make_rule(
            "sched",
            trigger={"type": "scheduled_due_date_relative", "schedule": {"offset_minutes": 0}},
        )
        actions = engine.evaluate(self.fired(matching_task_ids=["task-1"]), [rule], context)
        assert [a.target_entity_id for a in actions] == ["task-1"]

    def test_create_card_yields_single_action(self, engine, context, make_rule):
        rule = make_rule(
            "sched",
            trigger={"type": "scheduled_cron", "schedule": {"hour": 9, "minute": 0}},
            action={"type": "create_card", "section_id": "section-todo", "card_title": "Standup"},
        )
        [action] = engine.evaluate(self.fired(), [rule], context)
        assert action.target_entity_id == "section-todo"

    def test_unknown_rule(self, engine, context, scheduled_rule):
        assert engine.evaluate(self.fired("other"), [scheduled_rule], context) == []
