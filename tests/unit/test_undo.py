"""Unit tests for UndoManager."""

from datetime import timedelta

import pytest

from automation_engine.core.automation.action_executor import ActionExecutor
from automation_engine.core.automation.undo import UndoManager
from automation_engine.schemas.automation import (
    ActionParams,
    DomainEvent,
    PreviousState,
    RuleAction,
    UndoSnapshot,
)


@pytest.fixture
def undo_manager(task_repo, clock):
    return UndoManager(task_repo, clock, expiry_ms=10_000)


@pytest.fixture
def executor(task_repo, section_repo, rule_repo, clock):
    return ActionExecutor(task_repo, section_repo, rule_repo, clock)


def run(executor, undo_manager, action_type, target="task-1", rule_id="rule-1", **params):
    """Execute one action and push its snapshot, like the engine does."""
    rule_action = RuleAction(
        rule_id=rule_id,
        action_type=action_type,
        target_entity_id=target,
        params=ActionParams(**params),
    )
    trigger = DomainEvent(type="section.created", entity_id=target, project_id="project-1")
    [event] = executor.execute_actions([rule_action], trigger)
    undo_manager.push(undo_manager.build_snapshot(rule_action, f"Rule {rule_id}", event))
    return event


def snapshot(rule_id="rule-1", timestamp=0, **kwargs):
    return UndoSnapshot(
        rule_id=rule_id,
        rule_name="Rule",
        action_type="remove_due_date",
        target_entity_id="task-1",
        timestamp=timestamp,
        **kwargs,
    )


class TestExpiry:
    def test_snapshot_available_until_expiry(self, undo_manager, clock):
        undo_manager.push(snapshot(timestamp=clock.now()))
        clock.advance(10_000)
        assert undo_manager.get_undo_snapshot() is not None
        clock.advance(1)
        assert undo_manager.get_undo_snapshot() is None

    def test_newest_snapshot_returned(self, undo_manager, clock):
        undo_manager.push(snapshot("rule-1", clock.now()))
        undo_manager.push(snapshot("rule-2", clock.now()))
        assert undo_manager.get_undo_snapshot().rule_id == "rule-2"
        assert [s.rule_id for s in undo_manager.get_undo_snapshots()] == ["rule-1", "rule-2"]

    def test_nothing_to_undo(self, undo_manager):
        assert undo_manager.get_undo_snapshot() is None
        assert undo_manager.perform_undo() is False


def test_undo_move_restores_section_and_order(executor, undo_manager, task_repo, make_task):
    task_repo.create(make_task("task-1", section_id="section-todo", order=3))
    run(executor, undo_manager, "move_card_to_bottom_of_section", section_id="section-done")
    assert task_repo.find_by_id("task-1").section_id == "section-done"

    assert undo_manager.perform_undo() is True

    task = task_repo.find_by_id("task-1")
    assert task.section_id == "section-todo"
    assert task.order == 3


def test_undo_completion_restores_subtasks(executor, undo_manager, task_repo, make_task, now):
    task_repo.create(make_task("task-1"))
    task_repo.create(make_task("sub-1", parent_task_id="task-1"))
    task_repo.create(
        make_task(
            "sub-2", parent_task_id="task-1", completed=True, completed_at=now - timedelta(days=1)
        )
    )

    run(executor, undo_manager, "mark_card_complete")
    assert task_repo.find_by_id("sub-1").completed

    undo_manager.perform_undo()

    assert not task_repo.find_by_id("task-1").completed
    assert task_repo.find_by_id("task-1").completed_at is None
    assert not task_repo.find_by_id("sub-1").completed
    sub_2 = task_repo.find_by_id("sub-2")
    assert sub_2.completed
    assert sub_2.completed_at == now - timedelta(days=1)


def test_undo_restores_cleared_due_date(executor, undo_manager, task_repo, make_task, now):
    task_repo.create(make_task("task-1", due_date=now))
    run(executor, undo_manager, "remove_due_date")
    undo_manager.perform_undo()
    assert task_repo.find_by_id("task-1").due_date == now


def test_undo_set_due_date_restores_none(executor, undo_manager, task_repo, make_task):
    task_repo.create(make_task("task-1"))
    run(executor, undo_manager, "set_due_date", date_option="tomorrow")
    undo_manager.perform_undo()
    assert task_repo.find_by_id("task-1").due_date is None


def test_undo_create_card_deletes_it(executor, undo_manager, task_repo):
    event = run(
        executor,
        undo_manager,
        "create_card",
        target="section-doing",
        section_id="section-doing",
        card_title="Follow up",
    )
    snap = undo_manager.get_undo_snapshot()
    assert snap.created_entity_id == event.entity_id
    assert snap.target_entity_id == event.entity_id

    undo_manager.perform_undo()
    assert task_repo.find_by_id(event.entity_id) is None


def test_perform_undo_clears_stack(executor, undo_manager, task_repo, make_task, now):
    task_repo.create(make_task("task-1", due_date=now))
    task_repo.create(make_task("task-2", due_date=now))
    run(executor, undo_manager, "remove_due_date", target="task-1", rule_id="rule-1")
    run(executor, undo_manager, "remove_due_date", target="task-2", rule_id="rule-2")

    undo_manager.perform_undo()

    assert task_repo.find_by_id("task-2").due_date == now
    assert task_repo.find_by_id("task-1").due_date is None
    assert undo_manager.get_undo_snapshots() == []


def test_perform_undo_by_id_leaves_others(executor, undo_manager, task_repo, make_task, now):
    task_repo.create(make_task("task-1", due_date=now))
    task_repo.create(make_task("task-2", due_date=now))
    run(executor, undo_manager, "remove_due_date", target="task-1", rule_id="rule-1")
    run(executor, undo_manager, "remove_due_date", target="task-2", rule_id="rule-2")

    assert undo_manager.perform_undo_by_id("rule-1") is True

    assert task_repo.find_by_id("task-1").due_date == now
    assert task_repo.find_by_id("task-2").due_date is None
    assert [s.rule_id for s in undo_manager.get_undo_snapshots()] == ["rule-2"]
    assert undo_manager.perform_undo_by_id("rule-1") is False


def test_undo_of_deleted_card_is_noop(undo_manager, task_repo, clock):
    undo_manager.push(snapshot(timestamp=clock.now(), previous_state=PreviousState(due_date=None)))
    assert undo_manager.perform_undo() is True
    assert task_repo.find_all() == []


def test_clear(undo_manager, clock):
    undo_manager.push(snapshot(timestamp=clock.now()))
    undo_manager.clear()
    assert undo_manager.get_undo_snapshots() == []
