"""Unit tests for TaskService."""

import pytest

from automation_engine.services.task_service import TaskService


@pytest.fixture
def task_service(task_repo, clock):
    return TaskService(task_repo, clock)


@pytest.fixture
def tree(task_repo, make_task):
    """parent -> child -> grandchild, plus an unrelated card."""
    for task in (
        make_task("parent"),
        make_task("child", parent_task_id="parent"),
        make_task("grandchild", parent_task_id="child"),
        make_task("other"),
    ):
        task_repo.create(task)
    return task_repo


def test_get_descendants(task_service, tree):
    assert [t.id for t in task_service.get_descendants("parent")] == ["child", "grandchild"]
    assert task_service.get_descendants("other") == []


def test_complete_cascades_to_descendants(task_service, tree, now):
    updated = task_service.cascade_complete("parent", True)

    assert [t.id for t in updated] == ["parent", "child", "grandchild"]
    for task_id in ("parent", "child", "grandchild"):
        task = tree.find_by_id(task_id)
        assert task.completed
        assert task.completed_at == now
    assert not tree.find_by_id("other").completed


def test_incomplete_only_touches_the_card(task_service, tree):
    task_service.cascade_complete("parent", True)
    updated = task_service.cascade_complete("parent", False)

    assert [t.id for t in updated] == ["parent"]
    assert not tree.find_by_id("parent").completed
    assert tree.find_by_id("parent").completed_at is None
    assert tree.find_by_id("child").completed


def test_missing_card(task_service, tree):
    assert task_service.cascade_complete("missing", True) == []
