import os
from datetime import UTC, datetime

import pytest

# Calendar arithmetic in tests runs in UTC regardless of the host's .env
os.environ["TIMEZONE"] = "UTC"
os.environ["LOG_FORMAT"] = "human"

from automation_engine.core.clock import FakeClock  # noqa: E402
from automation_engine.core.config import get_settings  # noqa: E402
from automation_engine.repositories.memory import (  # noqa: E402
    InMemoryRuleRepository,
    InMemorySectionRepository,
    InMemoryTaskRepository,
)
from automation_engine.schemas.automation import AutomationRule  # noqa: E402
from automation_engine.schemas.task import Section, Task  # noqa: E402

# Clear settings cache to force reload with the test env vars
get_settings.cache_clear()

PROJECT_ID = "project-1"

# Wednesday, 6 March 2024, 10:00 UTC
NOW = datetime(2024, 3, 6, 10, 0, tzinfo=UTC)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    """Fake clock frozen at NOW."""
    return FakeClock(NOW)


@pytest.fixture
def sections():
    return [
        Section(id="section-todo", project_id=PROJECT_ID, name="To Do", order=1),
        Section(id="section-doing", project_id=PROJECT_ID, name="Doing", order=2),
        Section(id="section-done", project_id=PROJECT_ID, name="Done", order=3),
    ]


@pytest.fixture
def section_repo(sections):
    return InMemorySectionRepository(sections)


@pytest.fixture
def task_repo():
    return InMemoryTaskRepository()


@pytest.fixture
def rule_repo():
    return InMemoryRuleRepository()


@pytest.fixture
def make_task():
    """Factory for cards with sensible defaults."""

    def _make_task(task_id: str = "task-1", **overrides) -> Task:
        data = {
            "id": task_id,
            "project_id": PROJECT_ID,
            "section_id": "section-todo",
            "description": f"Card {task_id}",
            "created_at": NOW,
            "updated_at": NOW,
        }
        data.update(overrides)
        return Task(**data)

    return _make_task


@pytest.fixture
def make_rule():
    """Factory for rules; ``trigger``/``action`` accept plain dicts."""

    def _make_rule(rule_id: str = "rule-1", trigger=None, action=None, **overrides) -> AutomationRule:
        data = {
            "id": rule_id,
            "project_id": PROJECT_ID,
            "name": f"Rule {rule_id}",
            "trigger": trigger
            or {"type": "card_moved_into_section", "section_id": "section-done"},
            "action": action or {"type": "mark_card_complete"},
            "created_at": NOW,
            "updated_at": NOW,
        }
        data.update(overrides)
        return AutomationRule.model_validate(data)

    return _make_rule
