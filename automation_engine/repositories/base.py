"""Store interfaces the automation engine depends on."""

from typing import Any, Protocol

from automation_engine.schemas.automation import AutomationRule
from automation_engine.schemas.task import Section, Task


class TaskRepository(Protocol):
    """Card store."""

    def find_by_id(self, task_id: str) -> Task | None: ...

    def find_all(self) -> list[Task]: ...

    def find_by_project_id(self, project_id: str) -> list[Task]: ...

    def create(self, task: Task) -> Task: ...

    def update(self, task_id: str, changes: dict[str, Any]) -> Task | None: ...

    def delete(self, task_id: str) -> bool: ...


class SectionRepository(Protocol):
    """Board column store."""

    def find_by_id(self, section_id: str) -> Section | None: ...

    def find_all(self) -> list[Section]: ...

    def find_by_project_id(self, project_id: str) -> list[Section]: ...


class RuleRepository(Protocol):
    """Automation rule store."""

    def find_by_id(self, rule_id: str) -> AutomationRule | None: ...

    def find_all(self) -> list[AutomationRule]: ...

    def find_by_project_id(self, project_id: str) -> list[AutomationRule]: ...

    def create(self, rule: AutomationRule) -> AutomationRule: ...

    def update(self, rule_id: str, changes: dict[str, Any]) -> AutomationRule | None: ...

    def delete(self, rule_id: str) -> bool: ...
