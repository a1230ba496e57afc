"""In-memory stores for tests and embedding hosts."""

import threading
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from automation_engine.schemas.automation import AutomationRule
from automation_engine.schemas.task import Section, Task

ModelT = TypeVar("ModelT", bound=BaseModel)


class InMemoryRepository(Generic[ModelT]):
    """Dictionary-backed store keyed by ``id``.

    Updates replace the stored model with a copy, so models handed out earlier
    keep the state they had when they were read.
    """

    def __init__(self, items: list[ModelT] | None = None):
        """Initialize repository, optionally seeded with ``items``."""
        self._lock = threading.RLock()
        self._items: dict[str, ModelT] = {}
        for item in items or []:
            self._items[item.id] = item

    def find_by_id(self, item_id: str) -> ModelT | None:
        with self._lock:
            return self._items.get(item_id)

    def find_all(self) -> list[ModelT]:
        with self._lock:
            return list(self._items.values())

    def find_by_project_id(self, project_id: str) -> list[ModelT]:
        with self._lock:
            return [item for item in self._items.values() if item.project_id == project_id]

    def create(self, item: ModelT) -> ModelT:
        with self._lock:
            self._items[item.id] = item
            return item

    def update(self, item_id: str, changes: dict[str, Any]) -> ModelT | None:
        """Apply ``changes`` to a stored item.

        Returns:
            Updated item, or None if no item has ``item_id``
        """
        with self._lock:
            current = self._items.get(item_id)
            if current is None:
                return None
            updated = current.model_copy(update=changes)
            self._items[item_id] = updated
            return updated

    def delete(self, item_id: str) -> bool:
        with self._lock:
            return self._items.pop(item_id, None) is not None


class InMemoryTaskRepository(InMemoryRepository[Task]):
    """Card store."""


class InMemorySectionRepository(InMemoryRepository[Section]):
    """Board column store."""


class InMemoryRuleRepository(InMemoryRepository[AutomationRule]):
    """Automation rule store."""
