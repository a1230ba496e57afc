"""Task service for card mutations shared by the automation engine."""

import logging

from automation_engine.core.clock import Clock, from_ms
from automation_engine.repositories.base import TaskRepository
from automation_engine.schemas.task import Task

logger = logging.getLogger(__name__)


class TaskService:
    """Service for card state changes that span more than one card."""

    def __init__(self, task_repo: TaskRepository, clock: Clock):
        """Initialize task service.

        Args:
            task_repo: Card store
            clock: Time source for completion timestamps
        """
        self.task_repo = task_repo
        self.clock = clock

    def get_descendants(self, task_id: str) -> list[Task]:
        """Get every subtask below a card, breadth first."""
        tasks = self.task_repo.find_all()
        children: dict[str, list[Task]] = {}
        for task in tasks:
            if task.parent_task_id is not None:
                children.setdefault(task.parent_task_id, []).append(task)

        descendants: list[Task] = []
        queue = list(children.get(task_id, []))
        seen = {task_id}
        while queue:
            task = queue.pop(0)
            if task.id in seen:
                continue
            seen.add(task.id)
            descendants.append(task)
            queue.extend(children.get(task.id, []))
        return descendants

    def cascade_complete(self, task_id: str, completed: bool) -> list[Task]:
        """Mark a card complete or incomplete.

        Completing a card also completes all of its descendants. Marking a
        card incomplete only touches the card itself.

        Args:
            task_id: Card ID
            completed: New completion state

        Returns:
            Updated cards (the card first), empty if the card does not exist
        """
        task = self.task_repo.find_by_id(task_id)
        if task is None:
            logger.warning(f"Cannot change completion of missing task {task_id}")
            return []

        now = from_ms(self.clock.now())
        changes = {
            "completed": completed,
            "completed_at": now if completed else None,
            "updated_at": now,
        }

        targets = [task]
        if completed:
            targets.extend(self.get_descendants(task_id))

        updated = []
        for target in targets:
            result = self.task_repo.update(target.id, changes)
            if result is not None:
                updated.append(result)

        logger.debug(f"Set completed={completed} on {len(updated)} task(s) starting at {task_id}")
        return updated
