"""Time-boxed undo of automation actions."""

import logging
import threading

from automation_engine.core.automation.action_executor import get_action_handler
from automation_engine.core.clock import Clock
from automation_engine.core.config import get_settings
from automation_engine.repositories.base import TaskRepository
from automation_engine.schemas.automation import (
    DomainEvent,
    PreviousState,
    RuleAction,
    SubtaskSnapshot,
    UndoSnapshot,
)

logger = logging.getLogger(__name__)

_PREVIOUS_STATE_FIELDS = ("section_id", "order", "completed", "completed_at", "due_date")


class UndoManager:
    """Stack of undo snapshots, oldest first.

    Snapshots older than ``expiry_ms`` are pruned whenever the stack is read.
    """

    def __init__(self, task_repo: TaskRepository, clock: Clock, expiry_ms: int | None = None):
        """Initialize undo manager.

        Args:
            task_repo: Card store reverted actions are applied to
            clock: Time source
            expiry_ms: Undo window (defaults to ``Settings.UNDO_EXPIRY_MS``)
        """
        self.task_repo = task_repo
        self.clock = clock
        self.expiry_ms = expiry_ms if expiry_ms is not None else get_settings().UNDO_EXPIRY_MS
        self._stack: list[UndoSnapshot] = []
        self._lock = threading.RLock()

    def build_snapshot(
        self, action: RuleAction, rule_name: str, result_event: DomainEvent
    ) -> UndoSnapshot:
        """Build a snapshot from an executed action and the event it returned.

        Only keys present in the event's ``previous_values`` end up in the
        snapshot's previous state.
        """
        prev = result_event.previous_values
        previous_state = PreviousState(
            **{field: prev[field] for field in _PREVIOUS_STATE_FIELDS if field in prev}
        )
        subtask_snapshots = [
            SubtaskSnapshot.model_validate(s) for s in prev.get("subtask_snapshots", [])
        ]

        target_entity_id = action.target_entity_id
        created_entity_id = None
        if action.action_type == "create_card":
            created_entity_id = result_event.entity_id
            target_entity_id = result_event.entity_id

        return UndoSnapshot(
            rule_id=action.rule_id,
            rule_name=rule_name,
            action_type=action.action_type,
            target_entity_id=target_entity_id,
            previous_state=previous_state,
            timestamp=self.clock.now(),
            created_entity_id=created_entity_id,
            subtask_snapshots=subtask_snapshots,
        )

    def push(self, snapshot: UndoSnapshot) -> None:
        with self._lock:
            self._stack.append(snapshot)

    def _prune(self) -> None:
        now = self.clock.now()
        self._stack = [s for s in self._stack if now - s.timestamp <= self.expiry_ms]

    def get_undo_snapshot(self) -> UndoSnapshot | None:
        """Most recent unexpired snapshot, or None."""
        with self._lock:
            self._prune()
            return self._stack[-1] if self._stack else None

    def get_undo_snapshots(self) -> list[UndoSnapshot]:
        """All unexpired snapshots, oldest first."""
        with self._lock:
            self._prune()
            return list(self._stack)

    def clear(self) -> None:
        with self._lock:
            self._stack = []

    def _apply(self, snapshot: UndoSnapshot) -> None:
        get_action_handler(snapshot.action_type).undo(snapshot, self.task_repo)
        logger.info(
            f"Undid {snapshot.action_type} of rule {snapshot.rule_id} "
            f"on {snapshot.target_entity_id}"
        )

    def perform_undo(self) -> bool:
        """Revert the most recent action and clear the whole stack.

        Returns:
            True if an action was reverted, False if nothing was undoable
        """
        with self._lock:
            snapshot = self.get_undo_snapshot()
            if snapshot is None:
                return False
            self._apply(snapshot)
            self._stack = []
            return True

    def perform_undo_by_id(self, rule_id: str) -> bool:
        """Revert one rule's action, leaving other snapshots in place.

        Returns:
            True if a snapshot for ``rule_id`` was found and reverted
        """
        with self._lock:
            self._prune()
            for index, snapshot in enumerate(self._stack):
                if snapshot.rule_id == rule_id:
                    self._apply(snapshot)
                    del self._stack[index]
                    return True
            return False
