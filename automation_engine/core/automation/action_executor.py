"""Action executor for automation rules.

Each action kind is an ``ActionHandler`` that mutates cards, returns the
domain events it caused and knows how to revert itself from an undo
snapshot. Missing cards or sections and incomplete parameters are not
errors: the handler returns no events and the rule metadata is left alone.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from automation_engine.core.automation.create_card_dedup import (
    get_lookback_ms,
    should_skip_create_card,
)
from automation_engine.core.automation.date_calculations import calculate_relative_date
from automation_engine.core.automation.descriptions import describe_trigger
from automation_engine.core.automation.title_template import interpolate_title
from automation_engine.core.clock import Clock, from_ms
from automation_engine.core.config import get_settings
from automation_engine.core.exceptions import UnknownActionTypeError
from automation_engine.core.logging import log_rule_execution
from automation_engine.repositories.base import RuleRepository, SectionRepository, TaskRepository
from automation_engine.schemas.automation import (
    TRIGGER_SECTION_SENTINEL,
    ActionParams,
    DomainEvent,
    ExecutionLogEntry,
    ExecutionType,
    RuleAction,
    SubtaskSnapshot,
    UndoSnapshot,
)
from automation_engine.schemas.task import Task
from automation_engine.services.task_service import TaskService

logger = logging.getLogger(__name__)


class ActionContext:
    """Collaborators handed to every action handler."""

    def __init__(
        self,
        task_repo: TaskRepository,
        section_repo: SectionRepository,
        rule_repo: RuleRepository,
        task_service: TaskService,
        clock: Clock,
    ):
        self.task_repo = task_repo
        self.section_repo = section_repo
        self.rule_repo = rule_repo
        self.task_service = task_service
        self.clock = clock


def _task_updated_event(
    task: Task,
    changes: dict[str, Any],
    previous_values: dict[str, Any],
    action: RuleAction,
    triggering_event: DomainEvent,
) -> DomainEvent:
    return DomainEvent(
        type="task.updated",
        entity_id=task.id,
        project_id=task.project_id,
        changes=changes,
        previous_values=previous_values,
        triggered_by_rule=action.rule_id,
        depth=triggering_event.depth + 1,
    )


def _has_date_params(option: str, params: ActionParams) -> bool:
    if option == "specific_date":
        return bool(params.specific_month and params.specific_day)
    return True


def _resolve_date(option: str, params: ActionParams, ctx: ActionContext):
    return calculate_relative_date(
        option,
        ctx.clock.to_datetime(),
        specific_month=params.specific_month,
        specific_day=params.specific_day,
        month_target=params.month_target,
    )


class ActionHandler(ABC):
    """Strategy for one action kind."""

    @abstractmethod
    def execute(
        self, action: RuleAction, triggering_event: DomainEvent, ctx: ActionContext
    ) -> list[DomainEvent]:
        """Apply the action and return the events it caused (empty when skipped)."""
        pass

    @abstractmethod
    def describe(self, params: ActionParams, ctx: ActionContext) -> str:
        """Short description for the execution log."""
        pass

    @abstractmethod
    def undo(self, snapshot: UndoSnapshot, task_repo: TaskRepository) -> None:
        """Revert the action from a snapshot taken when it ran."""
        pass


class MoveToSectionHandler(ActionHandler):
    """Move a card to the top or bottom of a section."""

    def __init__(self, position: str):
        self.position = position

    def execute(self, action, triggering_event, ctx):
        task = ctx.task_repo.find_by_id(action.target_entity_id)
        if task is None:
            return []

        section_id = action.params.section_id
        if not section_id or ctx.section_repo.find_by_id(section_id) is None:
            return []

        orders = [
            t.order
            for t in ctx.task_repo.find_all()
            if t.section_id == section_id and t.id != task.id
        ]
        if self.position == "top":
            new_order = min(orders) - 1 if orders else -1
        else:
            new_order = max(orders) + 1 if orders else 1

        now = from_ms(ctx.clock.now())
        updates: dict[str, Any] = {"section_id": section_id, "order": new_order, "updated_at": now}
        if task.section_id != section_id:
            updates["moved_to_section_at"] = now
        ctx.task_repo.update(task.id, updates)

        return [
            _task_updated_event(
                task,
                {"section_id": section_id, "order": new_order},
                {"section_id": task.section_id, "order": task.order},
                action,
                triggering_event,
            )
        ]

    def describe(self, params, ctx):
        section = ctx.section_repo.find_by_id(params.section_id) if params.section_id else None
        if section is None:
            return f"Moved to {self.position} of section"
        return f"Moved to {self.position} of '{section.name}'"

    def undo(self, snapshot, task_repo):
        if task_repo.find_by_id(snapshot.target_entity_id) is None:
            return
        state = snapshot.previous_state
        updates = {
            field: getattr(state, field)
            for field in ("section_id", "order")
            if field in state.model_fields_set
        }
        if updates:
            task_repo.update(snapshot.target_entity_id, updates)


class MarkCompletionHandler(ActionHandler):
    """Mark a card complete or incomplete through the completion cascade."""

    def __init__(self, completed: bool):
        self.completed = completed

    def execute(self, action, triggering_event, ctx):
        task = ctx.task_repo.find_by_id(action.target_entity_id)
        if task is None:
            return []

        subtask_snapshots = [
            SubtaskSnapshot(task_id=sub.id, completed=sub.completed, completed_at=sub.completed_at)
            for sub in ctx.task_service.get_descendants(task.id)
        ]
        ctx.task_service.cascade_complete(task.id, self.completed)

        return [
            _task_updated_event(
                task,
                {"completed": self.completed},
                {
                    "completed": task.completed,
                    "completed_at": task.completed_at,
                    "subtask_snapshots": [s.model_dump() for s in subtask_snapshots],
                },
                action,
                triggering_event,
            )
        ]

    def describe(self, params, ctx):
        return "Marked as complete" if self.completed else "Marked as incomplete"

    def undo(self, snapshot, task_repo):
        if task_repo.find_by_id(snapshot.target_entity_id) is None:
            return
        state = snapshot.previous_state
        updates = {
            field: getattr(state, field)
            for field in ("completed", "completed_at")
            if field in state.model_fields_set
        }
        if updates:
            task_repo.update(snapshot.target_entity_id, updates)

        for sub in snapshot.subtask_snapshots:
            if task_repo.find_by_id(sub.task_id) is None:
                continue
            task_repo.update(
                sub.task_id, {"completed": sub.completed, "completed_at": sub.completed_at}
            )


class _DueDateUndoMixin:
    def undo(self, snapshot, task_repo):
        if task_repo.find_by_id(snapshot.target_entity_id) is None:
            return
        if "due_date" in snapshot.previous_state.model_fields_set:
            task_repo.update(
                snapshot.target_entity_id, {"due_date": snapshot.previous_state.due_date}
            )


class SetDueDateHandler(_DueDateUndoMixin, ActionHandler):
    """Set the due date from a relative date option."""

    def execute(self, action, triggering_event, ctx):
        task = ctx.task_repo.find_by_id(action.target_entity_id)
        if task is None:
            return []

        date_option = action.params.date_option
        if not date_option or not _has_date_params(date_option, action.params):
            return []

        due_date = _resolve_date(date_option, action.params, ctx)
        ctx.task_repo.update(
            task.id, {"due_date": due_date, "updated_at": from_ms(ctx.clock.now())}
        )

        return [
            _task_updated_event(
                task, {"due_date": due_date}, {"due_date": task.due_date}, action, triggering_event
            )
        ]

    def describe(self, params, ctx):
        return "Set due date"


class RemoveDueDateHandler(_DueDateUndoMixin, ActionHandler):
    """Clear the due date."""

    def execute(self, action, triggering_event, ctx):
        task = ctx.task_repo.find_by_id(action.target_entity_id)
        if task is None:
            return []

        ctx.task_repo.update(task.id, {"due_date": None, "updated_at": from_ms(ctx.clock.now())})

        return [
            _task_updated_event(
                task, {"due_date": None}, {"due_date": task.due_date}, action, triggering_event
            )
        ]

    def describe(self, params, ctx):
        return "Removed due date"


class CreateCardHandler(ActionHandler):
    """Create a new card at the bottom of a section."""

    def execute(self, action, triggering_event, ctx):
        params = action.params
        section_id = params.section_id
        if section_id == TRIGGER_SECTION_SENTINEL:
            section_id = triggering_event.entity_id
        if not section_id:
            return []

        section = ctx.section_repo.find_by_id(section_id)
        if section is None or not params.card_title:
            return []
        if params.card_date_option and not _has_date_params(params.card_date_option, params):
            return []

        title = interpolate_title(params.card_title, ctx.clock)
        all_tasks = ctx.task_repo.find_all()
        now_ms = ctx.clock.now()

        rule = ctx.rule_repo.find_by_id(action.rule_id)
        trigger = rule.trigger if rule is not None else None
        interval = (
            trigger.schedule.interval_minutes
            if trigger is not None and trigger.type == "scheduled_interval"
            else None
        )
        lookback_ms = get_lookback_ms(trigger.type if trigger is not None else "", interval)
        if should_skip_create_card(title, section_id, all_tasks, lookback_ms, now_ms):
            logger.info(f"Skipping duplicate card '{title}' in section {section_id}")
            return []

        orders = [t.order for t in all_tasks if t.section_id == section_id]
        due_date = (
            _resolve_date(params.card_date_option, params, ctx) if params.card_date_option else None
        )

        now = from_ms(now_ms)
        task = Task(
            id=str(uuid.uuid4()),
            project_id=section.project_id,
            section_id=section_id,
            description=title,
            due_date=due_date,
            order=max(orders) + 1 if orders else 1,
            created_at=now,
            updated_at=now,
        )
        ctx.task_repo.create(task)

        return [
            DomainEvent(
                type="task.created",
                entity_id=task.id,
                project_id=task.project_id,
                changes={"section_id": section_id, "description": title},
                triggered_by_rule=action.rule_id,
                depth=triggering_event.depth + 1,
            )
        ]

    def describe(self, params, ctx):
        return f"Created card '{params.card_title}'" if params.card_title else "Created card"

    def undo(self, snapshot, task_repo):
        task_repo.delete(snapshot.created_entity_id or snapshot.target_entity_id)


ACTION_HANDLERS: dict[str, ActionHandler] = {
    "move_card_to_top_of_section": MoveToSectionHandler("top"),
    "move_card_to_bottom_of_section": MoveToSectionHandler("bottom"),
    "mark_card_complete": MarkCompletionHandler(True),
    "mark_card_incomplete": MarkCompletionHandler(False),
    "set_due_date": SetDueDateHandler(),
    "remove_due_date": RemoveDueDateHandler(),
    "create_card": CreateCardHandler(),
}


def get_action_handler(action_type: str) -> ActionHandler:
    """Look up the handler for an action type.

    Raises:
        UnknownActionTypeError: If no handler is registered
    """
    handler = ACTION_HANDLERS.get(action_type)
    if handler is None:
        raise UnknownActionTypeError(action_type)
    return handler


class ActionExecutor:
    """Executor for rule actions."""

    def __init__(
        self,
        task_repo: TaskRepository,
        section_repo: SectionRepository,
        rule_repo: RuleRepository,
        clock: Clock,
        task_service: TaskService | None = None,
    ):
        """Initialize action executor.

        Args:
            task_repo: Card store
            section_repo: Section store
            rule_repo: Rule store (execution metadata is written here)
            clock: Time source
            task_service: Completion cascade (defaults to one over ``task_repo``)
        """
        self.task_repo = task_repo
        self.section_repo = section_repo
        self.rule_repo = rule_repo
        self.clock = clock
        self.ctx = ActionContext(
            task_repo,
            section_repo,
            rule_repo,
            task_service or TaskService(task_repo, clock),
            clock,
        )

    def execute_actions(
        self,
        actions: list[RuleAction],
        triggering_event: DomainEvent,
        execution_type: ExecutionType | None = None,
        on_executed: Callable[[RuleAction, list[DomainEvent]], None] | None = None,
    ) -> list[DomainEvent]:
        """Execute actions in order and collect the events they produced.

        A failing action is logged and skipped; the rest of the batch still
        runs.

        Args:
            actions: Actions to run
            triggering_event: Event that caused the actions
            execution_type: Log entry type (derived from the event when omitted)
            on_executed: Called with each action that ran and the events it returned

        Returns:
            Domain events for cascading rule evaluation
        """
        new_events: list[DomainEvent] = []
        for action in actions:
            try:
                events = self.execute_action(action, triggering_event, execution_type)
            except UnknownActionTypeError:
                raise
            except Exception as e:
                logger.error(
                    f"Failed to execute action {action.action_type} for rule {action.rule_id}: {e}",
                    exc_info=True,
                )
                continue

            if events and on_executed is not None:
                try:
                    on_executed(action, events)
                except Exception as e:
                    logger.error(
                        f"Post-execution callback failed for rule {action.rule_id}: {e}",
                        exc_info=True,
                    )
            new_events.extend(events)
        return new_events

    def execute_action(
        self,
        action: RuleAction,
        triggering_event: DomainEvent,
        execution_type: ExecutionType | None = None,
    ) -> list[DomainEvent]:
        """Execute a single action and record it on the rule when it ran.

        Raises:
            UnknownActionTypeError: If the action type has no handler
        """
        handler = get_action_handler(action.action_type)
        events = handler.execute(action, triggering_event, self.ctx)

        if events:
            if execution_type is None:
                execution_type = "scheduled" if triggering_event.type == "schedule.fired" else "event"
            self._record_execution(action, handler, events, execution_type)

        return events

    def _task_name(self, action: RuleAction, events: list[DomainEvent]) -> str:
        if action.action_type == "create_card":
            created = next((e for e in events if e.type == "task.created"), None)
            task = self.task_repo.find_by_id(created.entity_id) if created else None
            if task is not None:
                return task.description
            return action.params.card_title or "New card"

        task = self.task_repo.find_by_id(action.target_entity_id)
        return task.description if task is not None else "Unknown task"

    def _record_execution(
        self,
        action: RuleAction,
        handler: ActionHandler,
        events: list[DomainEvent],
        execution_type: ExecutionType,
    ) -> None:
        """Bump execution metadata and append a trimmed log entry."""
        rule = self.rule_repo.find_by_id(action.rule_id)
        if rule is None:
            return

        now = from_ms(self.clock.now())
        section_id = getattr(rule.trigger, "section_id", None)
        section = self.section_repo.find_by_id(section_id) if section_id else None

        entry = ExecutionLogEntry(
            timestamp=now,
            trigger_description=describe_trigger(
                rule.trigger, section.name if section is not None else None
            ),
            action_description=handler.describe(action.params, self.ctx),
            task_name=self._task_name(action, events),
            execution_type=execution_type,
        )
        limit = get_settings().EXECUTION_LOG_LIMIT

        self.rule_repo.update(
            rule.id,
            {
                "execution_count": rule.execution_count + 1,
                "last_executed_at": now,
                "recent_executions": [*rule.recent_executions, entry][-limit:],
            },
        )
        log_rule_execution(rule.id, action.action_type, action.target_entity_id)
