"""Automation engine: rule matching, execution and cascade dispatch."""

import logging

from pydantic import BaseModel, Field

from automation_engine.core.automation.action_executor import ActionExecutor
from automation_engine.core.automation.rule_engine import EvaluationContext, RuleEngine
from automation_engine.core.automation.schedule_evaluator import ScheduleEvaluation
from automation_engine.core.automation.undo import UndoManager
from automation_engine.core.clock import Clock
from automation_engine.core.config import get_settings
from automation_engine.repositories.base import RuleRepository, SectionRepository, TaskRepository
from automation_engine.schemas.automation import (
    AutomationRule,
    DomainEvent,
    ExecutionType,
    RuleAction,
    is_scheduled_trigger,
)

logger = logging.getLogger(__name__)


class DryRunResult(BaseModel):
    """What a scheduled rule would do if it ran now."""

    matching_tasks: list[dict[str, str]] = Field(default_factory=list)
    action_description: str = ""
    total_count: int = 0


def schedule_fired_event(
    rule: AutomationRule, evaluation: ScheduleEvaluation | None = None
) -> DomainEvent:
    """Synthetic event that makes the rule engine run a scheduled rule."""
    changes: dict = {"trigger_type": rule.trigger.type}
    if evaluation is not None and evaluation.matching_task_ids is not None:
        changes["matching_task_ids"] = evaluation.matching_task_ids
    return DomainEvent(
        type="schedule.fired",
        entity_id=rule.id,
        project_id=rule.project_id,
        changes=changes,
        triggered_by_rule=rule.id,
        depth=0,
    )


class AutomationEngine:
    """Engine for executing automation rules.

    Events returned by executed actions are fed back through rule matching
    until ``max_depth`` is reached. A ``rule:entity:action`` key set shared
    across one cascade stops the same action from running twice.
    """

    def __init__(
        self,
        rule_repo: RuleRepository,
        task_repo: TaskRepository,
        section_repo: SectionRepository,
        clock: Clock,
        executor: ActionExecutor | None = None,
        undo_manager: UndoManager | None = None,
        rule_engine: RuleEngine | None = None,
        max_depth: int | None = None,
    ):
        """Initialize automation engine.

        Args:
            rule_repo: Rule store
            task_repo: Card store
            section_repo: Section store
            clock: Time source
            executor: Action executor (built from the stores when omitted)
            undo_manager: Receives a snapshot for every executed action
            rule_engine: Event matcher
            max_depth: Maximum cascade depth (defaults to ``Settings.MAX_CASCADE_DEPTH``)
        """
        self.rule_repo = rule_repo
        self.task_repo = task_repo
        self.section_repo = section_repo
        self.clock = clock
        self.executor = executor or ActionExecutor(task_repo, section_repo, rule_repo, clock)
        self.undo_manager = undo_manager
        self.rule_engine = rule_engine or RuleEngine()
        self.max_depth = max_depth if max_depth is not None else get_settings().MAX_CASCADE_DEPTH

    def _context(self) -> EvaluationContext:
        return EvaluationContext(
            all_tasks=self.task_repo.find_all(),
            all_sections=self.section_repo.find_all(),
            now=self.clock.to_datetime(),
        )

    def _rules_for(self, event: DomainEvent) -> list[AutomationRule]:
        if event.project_id:
            return self.rule_repo.find_by_project_id(event.project_id)
        return self.rule_repo.find_all()

    def _record_undo(self, action: RuleAction, events: list[DomainEvent]) -> None:
        if self.undo_manager is None:
            return
        rule = self.rule_repo.find_by_id(action.rule_id)
        rule_name = rule.name if rule is not None else action.rule_id
        self.undo_manager.push(self.undo_manager.build_snapshot(action, rule_name, events[0]))

    def handle_event(
        self,
        event: DomainEvent,
        execution_type: ExecutionType | None = None,
        dedup: set[str] | None = None,
    ) -> list[DomainEvent]:
        """Process an event and everything it cascades into.

        Args:
            event: Domain event (depth 0 for external events)
            execution_type: Log entry type for the first hop's actions
            dedup: Executed ``rule:entity:action`` keys (fresh set per external event)

        Returns:
            All events produced by executed actions, in execution order
        """
        dedup = dedup if dedup is not None else set()
        produced: list[DomainEvent] = []
        pending = [event]

        while pending:
            current = pending.pop()

            if current.depth >= self.max_depth:
                logger.warning(
                    f"Cascade depth {current.depth} reached limit {self.max_depth}, "
                    f"dropping {current.type} for {current.entity_id}"
                )
                continue

            actions = self.rule_engine.evaluate(current, self._rules_for(current), self._context())

            to_run = []
            for action in actions:
                key = f"{action.rule_id}:{action.target_entity_id}:{action.action_type}"
                if key in dedup:
                    logger.debug(f"Skipping repeated action {key} in cascade")
                    continue
                dedup.add(key)
                to_run.append(action)

            if not to_run:
                continue

            new_events = self.executor.execute_actions(
                to_run,
                current,
                execution_type if current is event else None,
                on_executed=self._record_undo,
            )
            produced.extend(new_events)
            # depth-first, in the order the events were produced
            pending.extend(reversed(new_events))

        return produced

    def run_scheduled_rule(
        self,
        rule: AutomationRule,
        evaluation: ScheduleEvaluation | None = None,
        execution_type: ExecutionType = "scheduled",
    ) -> list[DomainEvent]:
        """Run a scheduled rule that the scheduler found due (or that was run manually)."""
        logger.info(f"Running scheduled rule {rule.id} ({execution_type})")
        return self.handle_event(schedule_fired_event(rule, evaluation), execution_type)

    def dry_run(self, rule: AutomationRule) -> DryRunResult:
        """Preview the cards a scheduled rule would act on now, without writing anything."""
        if not rule.enabled or rule.broken_reason is not None:
            return DryRunResult()
        if not is_scheduled_trigger(rule.trigger):
            return DryRunResult()

        context = self._context()
        actions = self.rule_engine.evaluate(schedule_fired_event(rule), [rule], context)
        names = {task.id: task.description for task in context.all_tasks}

        matching_tasks = []
        for action in actions:
            if action.action_type == "create_card":
                title = action.params.card_title or "New card"
                matching_tasks.append({"id": action.target_entity_id, "name": f"New card: {title}"})
            else:
                matching_tasks.append(
                    {
                        "id": action.target_entity_id,
                        "name": names.get(action.target_entity_id, "Unknown task"),
                    }
                )

        return DryRunResult(
            matching_tasks=matching_tasks,
            action_description=rule.action.type.replace("_", " "),
            total_count=len(matching_tasks),
        )
