"""Matches domain events against automation rules.

Pure: no store access, no mutation. Produces the ``RuleAction`` list the
executor runs.
"""

import logging
from datetime import datetime

from pydantic import BaseModel, Field

from automation_engine.core.automation.filter_evaluator import FilterContext, FilterEvaluator
from automation_engine.schemas.automation import (
    AutomationRule,
    DomainEvent,
    RuleAction,
    is_scheduled_trigger,
)
from automation_engine.schemas.task import Section, Task

logger = logging.getLogger(__name__)


class EvaluationContext(BaseModel):
    """Read-only snapshot of board state for rule evaluation."""

    all_tasks: list[Task] = Field(default_factory=list)
    all_sections: list[Section] = Field(default_factory=list)
    now: datetime


def build_rule_index(rules: list[AutomationRule]) -> dict[str, list[AutomationRule]]:
    """Group enabled, non-broken rules by trigger type, keeping rule order."""
    index: dict[str, list[AutomationRule]] = {}
    for rule in rules:
        if not rule.enabled or rule.broken_reason is not None:
            continue
        index.setdefault(rule.trigger.type, []).append(rule)
    return index


def create_rule_action(rule: AutomationRule, target_entity_id: str) -> RuleAction:
    return RuleAction(
        rule_id=rule.id,
        action_type=rule.action.type,
        target_entity_id=target_entity_id,
        params=rule.action.to_params(),
    )


class RuleEngine:
    """Turns a domain event into the actions of the rules it triggers."""

    def __init__(self, filter_evaluator: FilterEvaluator | None = None):
        self.filter_evaluator = filter_evaluator or FilterEvaluator()

    def _section_matches(self, rule: AutomationRule, section_id) -> bool:
        # a trigger without a section watches every section
        return rule.trigger.section_id is None or rule.trigger.section_id == section_id

    def _passes_filters(self, rule: AutomationRule, task_id: str, context: EvaluationContext) -> bool:
        if not rule.filters:
            return True
        task = next((t for t in context.all_tasks if t.id == task_id), None)
        if task is None:
            return False
        return self.filter_evaluator.evaluate_all(
            rule.filters, task, FilterContext(now=context.now)
        )

    def _card_action(
        self, rule: AutomationRule, event: DomainEvent, context: EvaluationContext
    ) -> RuleAction | None:
        if self._passes_filters(rule, event.entity_id, context):
            return create_rule_action(rule, event.entity_id)
        return None

    def _evaluate_task_updated(self, event, index, context) -> list[RuleAction]:
        actions: list[RuleAction] = []
        changes, previous = event.changes, event.previous_values
        matched: list[AutomationRule] = []

        if "section_id" in changes and changes["section_id"] != previous.get("section_id"):
            new_section = changes["section_id"]
            old_section = previous.get("section_id")
            matched += [
                rule
                for rule in index.get("card_moved_into_section", [])
                if self._section_matches(rule, new_section)
            ]
            matched += [
                rule
                for rule in index.get("card_moved_out_of_section", [])
                if self._section_matches(rule, old_section)
            ]

        if "completed" in changes and changes["completed"] != previous.get("completed"):
            if changes["completed"] is True and previous.get("completed") is False:
                matched += index.get("card_marked_complete", [])
            if changes["completed"] is False and previous.get("completed") is True:
                matched += index.get("card_marked_incomplete", [])

        for rule in matched:
            action = self._card_action(rule, event, context)
            if action is not None:
                actions.append(action)
        return actions

    def _evaluate_task_created(self, event, index, context) -> list[RuleAction]:
        section_id = event.changes.get("section_id")
        if section_id is None:
            task = next((t for t in context.all_tasks if t.id == event.entity_id), None)
            section_id = task.section_id if task is not None else None

        actions = []
        for rule in index.get("card_created_in_section", []):
            if not self._section_matches(rule, section_id):
                continue
            action = self._card_action(rule, event, context)
            if action is not None:
                actions.append(action)
        return actions

    def _evaluate_section_event(self, event, index) -> list[RuleAction]:
        if event.type == "section.created":
            rules = index.get("section_created", [])
        elif "name" in event.changes and event.changes["name"] != event.previous_values.get("name"):
            rules = index.get("section_renamed", [])
        else:
            rules = []
        return [create_rule_action(rule, event.entity_id) for rule in rules]

    def _evaluate_schedule_fired(self, event, rules, context) -> list[RuleAction]:
        rule = next((r for r in rules if r.id == event.triggered_by_rule), None)
        if rule is None or not is_scheduled_trigger(rule.trigger):
            return []
        if not rule.enabled or rule.broken_reason is not None:
            return []

        if rule.action.type == "create_card":
            return [create_rule_action(rule, rule.action.section_id or "")]

        matching_ids = event.changes.get("matching_task_ids")
        if matching_ids is not None:
            candidates = [t for t in context.all_tasks if t.id in set(matching_ids)]
        else:
            candidates = [
                t
                for t in context.all_tasks
                if t.project_id == rule.project_id and t.parent_task_id is None
            ]

        filter_ctx = FilterContext(now=context.now)
        return [
            create_rule_action(rule, task.id)
            for task in candidates
            if self.filter_evaluator.evaluate_all(rule.filters, task, filter_ctx)
        ]

    def evaluate(
        self, event: DomainEvent, rules: list[AutomationRule], context: EvaluationContext
    ) -> list[RuleAction]:
        """Evaluate an event against rules.

        Args:
            event: Domain event
            rules: Candidate rules (usually the event's project)
            context: Board snapshot

        Returns:
            Actions to execute, in rule order
        """
        if event.type == "schedule.fired":
            return self._evaluate_schedule_fired(event, rules, context)

        index = build_rule_index(rules)
        if event.type == "task.updated":
            return self._evaluate_task_updated(event, index, context)
        if event.type == "task.created":
            return self._evaluate_task_created(event, index, context)
        if event.type in ("section.created", "section.updated"):
            return self._evaluate_section_event(event, index)

        logger.debug(f"No triggers for event type {event.type}")
        return []
