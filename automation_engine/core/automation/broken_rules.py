"""Disables rules that point at a deleted section."""

from automation_engine.core.logging import log_rule_disabled
from automation_engine.repositories.base import RuleRepository
from automation_engine.schemas.automation import AutomationRule

SECTION_DELETED = "section_deleted"


def collect_section_references(rule: AutomationRule) -> list[str]:
    """Section IDs a rule depends on through its trigger, action and section filters."""
    refs = []

    trigger_section = getattr(rule.trigger, "section_id", None)
    if trigger_section is not None:
        refs.append(trigger_section)

    if rule.action.section_id is not None:
        refs.append(rule.action.section_id)

    for card_filter in rule.filters:
        if card_filter.type in ("in_section", "not_in_section") and card_filter.section_id:
            refs.append(card_filter.section_id)

    return refs


def detect_broken_rules(
    deleted_section_id: str, project_id: str, rule_repo: RuleRepository
) -> list[str]:
    """Disable every rule of a project that references a deleted section.

    Args:
        deleted_section_id: Section that was deleted
        project_id: Project whose rules are scanned
        rule_repo: Rule store

    Returns:
        IDs of the rules that were disabled
    """
    broken = []
    for rule in rule_repo.find_by_project_id(project_id):
        if deleted_section_id in collect_section_references(rule):
            rule_repo.update(rule.id, {"enabled": False, "broken_reason": SECTION_DELETED})
            log_rule_disabled(rule.id, SECTION_DELETED)
            broken.append(rule.id)
    return broken
