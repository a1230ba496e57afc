"""Bulk pause and resume of a project's scheduled rules."""

import logging

from pydantic import BaseModel, Field

from automation_engine.core.clock import Clock, from_ms
from automation_engine.repositories.base import RuleRepository
from automation_engine.schemas.automation import is_scheduled_trigger

logger = logging.getLogger(__name__)


class BulkPauseResult(BaseModel):
    paused_count: int = 0
    paused_rule_ids: list[str] = Field(default_factory=list)


class BulkResumeResult(BaseModel):
    resumed_count: int = 0
    resumed_rule_ids: list[str] = Field(default_factory=list)


class BulkScheduleService:
    """Pause or resume every scheduled rule of a project at once.

    Resuming only re-enables rules that a bulk pause disabled; rules the user
    disabled individually stay off.
    """

    def __init__(self, rule_repo: RuleRepository, clock: Clock):
        self.rule_repo = rule_repo
        self.clock = clock

    def pause_all_scheduled(self, project_id: str) -> BulkPauseResult:
        """Disable all enabled scheduled rules and stamp ``bulk_paused_at``."""
        now = from_ms(self.clock.now())
        paused = []

        for rule in self.rule_repo.find_by_project_id(project_id):
            if not rule.enabled or not is_scheduled_trigger(rule.trigger):
                continue
            self.rule_repo.update(rule.id, {"enabled": False, "bulk_paused_at": now})
            paused.append(rule.id)

        logger.info(f"Paused {len(paused)} scheduled rule(s) in project {project_id}")
        return BulkPauseResult(paused_count=len(paused), paused_rule_ids=paused)

    def resume_all_scheduled(self, project_id: str) -> BulkResumeResult:
        """Re-enable rules paused by ``pause_all_scheduled``."""
        resumed = []

        for rule in self.rule_repo.find_by_project_id(project_id):
            if rule.bulk_paused_at is None:
                continue
            self.rule_repo.update(rule.id, {"enabled": True, "bulk_paused_at": None})
            resumed.append(rule.id)

        logger.info(f"Resumed {len(resumed)} scheduled rule(s) in project {project_id}")
        return BulkResumeResult(resumed_count=len(resumed), resumed_rule_ids=resumed)
