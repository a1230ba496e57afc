"""Scheduler service driving time-based automation rules."""

import logging
import threading
from collections.abc import Callable
from typing import Protocol

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from pydantic import BaseModel

from automation_engine.core.automation.descriptions import describe_trigger
from automation_engine.core.automation.schedule_evaluator import (
    ScheduleEvaluation,
    evaluate_scheduled_rules,
)
from automation_engine.core.clock import Clock, from_ms, to_ms
from automation_engine.core.config import get_settings
from automation_engine.repositories.base import RuleRepository, TaskRepository
from automation_engine.schemas.automation import (
    AutomationRule,
    ExecutionLogEntry,
    ExecutionType,
    is_scheduled_trigger,
)

logger = logging.getLogger(__name__)

TICK_JOB_ID = "automation_scheduler_tick"


class TickSummary(BaseModel):
    """Outcome of one tick, reported when at least one rule fired."""

    rules_evaluated: int
    rules_fired: int
    tasks_affected: int
    is_catch_up: bool


ScheduledRuleCallback = Callable[[AutomationRule, ScheduleEvaluation, ExecutionType], None]
TickCompleteCallback = Callable[[TickSummary], None]
VisibilityListener = Callable[[bool], None]


class VisibilitySource(Protocol):
    """Host signal for going to the background and coming back."""

    def subscribe(self, listener: VisibilityListener) -> None: ...

    def unsubscribe(self, listener: VisibilityListener) -> None: ...


class VisibilityNotifier:
    """Minimal visibility source driven by the host."""

    def __init__(self):
        self._listeners: list[VisibilityListener] = []
        self.visible = True

    def subscribe(self, listener: VisibilityListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: VisibilityListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def set_visible(self, visible: bool) -> None:
        """Record the new state and notify listeners."""
        self.visible = visible
        for listener in list(self._listeners):
            listener(visible)


class SchedulerService:
    """Tick loop for scheduled automation rules.

    Two states, stopped and running. Starting runs a catch-up tick right away,
    then ticks every ``SCHEDULER_TICK_INTERVAL_MS`` on an APScheduler
    background job, plus a catch-up tick whenever the host becomes visible.
    Ticks never overlap.
    """

    def __init__(
        self,
        clock: Clock,
        rule_repo: RuleRepository,
        task_repo: TaskRepository,
        on_rule_fired: ScheduledRuleCallback,
        on_tick_complete: TickCompleteCallback | None = None,
        visibility_source: VisibilitySource | None = None,
        scheduler_factory: Callable[[], BackgroundScheduler] = BackgroundScheduler,
        tick_interval_ms: int | None = None,
    ):
        """Initialize scheduler service.

        Args:
            clock: Time source
            rule_repo: Rule store
            task_repo: Card store
            on_rule_fired: Called for each due rule, after its last_evaluated_at is stored
            on_tick_complete: Called with a summary after ticks where something fired
            visibility_source: Optional foreground/background signal
            scheduler_factory: Builds the APScheduler instance for each start
            tick_interval_ms: Tick period (defaults to ``Settings.SCHEDULER_TICK_INTERVAL_MS``)
        """
        self.clock = clock
        self.rule_repo = rule_repo
        self.task_repo = task_repo
        self.on_rule_fired = on_rule_fired
        self.on_tick_complete = on_tick_complete
        self.visibility_source = visibility_source
        self.scheduler_factory = scheduler_factory
        self.tick_interval_ms = tick_interval_ms or get_settings().SCHEDULER_TICK_INTERVAL_MS

        self._scheduler: BackgroundScheduler | None = None
        self._state_lock = threading.RLock()
        self._tick_lock = threading.Lock()

    def start(self) -> None:
        """Start the tick loop. Calling it while running is a no-op."""
        with self._state_lock:
            if self._scheduler is not None:
                logger.debug("SchedulerService is already running")
                return

            self.tick(is_catch_up=True)

            scheduler = self.scheduler_factory()
            scheduler.add_job(
                self.tick,
                trigger=IntervalTrigger(seconds=self.tick_interval_ms / 1000),
                id=TICK_JOB_ID,
                name="Evaluate scheduled automation rules",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            scheduler.start()
            self._scheduler = scheduler

            if self.visibility_source is not None:
                self.visibility_source.subscribe(self._on_visibility_change)

            logger.info(f"SchedulerService started (tick every {self.tick_interval_ms} ms)")

    def stop(self) -> None:
        """Disarm the tick job and the visibility listener."""
        with self._state_lock:
            if self._scheduler is None:
                return

            try:
                self._scheduler.shutdown(wait=False)
            except Exception as e:
                logger.error(f"Error shutting down tick scheduler: {e}", exc_info=True)
            self._scheduler = None

            if self.visibility_source is not None:
                self.visibility_source.unsubscribe(self._on_visibility_change)

            logger.info("SchedulerService stopped")

    def is_running(self) -> bool:
        return self._scheduler is not None

    def _on_visibility_change(self, visible: bool) -> None:
        if visible:
            self.tick(is_catch_up=True)

    def tick(self, is_catch_up: bool = False) -> None:
        """Evaluate all scheduled rules once and fire the due ones.

        Args:
            is_catch_up: True for ticks run on start or on becoming visible
        """
        with self._tick_lock:
            self._tick(is_catch_up)

    def _tick(self, is_catch_up: bool) -> None:
        try:
            rules = self.rule_repo.find_all()
            tasks = self.task_repo.find_all()
        except Exception as e:
            logger.error(f"Skipping scheduler tick, store read failed: {e}", exc_info=True)
            return

        now_ms = self.clock.now()
        results = evaluate_scheduled_rules(now_ms, rules, tasks)
        rules_fired = 0
        tasks_affected = 0

        for rule, evaluation in results:
            # persist before firing so a crash in the callback cannot re-fire the rule
            stored = self._store_last_evaluated_at(rule, evaluation)

            if is_catch_up and rule.trigger.catch_up_policy == "skip_missed":
                self._push_skipped_entry(rule.id)
                continue

            rules_fired += 1
            try:
                self.on_rule_fired(stored or rule, evaluation, "scheduled")
            except Exception as e:
                logger.error(f"Scheduled rule {rule.id} callback failed: {e}", exc_info=True)

            if rule.trigger.type == "scheduled_one_time":
                try:
                    self.rule_repo.update(rule.id, {"enabled": False})
                    logger.info(f"Disabled one-time rule {rule.id} after firing")
                except Exception as e:
                    logger.error(f"Failed to disable one-time rule {rule.id}: {e}", exc_info=True)

            if evaluation.matching_task_ids is not None:
                tasks_affected += len(evaluation.matching_task_ids)
            else:
                tasks_affected += 1

        self._refresh_stale_rules(rules, {rule.id for rule, _ in results}, now_ms)

        if results and self.on_tick_complete is not None:
            summary = TickSummary(
                rules_evaluated=sum(
                    1
                    for r in rules
                    if r.enabled and r.broken_reason is None and is_scheduled_trigger(r.trigger)
                ),
                rules_fired=rules_fired,
                tasks_affected=tasks_affected,
                is_catch_up=is_catch_up,
            )
            try:
                self.on_tick_complete(summary)
            except Exception as e:
                logger.error(f"Tick summary callback failed: {e}", exc_info=True)

    def evaluate_single_rule(self, rule: AutomationRule) -> None:
        """Fire a scheduled rule right now, regardless of its schedule ("run now")."""
        if not is_scheduled_trigger(rule.trigger):
            logger.warning(f"Rule {rule.id} is not scheduled, cannot run it now")
            return

        now = from_ms(self.clock.now())
        evaluation = ScheduleEvaluation(should_fire=True, new_last_evaluated_at=now)
        stored = self._store_last_evaluated_at(rule, evaluation)
        self.on_rule_fired(stored or rule, evaluation, "manual")

    def _store_last_evaluated_at(
        self, rule: AutomationRule, evaluation: ScheduleEvaluation
    ) -> AutomationRule | None:
        try:
            current = self.rule_repo.find_by_id(rule.id)
            if current is None or not is_scheduled_trigger(current.trigger):
                return None
            trigger = current.trigger.model_copy(
                update={"last_evaluated_at": evaluation.new_last_evaluated_at}
            )
            return self.rule_repo.update(rule.id, {"trigger": trigger})
        except Exception as e:
            # the rule may fire again next tick
            logger.error(f"Failed to store last_evaluated_at for rule {rule.id}: {e}", exc_info=True)
            return None

    def _push_skipped_entry(self, rule_id: str) -> None:
        try:
            rule = self.rule_repo.find_by_id(rule_id)
            if rule is None:
                return
            entry = ExecutionLogEntry(
                timestamp=from_ms(self.clock.now()),
                trigger_description=describe_trigger(rule.trigger),
                action_description="Catch-up suppressed by skip_missed policy",
                task_name="",
                execution_type="skipped",
            )
            limit = get_settings().EXECUTION_LOG_LIMIT
            self.rule_repo.update(
                rule_id, {"recent_executions": [*rule.recent_executions, entry][-limit:]}
            )
            logger.info(f"Skipped missed run of rule {rule_id}")
        except Exception as e:
            logger.error(f"Failed to log skipped run for rule {rule_id}: {e}", exc_info=True)

    def _refresh_stale_rules(
        self, rules: list[AutomationRule], fired_ids: set[str], now_ms: int
    ) -> None:
        """Move last_evaluated_at forward on rules that did not fire.

        Keeps catch-up windows from growing across long idle periods. Interval
        rules only move once their interval has elapsed; the others once they
        are staler than two ticks.
        """
        stale_after_ms = self.tick_interval_ms * 2
        now = from_ms(now_ms)

        for rule in rules:
            if not rule.enabled or rule.broken_reason is not None:
                continue
            if not is_scheduled_trigger(rule.trigger) or rule.id in fired_ids:
                continue

            last = rule.trigger.last_evaluated_at
            last_ms = to_ms(last) if last is not None else 0

            if rule.trigger.type == "scheduled_interval":
                stale = now_ms - last_ms >= rule.trigger.schedule.interval_minutes * 60_000
            else:
                stale = now_ms - last_ms > stale_after_ms

            if stale:
                self._store_last_evaluated_at(
                    rule, ScheduleEvaluation(should_fire=False, new_last_evaluated_at=now)
                )
