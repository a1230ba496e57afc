"""Automation rule schemas: triggers, filters, actions, events and undo snapshots."""

from datetime import UTC, datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from automation_engine.core.automation.date_calculations import is_valid_date_option


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------------

EventTriggerType = Literal[
    "card_moved_into_section",
    "card_moved_out_of_section",
    "card_created_in_section",
    "card_marked_complete",
    "card_marked_incomplete",
    "section_created",
    "section_renamed",
]

ScheduledTriggerType = Literal[
    "scheduled_interval",
    "scheduled_cron",
    "scheduled_due_date_relative",
    "scheduled_one_time",
]

CatchUpPolicy = Literal["catch_up_latest", "skip_missed"]

SCHEDULED_TRIGGER_TYPES: frozenset[str] = frozenset(
    ["scheduled_interval", "scheduled_cron", "scheduled_due_date_relative", "scheduled_one_time"]
)

# Triggers that point at a section the card moves into/out of
SECTION_TRIGGER_TYPES: frozenset[str] = frozenset(
    ["card_moved_into_section", "card_moved_out_of_section", "card_created_in_section"]
)


class EventTrigger(BaseModel):
    """Trigger fired by a task or section event."""

    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={
            "example": {"type": "card_moved_into_section", "section_id": "section-done"}
        },
    )

    type: EventTriggerType = Field(..., description="Event trigger type")
    section_id: str | None = Field(None, description="Section the trigger watches")


class IntervalSchedule(BaseModel):
    """Fire every N minutes."""

    interval_minutes: int = Field(..., ge=1, description="Interval in minutes")


class CronSchedule(BaseModel):
    """Weekly or monthly schedule at a fixed time of day.

    ``days_of_week`` uses cron numbering (0=Sunday ... 6=Saturday). An empty
    ``days_of_week`` and ``days_of_month`` means every day.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"hour": 9, "minute": 0, "days_of_week": [1], "days_of_month": []}
        }
    )

    hour: int = Field(..., ge=0, le=23, description="Hour of day")
    minute: int = Field(..., ge=0, le=59, description="Minute of hour")
    days_of_week: list[Annotated[int, Field(ge=0, le=6)]] = Field(
        default_factory=list, description="Days of week (0=Sunday)"
    )
    days_of_month: list[Annotated[int, Field(ge=1, le=31)]] = Field(
        default_factory=list, description="Days of month"
    )

    @field_validator("days_of_week", "days_of_month")
    @classmethod
    def _normalize_days(cls, value: list[int]) -> list[int]:
        return sorted(set(value))

    @model_validator(mode="after")
    def _check_exclusive_days(self) -> "CronSchedule":
        if self.days_of_week and self.days_of_month:
            raise ValueError("days_of_week and days_of_month are mutually exclusive")
        return self


class DueDateRelativeSchedule(BaseModel):
    """Fire when a card's due date plus an offset is reached."""

    offset_minutes: int = Field(
        ..., description="Offset from the due date in minutes (negative = before)"
    )
    display_unit: Literal["minutes", "hours", "days"] | None = Field(
        None, description="Unit the offset was entered in"
    )


class OneTimeSchedule(BaseModel):
    """Fire once at a specific instant."""

    fire_at: datetime = Field(..., description="Instant to fire at")


class _ScheduledTriggerBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    last_evaluated_at: datetime | None = Field(
        None, description="Instant of the last evaluation that fired or was refreshed"
    )
    catch_up_policy: CatchUpPolicy = Field(
        default="catch_up_latest", description="What to do with fires missed while stopped"
    )


class ScheduledIntervalTrigger(_ScheduledTriggerBase):
    type: Literal["scheduled_interval"] = "scheduled_interval"
    schedule: IntervalSchedule


class ScheduledCronTrigger(_ScheduledTriggerBase):
    type: Literal["scheduled_cron"] = "scheduled_cron"
    schedule: CronSchedule


class ScheduledDueDateRelativeTrigger(_ScheduledTriggerBase):
    type: Literal["scheduled_due_date_relative"] = "scheduled_due_date_relative"
    schedule: DueDateRelativeSchedule


class ScheduledOneTimeTrigger(_ScheduledTriggerBase):
    type: Literal["scheduled_one_time"] = "scheduled_one_time"
    schedule: OneTimeSchedule


ScheduledTrigger = Annotated[
    Union[
        ScheduledIntervalTrigger,
        ScheduledCronTrigger,
        ScheduledDueDateRelativeTrigger,
        ScheduledOneTimeTrigger,
    ],
    Field(discriminator="type"),
]

Trigger = Annotated[
    Union[
        EventTrigger,
        ScheduledIntervalTrigger,
        ScheduledCronTrigger,
        ScheduledDueDateRelativeTrigger,
        ScheduledOneTimeTrigger,
    ],
    Field(discriminator="type"),
]


def is_scheduled_trigger(trigger: Any) -> bool:
    """Check whether a trigger is time-driven."""
    return trigger.type in SCHEDULED_TRIGGER_TYPES


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------

DateUnit = Literal["days", "working_days"]


class SectionFilter(BaseModel):
    """Card is (or is not) in a section."""

    type: Literal["in_section", "not_in_section"]
    section_id: str = Field(..., description="Section ID")


class StateFilter(BaseModel):
    """Parameterless filters on due date and completion state."""

    type: Literal[
        "has_due_date",
        "no_due_date",
        "is_overdue",
        "due_today",
        "due_tomorrow",
        "due_this_week",
        "due_next_week",
        "due_this_month",
        "due_next_month",
        "not_due_today",
        "not_due_tomorrow",
        "not_due_this_week",
        "not_due_next_week",
        "not_due_this_month",
        "not_due_next_month",
        "is_complete",
        "is_incomplete",
    ]


class DueComparisonFilter(BaseModel):
    """Due date compared to N days from now."""

    type: Literal["due_in_less_than", "due_in_more_than", "due_in_exactly"]
    value: int = Field(..., ge=0, description="Number of days")
    unit: DateUnit = Field(default="days", description="Calendar or working days")


class DueBetweenFilter(BaseModel):
    """Due date inside an inclusive window of days from now."""

    type: Literal["due_in_between"] = "due_in_between"
    min_value: int = Field(..., ge=0, description="Window start in days")
    max_value: int = Field(..., ge=0, description="Window end in days")
    unit: DateUnit = Field(default="days", description="Calendar or working days")

    @model_validator(mode="after")
    def _check_range(self) -> "DueBetweenFilter":
        if self.min_value > self.max_value:
            raise ValueError("min_value must be less than or equal to max_value")
        return self


class AgeFilter(BaseModel):
    """Elapsed time since a card timestamp exceeds a threshold."""

    type: Literal[
        "created_more_than",
        "completed_more_than",
        "last_updated_more_than",
        "not_modified_in",
        "overdue_by_more_than",
        "in_section_for_more_than",
    ]
    value: int = Field(..., ge=0, description="Threshold amount")
    unit: DateUnit = Field(default="days", description="Threshold unit")


CardFilter = Annotated[
    Union[SectionFilter, StateFilter, DueComparisonFilter, DueBetweenFilter, AgeFilter],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

ActionType = Literal[
    "move_card_to_top_of_section",
    "move_card_to_bottom_of_section",
    "mark_card_complete",
    "mark_card_incomplete",
    "set_due_date",
    "remove_due_date",
    "create_card",
]

MonthTarget = Literal["this_month", "next_month"]

# Placeholder section ID resolved to the section of the triggering event
TRIGGER_SECTION_SENTINEL = "__trigger_section__"


class ActionParams(BaseModel):
    """Parameters shared by every action kind; each kind reads the ones it needs."""

    section_id: str | None = Field(None, description="Target section")
    date_option: str | None = Field(None, description="Relative date option for set_due_date")
    specific_month: int | None = Field(None, ge=1, le=12, description="Month for specific_date")
    specific_day: int | None = Field(None, ge=1, le=31, description="Day for specific_date")
    month_target: MonthTarget | None = Field(None, description="this_month or next_month")
    position: Literal["top", "bottom"] | None = Field(None, description="Placement in section")
    card_title: str | None = Field(None, max_length=500, description="Title for create_card")
    card_date_option: str | None = Field(
        None, description="Relative due date option for create_card"
    )

    @field_validator("date_option", "card_date_option")
    @classmethod
    def _check_date_option(cls, value: str | None) -> str | None:
        if value is not None and not is_valid_date_option(value):
            raise ValueError(f"Unsupported date option: {value}")
        return value


class ActionConfig(ActionParams):
    """Action configured on a rule."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"type": "set_due_date", "date_option": "next_working_day"}
        }
    )

    type: ActionType = Field(..., description="Action type")

    def to_params(self) -> ActionParams:
        """Strip the discriminant, leaving the parameter bag."""
        return ActionParams.model_validate(self.model_dump(exclude={"type"}))


class RuleAction(BaseModel):
    """Concrete action produced by matching a rule against an event."""

    rule_id: str
    action_type: ActionType
    target_entity_id: str
    params: ActionParams = Field(default_factory=ActionParams)


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

ExecutionType = Literal["event", "scheduled", "skipped", "manual"]


class ExecutionLogEntry(BaseModel):
    """One line of a rule's recent-executions log."""

    timestamp: datetime = Field(..., description="When the rule ran")
    trigger_description: str = Field(..., description="What triggered the run")
    action_description: str = Field(..., description="What the action did")
    task_name: str = Field(..., description="Card affected")
    execution_type: ExecutionType = Field(default="event", description="How the rule was run")


class AutomationRule(BaseModel):
    """Automation rule: when <trigger>, if <filters>, then <action>."""

    id: str = Field(..., description="Rule ID")
    project_id: str = Field(..., description="Owning project ID")
    name: str = Field(..., min_length=1, max_length=200, description="Display name")
    trigger: Trigger = Field(..., description="Trigger configuration")
    filters: list[CardFilter] = Field(default_factory=list, description="AND-ed card filters")
    action: ActionConfig = Field(..., description="Action configuration")
    enabled: bool = Field(default=True, description="Whether the rule is enabled")
    broken_reason: str | None = Field(None, description="Why the rule was disabled, if broken")
    execution_count: int = Field(default=0, ge=0, description="Successful executions")
    last_executed_at: datetime | None = Field(None, description="Last successful execution")
    recent_executions: list[ExecutionLogEntry] = Field(
        default_factory=list, description="Rolling execution log, newest last"
    )
    order: float = Field(default=0, description="Display order")
    bulk_paused_at: datetime | None = Field(
        None, description="Set when the rule was paused by a bulk pause"
    )
    created_at: datetime = Field(default_factory=_utcnow, description="Creation timestamp")
    updated_at: datetime = Field(default_factory=_utcnow, description="Last update timestamp")


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

DomainEventType = Literal[
    "task.created",
    "task.updated",
    "task.deleted",
    "section.created",
    "section.updated",
    "schedule.fired",
]


class DomainEvent(BaseModel):
    """State change emitted by the host or by an executed action."""

    type: DomainEventType
    entity_id: str
    project_id: str | None = None
    changes: dict[str, Any] = Field(default_factory=dict, description="New values")
    previous_values: dict[str, Any] = Field(
        default_factory=dict, description="Values before the mutation"
    )
    triggered_by_rule: str | None = Field(None, description="Rule that caused this event")
    depth: int = Field(default=0, ge=0, description="Cascade distance from the external event")


# ---------------------------------------------------------------------------
# Undo
# ---------------------------------------------------------------------------


class PreviousState(BaseModel):
    """Partial task state captured before an action.

    Only fields present in ``model_fields_set`` are restored on undo, so an
    explicit ``due_date=None`` restores a cleared due date while an omitted
    field is left alone.
    """

    section_id: str | None = None
    order: float | None = None
    completed: bool | None = None
    completed_at: datetime | None = None
    due_date: datetime | None = None


class SubtaskSnapshot(BaseModel):
    """Completion state of a descendant before a completion cascade."""

    task_id: str
    completed: bool
    completed_at: datetime | None = None


class UndoSnapshot(BaseModel):
    """Everything needed to revert one executed action."""

    rule_id: str
    rule_name: str
    action_type: ActionType
    target_entity_id: str
    previous_state: PreviousState = Field(default_factory=PreviousState)
    timestamp: int = Field(..., description="Epoch ms when the action ran")
    created_entity_id: str | None = None
    subtask_snapshots: list[SubtaskSnapshot] = Field(default_factory=list)
