"""Duplicate suppression for create_card actions.

Repeated scheduled fires (catch-up ticks, restarts after a crash) must not
produce the same card twice. A create_card is skipped when a card with the
same title already sits in the target section and was created inside the
lookback window.
"""

from collections.abc import Iterable

from automation_engine.core.clock import to_ms
from automation_engine.core.config import get_settings
from automation_engine.schemas.task import Task


def should_skip_create_card(
    title: str,
    section_id: str,
    tasks: Iterable[Task],
    lookback_ms: int,
    now_ms: int,
) -> bool:
    """Check whether a create_card action would duplicate a recent card.

    Args:
        title: Title of the card to create
        section_id: Section the card would be created in
        tasks: Cards to check against
        lookback_ms: Width of the lookback window
        now_ms: Current instant in epoch ms

    Returns:
        True if the action should be skipped
    """
    return any(
        task.description == title
        and task.section_id == section_id
        and now_ms - to_ms(task.created_at) < lookback_ms
        for task in tasks
    )


def get_lookback_ms(trigger_type: str, interval_minutes: int | None = None) -> int:
    """Lookback window for a trigger type.

    One interval for interval triggers, a flat day for everything else.
    """
    if trigger_type == "scheduled_interval" and interval_minutes is not None:
        return interval_minutes * 60_000
    return get_settings().CREATE_CARD_DEFAULT_LOOKBACK_MS
