"""Injectable clock and epoch/datetime conversion helpers."""

import time
from datetime import UTC, datetime, tzinfo
from typing import Protocol
from zoneinfo import ZoneInfo

from automation_engine.core.config import get_settings


def get_timezone(name: str | None = None) -> tzinfo:
    """Resolve the timezone used for calendar arithmetic.

    Args:
        name: IANA zone name (defaults to ``Settings.TIMEZONE``)

    Returns:
        tzinfo instance
    """
    name = name or get_settings().TIMEZONE
    if name.upper() == "UTC":
        return UTC
    return ZoneInfo(name)


def from_ms(ms: int, tz: tzinfo | None = None) -> datetime:
    """Convert epoch milliseconds to an aware datetime in ``tz``."""
    return datetime.fromtimestamp(ms / 1000, tz=tz or get_timezone())


def to_ms(value: datetime) -> int:
    """Convert an aware datetime to epoch milliseconds."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=get_timezone())
    return round(value.timestamp() * 1000)


class Clock(Protocol):
    """Source of the current instant."""

    def now(self) -> int:
        """Epoch milliseconds."""
        ...

    def to_datetime(self) -> datetime:
        """Current instant as an aware datetime in the calendar timezone."""
        ...


class SystemClock:
    """Wall clock."""

    def now(self) -> int:
        return time.time_ns() // 1_000_000

    def to_datetime(self) -> datetime:
        return from_ms(self.now())


class FakeClock:
    """Manually driven clock for tests.

    Supports ``advance()`` and ``set()`` for deterministic time control.
    """

    def __init__(self, initial_time: int | datetime = 0):
        self._current = initial_time if isinstance(initial_time, int) else to_ms(initial_time)

    def now(self) -> int:
        return self._current

    def to_datetime(self) -> datetime:
        return from_ms(self._current)

    def advance(self, ms: int) -> None:
        """Advance time by ``ms`` milliseconds."""
        self._current += ms

    def set(self, value: int | datetime) -> None:
        """Jump to a specific instant."""
        self._current = value if isinstance(value, int) else to_ms(value)
