"""Structured logging configuration for the automation engine."""

import json
import logging
import sys
from typing import Any

from automation_engine.core.config import get_settings

settings = get_settings()


class JSONFormatter(logging.Formatter):
    """Render log records as single-line JSON documents."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "logger": record.name,
            "level": record.levelname,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data)


def _build_formatter(log_format: str) -> logging.Formatter:
    if log_format == "json":
        return JSONFormatter()
    return logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


# Create logger for engine events
engine_logger = logging.getLogger("automation_engine")
engine_logger.setLevel(settings.LOG_LEVEL)

# Create console handler with structured format
console_handler = logging.StreamHandler(sys.stdout)
console_handler.setLevel(settings.LOG_LEVEL)
console_handler.setFormatter(_build_formatter(settings.LOG_FORMAT))

# Add handler to logger if not already added
if not engine_logger.handlers:
    engine_logger.addHandler(console_handler)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger under the engine's logger hierarchy.

    Args:
        name: Module name, usually ``__name__``.

    Returns:
        Logger that propagates to the configured ``automation_engine`` handler.
    """
    if name == "automation_engine" or name.startswith("automation_engine."):
        return logging.getLogger(name)
    return logging.getLogger(f"automation_engine.{name}")


def log_rule_execution(rule_id: str, action_type: str, entity_id: str) -> None:
    """
    Log a successful rule action.

    Args:
        rule_id: Rule that produced the action.
        action_type: Executed action kind.
        entity_id: Card or section the action applied to.
    """
    engine_logger.info(
        f"Rule executed - rule_id={rule_id}, action={action_type}, entity_id={entity_id}"
    )


def log_rule_disabled(rule_id: str, reason: str) -> None:
    """
    Log a rule being disabled by the engine.

    Args:
        rule_id: Disabled rule.
        reason: Reason tag (e.g. 'section_deleted').
    """
    engine_logger.warning(f"Rule disabled - rule_id={rule_id}, reason={reason}")
