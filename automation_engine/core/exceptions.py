"""Custom exceptions for the automation engine.

Data-level problems (missing cards, missing sections, incomplete action
parameters) are not exceptions: the executor skips them. The classes here
signal code/schema mismatches and invalid user input to the codecs.
"""


class AutomationError(Exception):
    """Base class for automation engine errors.

    Example:
        raise AutomationError("Rule store unavailable", code="RULE_STORE_ERROR")
    """

    def __init__(self, message: str, code: str = "AUTOMATION_ERROR") -> None:
        """Initialize automation error.

        Args:
            message: Human-readable error message.
            code: Error code (e.g., 'UNKNOWN_FILTER_TYPE').
        """
        super().__init__(message)
        self.code = code
        self.message = message


class UnhandledDateOptionError(AutomationError, ValueError):
    """Raised when a relative date option is not part of the closed option set."""

    def __init__(self, option: str) -> None:
        super().__init__(f"Unhandled date option: {option}", code="UNHANDLED_DATE_OPTION")
        self.option = option


class InvalidDateParamsError(AutomationError, ValueError):
    """Raised when a date option is missing the parameters it requires."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="INVALID_DATE_PARAMS")


class UnknownFilterTypeError(AutomationError):
    """Raised when a filter discriminant has no predicate."""

    def __init__(self, filter_type: str) -> None:
        super().__init__(f"Unknown filter type: {filter_type}", code="UNKNOWN_FILTER_TYPE")
        self.filter_type = filter_type


class UnknownActionTypeError(AutomationError):
    """Raised when an action discriminant has no handler."""

    def __init__(self, action_type: str) -> None:
        super().__init__(f"Unknown action type: {action_type}", code="UNKNOWN_ACTION_TYPE")
        self.action_type = action_type


class CronParseError(AutomationError, ValueError):
    """Raised when a cron expression is outside the supported subset."""

    def __init__(self, message: str, expression: str | None = None) -> None:
        super().__init__(message, code="CRON_PARSE_ERROR")
        self.expression = expression
