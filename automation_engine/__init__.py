"""Rule evaluation and execution runtime for board automations."""

__version__ = "0.1.0"
