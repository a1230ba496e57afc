"""Domain services used by the automation engine."""
