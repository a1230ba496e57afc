"""Automation rule runtime: date and cron calculation, filtering, scheduling and execution."""
