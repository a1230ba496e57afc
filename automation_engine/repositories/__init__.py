"""Stores consumed by the automation engine."""
