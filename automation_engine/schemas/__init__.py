"""Pydantic schemas for automation rules, cards and sections."""
