"""Recurring ticketed lottery engine."""

__version__ = "1.0.0"
