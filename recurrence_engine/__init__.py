"""Recurrence engine: turns repeat rules on tasks into due task instances."""

__version__ = "1.0.0"
