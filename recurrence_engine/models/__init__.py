"""SQLModel tables and period types."""
from recurrence_engine.models.task import Task
from recurrence_engine.models.recurrence_rule import RecurrenceRule
from recurrence_engine.models.period import PeriodType, Weekday

__all__ = ["Task", "RecurrenceRule", "PeriodType", "Weekday"]
