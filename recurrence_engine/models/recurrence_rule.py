"""Recurrence Rule model for SQLModel."""
from sqlmodel import SQLModel, Field
from datetime import datetime
from typing import List, Optional
from sqlalchemy import Column, Integer, String, ForeignKey, JSON

from recurrence_engine.models.period import Period, PeriodType, WeeklyPeriod, build_period
from recurrence_engine.utils.clock import utcnow


class RecurrenceRule(SQLModel, table=True):
    """Repeat configuration attached to one task, with its materialization cursor."""

    __tablename__ = "recurrence_rule"

    id: Optional[int] = Field(default=None, primary_key=True)
    task_id: int = Field(
        sa_column=Column(Integer, ForeignKey("task.id", ondelete="CASCADE"), unique=True, nullable=False)
    )
    period_type: str = Field(sa_column=Column(String(20), nullable=False))  # daily, weekly, monthly, yearly
    period_value: int = Field(default=1)  # every N periods
    repeat_days: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))  # weekly only
    end_date: Optional[datetime] = Field(default=None)  # exclusive; ignored when infinite_repeat
    infinite_repeat: bool = Field(default=False)
    anchor_date: datetime  # first occurrence reference
    last_materialized_at: Optional[datetime] = Field(default=None)  # durable cursor, only moves forward
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def period(self) -> Period:
        return build_period(self.period_type, self.period_value, self.repeat_days)

    @property
    def is_degraded(self) -> bool:
        """Weekly rule with no weekdays selected."""
        return self.period_type == PeriodType.WEEKLY.value and not self.repeat_days

    @property
    def is_unbounded_without_end(self) -> bool:
        """Finite rule that never got an end date; treated as unbounded."""
        return not self.infinite_repeat and self.end_date is None

    @property
    def effective_end(self) -> Optional[datetime]:
        """Exclusive upper bound for occurrences, or None when unbounded."""
        return None if self.infinite_repeat else self.end_date

    def is_active(self, now: datetime) -> bool:
        end = self.effective_end
        return end is None or end > now

    def describe(self) -> str:
        period = self.period
        unit = PeriodType(self.period_type).value[:-2] if self.period_type != "daily" else "day"
        text = f"every {period.every} {unit}{'s' if period.every > 1 else ''}"
        if isinstance(period, WeeklyPeriod) and period.days:
            text += " on " + ", ".join(day.value for day in period.days)
        return text
