"""Recurrence schemas for the control surface."""
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List, Dict, Any

from recurrence_engine.models.period import PeriodType, Weekday


class RuleCreate(BaseModel):
    """Schema for attaching a recurrence rule to a task."""
    period_type: PeriodType
    period_value: int = Field(default=1, ge=1, le=365)  # every N periods
    repeat_days: List[Weekday] = Field(default_factory=list, max_length=7)  # weekly only
    end_date: Optional[datetime] = None
    infinite_repeat: bool = False
    anchor_date: Optional[datetime] = None  # defaults to the task's due date


class RuleUpdate(BaseModel):
    """Schema for partially updating a recurrence rule."""
    period_type: Optional[PeriodType] = None
    period_value: Optional[int] = Field(None, ge=1, le=365)
    repeat_days: Optional[List[Weekday]] = Field(None, max_length=7)
    end_date: Optional[datetime] = None
    infinite_repeat: Optional[bool] = None
    anchor_date: Optional[datetime] = None


class RuleResponse(BaseModel):
    """Schema for recurrence rule API responses."""
    id: int
    task_id: int
    period_type: str
    period_value: int
    repeat_days: List[str] = []
    end_date: Optional[datetime] = None
    infinite_repeat: bool
    anchor_date: datetime
    last_materialized_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class RuleListResponse(BaseModel):
    rules: List[RuleResponse]
    pagination: Dict[str, Any]


class OccurrenceResponse(BaseModel):
    """A computed, not yet materialized, occurrence."""
    rule_id: int
    due_at: datetime

    class Config:
        from_attributes = True


class UpcomingOccurrenceResponse(BaseModel):
    rule_id: int
    task_id: int
    title: str
    priority: str
    due_at: datetime
    period_type: str
    period_value: int


class RuleIssueResponse(BaseModel):
    rule_id: Optional[int]
    kind: str
    message: str

    class Config:
        from_attributes = True


class ProcessingRunResponse(BaseModel):
    """Summary of one processing pass."""
    status: str
    started_at: datetime
    as_of: datetime
    finished_at: Optional[datetime] = None
    user_id: Optional[str] = None
    rules_evaluated: int
    occurrences_materialized: int
    created_task_ids: List[int] = []
    per_rule_errors: List[RuleIssueResponse] = []
    warnings: List[RuleIssueResponse] = []
