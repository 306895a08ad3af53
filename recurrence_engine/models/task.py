"""Task model for SQLModel.

The same table holds the task a rule is attached to (its template) and the
instances materialized from that rule.
"""
from sqlmodel import SQLModel, Field
from sqlalchemy import UniqueConstraint
from datetime import datetime
from typing import Optional
import re

from recurrence_engine.utils.clock import utcnow

_DATE_SUFFIX = re.compile(r"\s*\([^)]*\)$")


class Task(SQLModel, table=True):
    """Task entity: a template or a materialized occurrence of a recurring task."""

    __table_args__ = (
        UniqueConstraint("recurrence_rule_id", "occurrence_due_at", name="uq_task_rule_occurrence"),
    )

    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(max_length=100, index=True)
    title: str = Field(max_length=200, min_length=1)
    description: str | None = Field(default=None, max_length=1000)
    priority: str = Field(default="medium", max_length=20)  # high, medium, low
    board_id: Optional[str] = Field(default=None, max_length=100)
    list_id: Optional[str] = Field(default=None, max_length=100)
    status: str = Field(default="todo", max_length=20)  # todo, in_progress, completed, canceled
    completed: bool = Field(default=False)
    is_new: bool = Field(default=False)
    due_date: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    # Set only on materialized instances
    recurrence_rule_id: Optional[int] = Field(default=None, index=True)
    occurrence_due_at: Optional[datetime] = Field(default=None)

    def build_occurrence(self, rule_id: int, due_at: datetime) -> "Task":
        """Copy this task's template fields into a new instance due at ``due_at``."""
        now = utcnow()
        return Task(
            user_id=self.user_id,
            title=occurrence_title(self.title, due_at),
            description=self.description,
            priority=self.priority,
            board_id=self.board_id,
            list_id=self.list_id,
            status="todo",
            completed=False,
            is_new=True,
            due_date=due_at,
            created_at=now,
            updated_at=now,
            recurrence_rule_id=rule_id,
            occurrence_due_at=due_at,
        )


def occurrence_title(title: str, due_at: datetime) -> str:
    """``"Water plants"`` due Jan 5 becomes ``"Water plants (Jan 5)"``."""
    clean = _DATE_SUFFIX.sub("", title)
    return f"{clean} ({due_at.strftime('%b')} {due_at.day})"
