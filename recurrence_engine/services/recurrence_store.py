"""
Recurrence Store

Persistence interface the engine consumes, and its SQLModel implementation.
Instance creation is safe to retry: ``(rule_id, due_at)`` maps to at most one
task row. The cursor is only ever written through a compare-and-swap.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Any, List, Optional, Tuple
import logging

from sqlalchemy import and_, func, or_, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from recurrence_engine.errors import InvalidRule, PersistenceError
from recurrence_engine.models.recurrence_rule import RecurrenceRule
from recurrence_engine.models.task import Task
from recurrence_engine.utils.clock import utcnow

logger = logging.getLogger(__name__)

# Fields a rule edit may change; the cursor is handled separately
EDITABLE_RULE_FIELDS = (
    "period_type",
    "period_value",
    "repeat_days",
    "end_date",
    "infinite_repeat",
    "anchor_date",
)


class RecurrenceStore(ABC):
    """Abstract interface for recurrence rule and instance persistence."""

    @abstractmethod
    def load_active_rules(self, now: datetime, user_id: Optional[str] = None) -> List[RecurrenceRule]:
        """Rules that are infinite, unbounded, or whose end date is after ``now``; optionally one user's only."""

    @abstractmethod
    def create_instance(self, rule: RecurrenceRule, due_at: datetime) -> Task:
        """Create the task instance for ``(rule, due_at)``, or return the existing one."""

    @abstractmethod
    def advance_cursor(self, rule_id: int, expected: Optional[datetime], new_cursor: datetime) -> bool:
        """Move the cursor from ``expected`` to ``new_cursor``; False if another writer got there first."""

    @abstractmethod
    def get_rule(self, rule_id: int) -> Optional[RecurrenceRule]:
        pass

    @abstractmethod
    def get_rule_for_task(self, task_id: int) -> Optional[RecurrenceRule]:
        pass

    @abstractmethod
    def upsert_rule(self, rule: RecurrenceRule) -> RecurrenceRule:
        pass

    @abstractmethod
    def delete_rule(self, rule_id: int) -> bool:
        pass

    @abstractmethod
    def get_task(self, task_id: int) -> Optional[Task]:
        pass

    @abstractmethod
    def list_rules(
        self,
        now: datetime,
        user_id: Optional[str] = None,
        period_type: Optional[str] = None,
        active: Optional[bool] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> Tuple[List[RecurrenceRule], int]:
        """Return one page of rules and the total number matching the filters."""

    @abstractmethod
    def count_rules(self, now: datetime, user_id: Optional[str] = None) -> Dict[str, Any]:
        """Return ``total``, ``active``, ``expired`` and a ``by_type`` breakdown."""


def _active_clause(now: datetime):
    return or_(
        RecurrenceRule.infinite_repeat == True,  # noqa: E712
        RecurrenceRule.end_date.is_(None),
        RecurrenceRule.end_date > now,
    )


def _expired_clause(now: datetime):
    return and_(
        RecurrenceRule.infinite_repeat == False,  # noqa: E712
        RecurrenceRule.end_date.is_not(None),
        RecurrenceRule.end_date <= now,
    )


class SQLRecurrenceStore(RecurrenceStore):
    """RecurrenceStore backed by SQLModel; every call uses its own session."""

    def __init__(self, engine: Engine):
        self.engine = engine

    @contextmanager
    def _session(self):
        try:
            with Session(self.engine, expire_on_commit=False) as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Recurrence store operation failed: {str(e)}")
            raise PersistenceError(f"Recurrence store failure: {e.__class__.__name__}") from e

    def load_active_rules(self, now: datetime, user_id: Optional[str] = None) -> List[RecurrenceRule]:
        statement = self._filtered(select(RecurrenceRule), now, user_id, None, True).order_by(RecurrenceRule.id)
        with self._session() as session:
            return list(session.exec(statement).all())

    @staticmethod
    def _find_instance(session: Session, rule_id: int, due_at: datetime) -> Optional[Task]:
        statement = select(Task).where(
            Task.recurrence_rule_id == rule_id,
            Task.occurrence_due_at == due_at,
        )
        return session.exec(statement).first()

    def create_instance(self, rule: RecurrenceRule, due_at: datetime) -> Task:
        with self._session() as session:
            existing = self._find_instance(session, rule.id, due_at)
            if existing is not None:
                logger.info(f"Instance for rule {rule.id} due {due_at.isoformat()} already exists: task {existing.id}")
                return existing

            template = session.get(Task, rule.task_id)
            if template is None:
                raise InvalidRule(
                    f"Owner task {rule.task_id} of rule {rule.id} not found",
                    details={"rule_id": rule.id, "task_id": rule.task_id}
                )

            instance = template.build_occurrence(rule.id, due_at)
            session.add(instance)
            try:
                session.commit()
            except IntegrityError:
                # A concurrent writer inserted the same occurrence first
                session.rollback()
                existing = self._find_instance(session, rule.id, due_at)
                if existing is None:
                    raise
                return existing
            session.refresh(instance)
            logger.info(f"Created task {instance.id} for rule {rule.id} due {due_at.isoformat()}")
            return instance

    def advance_cursor(self, rule_id: int, expected: Optional[datetime], new_cursor: datetime) -> bool:
        if expected is not None and new_cursor <= expected:
            raise ValueError(
                f"Cursor for rule {rule_id} can only move forward: {expected.isoformat()} -> {new_cursor.isoformat()}"
            )

        statement = update(RecurrenceRule).where(RecurrenceRule.id == rule_id)
        if expected is None:
            statement = statement.where(RecurrenceRule.last_materialized_at.is_(None))
        else:
            statement = statement.where(RecurrenceRule.last_materialized_at == expected)
        statement = statement.values(last_materialized_at=new_cursor, updated_at=utcnow())

        with self._session() as session:
            result = session.execute(statement)
            session.commit()
            return result.rowcount == 1

    def get_rule(self, rule_id: int) -> Optional[RecurrenceRule]:
        with self._session() as session:
            return session.get(RecurrenceRule, rule_id)

    def get_rule_for_task(self, task_id: int) -> Optional[RecurrenceRule]:
        with self._session() as session:
            return session.exec(select(RecurrenceRule).where(RecurrenceRule.task_id == task_id)).first()

    def upsert_rule(self, rule: RecurrenceRule) -> RecurrenceRule:
        with self._session() as session:
            existing = session.get(RecurrenceRule, rule.id) if rule.id is not None else None
            if existing is None:
                rule.updated_at = utcnow()
                session.add(rule)
                session.commit()
                session.refresh(rule)
                return rule

            for name in EDITABLE_RULE_FIELDS:
                setattr(existing, name, getattr(rule, name))
            # Never write the cursor backwards over a concurrent advance
            if rule.last_materialized_at is not None and (
                existing.last_materialized_at is None
                or rule.last_materialized_at > existing.last_materialized_at
            ):
                existing.last_materialized_at = rule.last_materialized_at
            existing.updated_at = utcnow()
            session.add(existing)
            session.commit()
            session.refresh(existing)
            return existing

    def delete_rule(self, rule_id: int) -> bool:
        with self._session() as session:
            rule = session.get(RecurrenceRule, rule_id)
            if rule is None:
                return False
            session.delete(rule)
            session.commit()
            return True

    def get_task(self, task_id: int) -> Optional[Task]:
        with self._session() as session:
            return session.get(Task, task_id)

    @staticmethod
    def _filtered(statement, now, user_id, period_type, active):
        if user_id:
            statement = statement.join(Task, Task.id == RecurrenceRule.task_id).where(Task.user_id == user_id)
        if period_type:
            statement = statement.where(RecurrenceRule.period_type == period_type)
        if active is True:
            statement = statement.where(_active_clause(now))
        elif active is False:
            statement = statement.where(_expired_clause(now))
        return statement

    def list_rules(
        self,
        now: datetime,
        user_id: Optional[str] = None,
        period_type: Optional[str] = None,
        active: Optional[bool] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> Tuple[List[RecurrenceRule], int]:
        statement = self._filtered(select(RecurrenceRule), now, user_id, period_type, active)
        with self._session() as session:
            total = session.exec(select(func.count()).select_from(statement.subquery())).one()
            page = session.exec(
                statement.order_by(RecurrenceRule.id.desc()).offset(offset).limit(limit)
            ).all()
            return list(page), total

    def count_rules(self, now: datetime, user_id: Optional[str] = None) -> Dict[str, Any]:
        def count(active: Optional[bool]) -> int:
            statement = self._filtered(select(RecurrenceRule.id), now, user_id, None, active)
            return session.exec(select(func.count()).select_from(statement.subquery())).one()

        with self._session() as session:
            by_type_statement = self._filtered(
                select(RecurrenceRule.period_type, func.count(RecurrenceRule.id)),
                now, user_id, None, None,
            ).group_by(RecurrenceRule.period_type)
            by_type = {period_type: n for period_type, n in session.exec(by_type_statement).all()}
            return {
                "total": count(None),
                "active": count(True),
                "expired": count(False),
                "by_type": by_type,
            }
