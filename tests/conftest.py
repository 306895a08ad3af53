"""Shared fixtures: in-memory SQLite store, task/rule factories."""
import pytest
from sqlmodel import Session, select

from recurrence_engine.db.config import create_db_engine
from recurrence_engine.db.init import init_db
from recurrence_engine.models.recurrence_rule import RecurrenceRule
from recurrence_engine.models.task import Task
from recurrence_engine.services.recurrence_processor import RecurrenceProcessor
from recurrence_engine.services.recurrence_store import SQLRecurrenceStore
from recurrence_engine.utils.metrics import MetricsCollector


@pytest.fixture
def engine():
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    return SQLRecurrenceStore(engine)


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def processor(store, metrics):
    return RecurrenceProcessor(store, metrics=metrics)


@pytest.fixture
def make_task(engine):
    """Insert a template task and return it."""
    def _make_task(title="Water plants", user_id="user-1", due_date=None, **fields):
        task = Task(title=title, user_id=user_id, due_date=due_date, **fields)
        with Session(engine, expire_on_commit=False) as session:
            session.add(task)
            session.commit()
            session.refresh(task)
        return task
    return _make_task


@pytest.fixture
def make_rule(store, make_task):
    """Insert a rule (and its owner task unless ``task`` is given) straight through the store."""
    def _make_rule(task=None, **fields):
        task = task or make_task(due_date=fields.get("anchor_date"))
        fields.setdefault("period_type", "daily")
        fields.setdefault("infinite_repeat", True)
        return store.upsert_rule(RecurrenceRule(task_id=task.id, **fields))
    return _make_rule


@pytest.fixture
def instances(engine):
    """Materialized instances, oldest due first."""
    def _instances(rule_id=None):
        statement = select(Task).where(Task.recurrence_rule_id.is_not(None))
        if rule_id is not None:
            statement = statement.where(Task.recurrence_rule_id == rule_id)
        with Session(engine) as session:
            return list(session.exec(statement.order_by(Task.occurrence_due_at, Task.id)).all())
    return _instances
