"""Tests for the initial schema migration."""
import importlib.util
from pathlib import Path

import pytest
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import create_engine, inspect

REVISION = Path(__file__).resolve().parents[1] / "alembic" / "versions" / "001_recurrence_engine.py"


@pytest.fixture
def revision():
    spec = importlib.util.spec_from_file_location("revision_001", REVISION)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_upgrade_and_downgrade(revision):
    engine = create_engine("sqlite://")
    with engine.connect() as conn:
        with Operations.context(MigrationContext.configure(conn)):
            revision.upgrade()

        inspector = inspect(conn)
        assert {"task", "recurrence_rule"} <= set(inspector.get_table_names())
        task_columns = {column["name"] for column in inspector.get_columns("task")}
        assert {"recurrence_rule_id", "occurrence_due_at"} <= task_columns
        rule_columns = {column["name"] for column in inspector.get_columns("recurrence_rule")}
        assert "last_materialized_at" in rule_columns

        with Operations.context(MigrationContext.configure(conn)):
            revision.downgrade()

        assert inspect(conn).get_table_names() == []
    engine.dispose()
