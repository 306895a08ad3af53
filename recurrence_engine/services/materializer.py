"""Materializer: turns one due occurrence into a task instance and advances the rule's cursor."""
import logging

from recurrence_engine.errors import ConflictError
from recurrence_engine.models.recurrence_rule import RecurrenceRule
from recurrence_engine.models.task import Task
from recurrence_engine.services.occurrence_calculator import Occurrence
from recurrence_engine.services.recurrence_store import RecurrenceStore

logger = logging.getLogger(__name__)


class Materializer:
    """Creates instances for due occurrences, one create and one cursor write per call."""

    def __init__(self, store: RecurrenceStore):
        self.store = store

    def materialize(self, rule: RecurrenceRule, occurrence: Occurrence) -> Task:
        """
        Create the instance for ``occurrence`` and move the rule's cursor to it.

        The create is idempotent per ``(rule, due_at)``, so if the cursor write
        is lost (crash, conflict) the next run re-emits the same occurrence and
        gets the existing instance back instead of a duplicate.

        Raises:
            PersistenceError: The store failed to create the instance or write the cursor
            ConflictError: Another writer moved the cursor since ``rule`` was loaded
        """
        instance = self.store.create_instance(rule, occurrence.due_at)

        expected = rule.last_materialized_at
        if not self.store.advance_cursor(rule.id, expected, occurrence.due_at):
            raise ConflictError(
                f"Cursor of rule {rule.id} changed concurrently",
                details={
                    "rule_id": rule.id,
                    "expected": expected.isoformat() if expected else None,
                    "due_at": occurrence.due_at.isoformat(),
                }
            )

        rule.last_materialized_at = occurrence.due_at
        logger.debug(f"Rule {rule.id} cursor advanced to {occurrence.due_at.isoformat()}")
        return instance
