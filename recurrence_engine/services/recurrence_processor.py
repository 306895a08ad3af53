"""
Recurrence Processor

Runs one processing pass over all active rules: computes the occurrences due
by ``now``, materializes them in order, and returns a run summary. A failing
rule is recorded and skipped; it never aborts the pass.
"""

import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from recurrence_engine.errors import ConflictError, InvalidRule, PersistenceError, RecurrenceError
from recurrence_engine.models.period import Weekday
from recurrence_engine.models.recurrence_rule import RecurrenceRule
from recurrence_engine.services.materializer import Materializer
from recurrence_engine.services.occurrence_calculator import compute_occurrences
from recurrence_engine.services.recurrence_store import RecurrenceStore
from recurrence_engine.utils.clock import to_naive_utc, utcnow
from recurrence_engine.utils.logger import get_logger
from recurrence_engine.utils.metrics import MetricsCollector, metrics_collector

logger = get_logger("recurrence.processor")

DEFAULT_BACKFILL_CAP = 1


class RunStatus(str, Enum):
    COMPLETED = "completed"
    SKIPPED_OVERLAP = "skipped-overlap"


@dataclass
class RuleIssue:
    """A per-rule error or warning surfaced in the run summary."""
    rule_id: Optional[int]
    kind: str  # invalid-rule, persistence, conflict, unexpected, degraded-rule, unbounded-rule
    message: str


@dataclass
class ProcessingRun:
    """Summary of one processing pass."""
    started_at: datetime
    as_of: datetime
    finished_at: Optional[datetime] = None
    user_id: Optional[str] = None  # set when the pass covered one user's rules only
    rules_evaluated: int = 0
    occurrences_materialized: int = 0
    created_task_ids: List[int] = field(default_factory=list)
    per_rule_errors: List[RuleIssue] = field(default_factory=list)
    warnings: List[RuleIssue] = field(default_factory=list)
    status: RunStatus = RunStatus.COMPLETED

    @property
    def skipped(self) -> bool:
        return self.status is RunStatus.SKIPPED_OVERLAP

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


class RunGate:
    """Single-slot gate: at most one processing pass at a time."""

    def __init__(self):
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        return self._lock.acquire(blocking=False)

    def release(self):
        self._lock.release()

    @property
    def in_progress(self) -> bool:
        return self._lock.locked()


def _error_kind(error: Exception) -> str:
    if isinstance(error, InvalidRule):
        return "invalid-rule"
    if isinstance(error, PersistenceError):
        return "persistence"
    if isinstance(error, ConflictError):
        return "conflict"
    return "unexpected"


class RecurrenceProcessor:
    """Orchestrates processing passes over the recurrence store."""

    def __init__(
        self,
        store: RecurrenceStore,
        materializer: Optional[Materializer] = None,
        backfill_cap: int = DEFAULT_BACKFILL_CAP,
        gate: Optional[RunGate] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        """
        Args:
            store: Persistence interface for rules and instances
            materializer: Defaults to a Materializer over ``store``
            backfill_cap: Maximum occurrences materialized per rule per pass
            gate: Shared run gate; the scheduler's timer and manual triggers use the same one
            metrics: Defaults to the process-wide collector
        """
        if backfill_cap < 1:
            raise ValueError(f"backfill_cap must be at least 1, got {backfill_cap}")
        self.store = store
        self.materializer = materializer or Materializer(store)
        self.backfill_cap = backfill_cap
        self.gate = gate or RunGate()
        self.metrics = metrics or metrics_collector

    def run_once(self, now: Optional[datetime] = None, user_id: Optional[str] = None) -> ProcessingRun:
        """
        Materialize every occurrence due by ``now``, up to the backfill cap per rule.

        ``user_id`` limits the pass to rules on that user's tasks.

        Returns a run with ``status=skipped-overlap`` and no side effects when
        another pass holds the gate.

        Raises:
            PersistenceError: The active rules could not be loaded
        """
        now = to_naive_utc(now) or utcnow()

        if not self.gate.try_acquire():
            self.metrics.run_skipped()
            logger.warning("skipped-overlap", as_of=now, user_id=user_id)
            started = utcnow()
            return ProcessingRun(
                started_at=started, as_of=now, finished_at=started, user_id=user_id, status=RunStatus.SKIPPED_OVERLAP
            )

        try:
            with self.metrics.time_operation("recurrence_run_seconds"):
                return self._run(now, user_id)
        finally:
            self.gate.release()

    def _run(self, now: datetime, user_id: Optional[str]) -> ProcessingRun:
        run = ProcessingRun(started_at=utcnow(), as_of=now, user_id=user_id)
        rules = self.store.load_active_rules(now, user_id=user_id)

        for rule in rules:
            run.rules_evaluated += 1
            self._process_rule(rule, now, run)

        run.finished_at = utcnow()
        self.metrics.run_completed()
        logger.info(
            "run-finished",
            as_of=now,
            user_id=user_id,
            rules_evaluated=run.rules_evaluated,
            occurrences_materialized=run.occurrences_materialized,
            errors=len(run.per_rule_errors),
            warnings=len(run.warnings),
        )
        return run

    def _process_rule(self, rule: RecurrenceRule, now: datetime, run: ProcessingRun):
        self._record_warnings(rule, run)
        try:
            occurrences = compute_occurrences(
                rule,
                from_=rule.last_materialized_at or rule.anchor_date,
                to=now,
                limit=self.backfill_cap,
                include_from=rule.last_materialized_at is None,
            )
            for occurrence in occurrences:
                instance = self.materializer.materialize(rule, occurrence)
                run.occurrences_materialized += 1
                run.created_task_ids.append(instance.id)
                self.metrics.occurrence_materialized()
        except RecurrenceError as e:
            self._record_error(run, rule, _error_kind(e), e.message)
        except Exception as e:
            logger.exception("rule-failed", rule_id=rule.id, error=str(e))
            self._record_error(run, rule, "unexpected", str(e))

    def _record_error(self, run: ProcessingRun, rule: RecurrenceRule, kind: str, message: str):
        run.per_rule_errors.append(RuleIssue(rule_id=rule.id, kind=kind, message=message))
        self.metrics.rule_error(kind)
        logger.error("rule-failed", rule_id=rule.id, kind=kind, message=message)

    @staticmethod
    def _record_warnings(rule: RecurrenceRule, run: ProcessingRun):
        if rule.is_degraded:
            weekday = Weekday.of(rule.anchor_date).value
            message = f"Weekly rule has no repeat days; using the anchor's weekday ({weekday})"
            run.warnings.append(RuleIssue(rule_id=rule.id, kind="degraded-rule", message=message))
            logger.warning("degraded-rule", rule_id=rule.id, weekday=weekday)
        if rule.is_unbounded_without_end:
            message = "Rule is not infinite but has no end date; treating it as unbounded"
            run.warnings.append(RuleIssue(rule_id=rule.id, kind="unbounded-rule", message=message))
            logger.warning("unbounded-rule", rule_id=rule.id)
