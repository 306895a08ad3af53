"""Tests for the background scheduler lifecycle."""
import json
import logging
import threading
import time
from datetime import datetime, timezone

import pytest
from apscheduler.events import (
    EVENT_JOB_MAX_INSTANCES,
    EVENT_JOB_MISSED,
    JobExecutionEvent,
    JobSubmissionEvent,
)

from recurrence_engine.errors import OverlapSkipped, PersistenceError
from recurrence_engine.services.recurrence_processor import RecurrenceProcessor
from recurrence_engine.services.recurrence_store import SQLRecurrenceStore
from recurrence_engine.services.scheduler import JOB_ID, RecurrenceScheduler

ANCHOR = datetime(2024, 1, 1, 9, 0)


class BlockingStore(SQLRecurrenceStore):
    def __init__(self, engine):
        super().__init__(engine)
        self.entered = threading.Event()
        self.release = threading.Event()

    def load_active_rules(self, now, user_id=None):
        self.entered.set()
        self.release.wait(timeout=5)
        return super().load_active_rules(now, user_id=user_id)


class BrokenStore(SQLRecurrenceStore):
    def load_active_rules(self, now, user_id=None):
        raise PersistenceError("database unavailable")


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return False


@pytest.fixture
def scheduler(processor):
    scheduler = RecurrenceScheduler(processor, interval_seconds=3600, run_on_start=False)
    yield scheduler
    scheduler.stop()


class TestLifecycle:

    def test_start_and_stop_are_idempotent(self, scheduler):
        assert scheduler.start()
        assert not scheduler.start()
        assert scheduler.running
        assert scheduler.next_run_time() is not None

        assert scheduler.stop()
        assert not scheduler.stop()
        assert not scheduler.running
        assert scheduler.next_run_time() is None

    def test_can_restart_after_stop(self, scheduler):
        scheduler.start()
        scheduler.stop()
        assert scheduler.start()
        assert scheduler.running

    def test_interval_must_be_positive(self, processor):
        with pytest.raises(ValueError):
            RecurrenceScheduler(processor, interval_seconds=0)

    def test_run_on_start_processes_immediately(self, processor, make_rule, instances):
        rule = make_rule(anchor_date=ANCHOR)
        scheduler = RecurrenceScheduler(processor, interval_seconds=3600, run_on_start=True)
        try:
            scheduler.start()
            assert wait_for(lambda: scheduler.last_run is not None)
        finally:
            scheduler.stop()

        assert scheduler.last_run.occurrences_materialized == 1
        assert [task.occurrence_due_at for task in instances(rule.id)] == [ANCHOR]

    def test_stop_waits_for_in_flight_run(self, engine, metrics, make_rule):
        make_rule(anchor_date=ANCHOR)
        store = BlockingStore(engine)
        scheduler = RecurrenceScheduler(RecurrenceProcessor(store, metrics=metrics), run_on_start=True)
        scheduler.start()
        assert store.entered.wait(timeout=5)

        stopper = threading.Thread(target=scheduler.stop)
        stopper.start()
        stopper.join(timeout=0.2)
        assert stopper.is_alive()

        store.release.set()
        stopper.join(timeout=5)
        assert not stopper.is_alive()
        assert not scheduler.running
        assert scheduler.last_run is not None
        assert scheduler.last_run.occurrences_materialized == 1


class TestTriggers:

    def test_trigger_now_records_last_run(self, scheduler, make_rule):
        make_rule(anchor_date=ANCHOR)

        run = scheduler.trigger_now(now=datetime(2024, 1, 1, 12, 0))

        assert run.occurrences_materialized == 1
        assert scheduler.last_run is run
        assert scheduler.status()["last_run"]["status"] == "completed"

    def test_trigger_during_run_raises_overlap(self, scheduler, processor, metrics):
        assert processor.gate.try_acquire()
        try:
            with pytest.raises(OverlapSkipped):
                scheduler.trigger_now()
        finally:
            processor.gate.release()
        assert scheduler.last_run is None
        assert metrics.get_metrics()["counters"]["recurrence_runs_skipped_total"] == 1

    def test_trigger_propagates_load_failure(self, engine, metrics):
        scheduler = RecurrenceScheduler(RecurrenceProcessor(BrokenStore(engine), metrics=metrics))
        with pytest.raises(PersistenceError):
            scheduler.trigger_now()

    def test_failed_tick_is_swallowed(self, engine, metrics):
        scheduler = RecurrenceScheduler(RecurrenceProcessor(BrokenStore(engine), metrics=metrics))
        scheduler._tick()
        assert scheduler.last_run is None

    def test_status(self, scheduler):
        status = scheduler.status()
        assert status["running"] is False
        assert status["interval_seconds"] == 3600
        assert status["run_in_progress"] is False
        assert "counters" in status["metrics"]

    def test_trigger_now_for_one_user(self, scheduler, make_task, make_rule, instances):
        mine = make_rule(anchor_date=ANCHOR)
        theirs = make_rule(task=make_task(user_id="user-2", due_date=ANCHOR), anchor_date=ANCHOR)

        run = scheduler.trigger_now(now=datetime(2024, 1, 1, 12, 0), user_id="user-2")

        assert run.user_id == "user-2"
        assert run.rules_evaluated == 1
        assert len(instances(theirs.id)) == 1
        assert instances(mine.id) == []


def logged_events(caplog):
    return [json.loads(record.getMessage())["event"] for record in caplog.records
            if record.name == "recurrence.scheduler"]


class TestDroppedTicks:

    def test_tick_dropped_while_previous_runs(self, scheduler, metrics, caplog):
        now = datetime.now(timezone.utc)
        event = JobSubmissionEvent(EVENT_JOB_MAX_INSTANCES, JOB_ID, "default", [now])

        with caplog.at_level(logging.WARNING):
            scheduler._on_tick_dropped(event)

        assert logged_events(caplog) == ["skipped-overlap"]
        assert metrics.get_metrics()["counters"]["recurrence_runs_skipped_total"] == 1

    def test_missed_tick(self, scheduler, metrics, caplog):
        event = JobExecutionEvent(EVENT_JOB_MISSED, JOB_ID, "default", datetime.now(timezone.utc))

        with caplog.at_level(logging.WARNING):
            scheduler._on_tick_dropped(event)

        assert logged_events(caplog) == ["tick-missed"]
        assert metrics.get_metrics()["counters"]["recurrence_runs_skipped_total"] == 0
