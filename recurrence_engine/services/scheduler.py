"""
Recurrence Scheduler

Background loop that drives the Recurrence Processor on a fixed interval.
Timer ticks and manual triggers go through the processor's run gate, so at
most one pass runs at a time; a request arriving mid-run is dropped and the
next tick picks up whatever it would have done.
"""

import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from apscheduler.events import EVENT_JOB_MAX_INSTANCES, EVENT_JOB_MISSED
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from recurrence_engine.errors import OverlapSkipped
from recurrence_engine.services.recurrence_processor import ProcessingRun, RecurrenceProcessor
from recurrence_engine.utils.logger import get_logger

logger = get_logger("recurrence.scheduler")

JOB_ID = "recurrence-processor"


class RecurrenceScheduler:
    """Owns the start/stop lifecycle of the processing timer. Holds no per-request state."""

    def __init__(self, processor: RecurrenceProcessor, interval_seconds: int = 60 * 60, run_on_start: bool = True):
        """
        Args:
            processor: Processor invoked on every tick and manual trigger
            interval_seconds: Seconds between ticks
            run_on_start: Fire the first tick immediately on ``start()``
        """
        if interval_seconds < 1:
            raise ValueError(f"interval_seconds must be at least 1, got {interval_seconds}")
        self.processor = processor
        self.interval_seconds = interval_seconds
        self.run_on_start = run_on_start
        self.last_run: Optional[ProcessingRun] = None
        self._lifecycle_lock = threading.Lock()
        self._scheduler: Optional[BackgroundScheduler] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> bool:
        """Start the timer. Returns False if it was already running."""
        with self._lifecycle_lock:
            if self.running:
                logger.info("scheduler-already-running")
                return False

            # A shut down BackgroundScheduler cannot be restarted, so build a new one each time
            scheduler = BackgroundScheduler(timezone="UTC")
            job_options = {}
            if self.run_on_start:
                job_options["next_run_time"] = datetime.now(timezone.utc)
            scheduler.add_job(
                self._tick,
                IntervalTrigger(seconds=self.interval_seconds, timezone="UTC"),
                id=JOB_ID,
                name="Process recurrence rules",
                max_instances=1,
                coalesce=True,
                **job_options,
            )
            scheduler.add_listener(self._on_tick_dropped, EVENT_JOB_MAX_INSTANCES | EVENT_JOB_MISSED)
            scheduler.start()
            self._scheduler = scheduler

        logger.info("scheduler-started", interval_seconds=self.interval_seconds, run_on_start=self.run_on_start)
        return True

    def stop(self) -> bool:
        """
        Stop the timer. An in-flight run finishes in place; no new run starts.

        Returns False if the scheduler was not running.
        """
        with self._lifecycle_lock:
            scheduler = self._scheduler
            self._scheduler = None
            if scheduler is None or not scheduler.running:
                return False
            scheduler.shutdown(wait=True)

        logger.info("scheduler-stopped")
        return True

    def trigger_now(self, now: Optional[datetime] = None, user_id: Optional[str] = None) -> ProcessingRun:
        """
        Run a processing pass immediately, outside the timer cadence.

        With ``user_id`` only rules on that user's tasks are processed; the
        pass still goes through the shared run gate.

        Raises:
            OverlapSkipped: A pass is already in progress
            PersistenceError: The active rules could not be loaded
        """
        run = self.processor.run_once(now, user_id=user_id)
        if run.skipped:
            raise OverlapSkipped(
                "A recurrence processing run is already in progress",
                details={"status": run.status.value}
            )
        self.last_run = run
        return run

    def _tick(self):
        try:
            run = self.processor.run_once()
        except Exception as e:
            # The timer must survive a failed pass; the next tick retries
            logger.exception("tick-failed", error=str(e))
            return
        if not run.skipped:
            self.last_run = run

    def _on_tick_dropped(self, event):
        if event.code == EVENT_JOB_MAX_INSTANCES:
            self.processor.metrics.run_skipped()
            # Submission events carry every dropped run time
            logger.warning("skipped-overlap", source="timer", scheduled_run_times=event.scheduled_run_times)
        else:
            logger.warning("tick-missed", scheduled_run_time=event.scheduled_run_time)

    def next_run_time(self) -> Optional[datetime]:
        scheduler = self._scheduler
        if scheduler is None or not scheduler.running:
            return None
        job = scheduler.get_job(JOB_ID)
        return job.next_run_time if job else None

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "interval_seconds": self.interval_seconds,
            "next_run_time": self.next_run_time(),
            "run_in_progress": self.processor.gate.in_progress,
            "last_run": self.last_run.to_dict() if self.last_run else None,
            "metrics": self.processor.metrics.get_metrics(),
        }
