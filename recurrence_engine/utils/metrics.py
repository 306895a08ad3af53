"""
Metrics collection for the recurrence engine.

Counts processing runs, overlap skips, materialized occurrences and per-rule
failures, and accumulates run durations.
"""

import time
from typing import Dict, Any
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime, timezone
import threading


class MetricsCollector:
    """Collects and manages metrics for the recurrence engine."""

    def __init__(self):
        """Initialize metrics collector."""
        self.metrics = defaultdict(int)
        self.timers = defaultdict(float)
        self.lock = threading.Lock()

        self.metrics["recurrence_runs_total"] = 0
        self.metrics["recurrence_runs_skipped_total"] = 0
        self.metrics["occurrences_materialized_total"] = 0
        self.metrics["rule_errors_total"] = 0

    def increment_counter(self, metric_name: str, value: int = 1):
        """Increment a counter metric."""
        with self.lock:
            self.metrics[metric_name] += value

    def record_timer(self, metric_name: str, duration: float):
        """Record a timing metric."""
        with self.lock:
            self.timers[metric_name] += duration

    def get_metrics(self) -> Dict[str, Any]:
        """Get current metrics values."""
        with self.lock:
            return {
                "counters": dict(self.metrics),
                "timers": dict(self.timers),
                "timestamp": datetime.now(timezone.utc).isoformat()
            }

    def run_completed(self):
        self.increment_counter("recurrence_runs_total")

    def run_skipped(self):
        self.increment_counter("recurrence_runs_skipped_total")

    def occurrence_materialized(self):
        self.increment_counter("occurrences_materialized_total")

    def rule_error(self, kind: str):
        """Record a per-rule failure, also broken down by error kind."""
        with self.lock:
            self.metrics["rule_errors_total"] += 1
            self.metrics[f"rule_errors_{kind.replace('-', '_')}_total"] += 1

    @contextmanager
    def time_operation(self, metric_name: str):
        """Context manager to time an operation."""
        start_time = time.monotonic()
        try:
            yield
        finally:
            self.record_timer(metric_name, time.monotonic() - start_time)


# Global metrics instance
metrics_collector = MetricsCollector()
