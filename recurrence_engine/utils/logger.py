"""
Structured logging for the recurrence engine.

Log records carry a JSON payload so run summaries and per-rule failures can be
picked up by log aggregation without parsing free text.
"""

import logging
import sys
from datetime import datetime, timezone
import json
import os


def _level_from_env() -> int:
    return getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO)


class StructuredLogger:
    """Structured logger for engine components."""

    def __init__(self, name: str, level: int = None):
        """
        Initialize structured logger.

        Args:
            name: Logger name (also reported as the ``component`` field)
            level: Logging level, defaults to ``LOG_LEVEL`` from the environment
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level if level is not None else _level_from_env())

        # Prevent adding handlers multiple times
        if not self.logger.handlers:
            self._setup_handlers()

    def _setup_handlers(self):
        """Set up logging handlers."""
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.DEBUG)

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        console_handler.setFormatter(formatter)

        self.logger.addHandler(console_handler)

    def _payload(self, level_name: str, event: str, **kwargs) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level_name,
            "event": event,
            "component": self.logger.name
        }
        log_data.update(kwargs)
        # datetimes and enums in keyword fields are rendered with str()
        return json.dumps(log_data, default=str)

    def _log_structured(self, level: int, event: str, **kwargs):
        """
        Log a structured message.

        Args:
            level: Logging level
            event: Short event name, e.g. ``run-finished``
            **kwargs: Additional structured data
        """
        if self.logger.isEnabledFor(level):
            self.logger.log(level, self._payload(logging.getLevelName(level), event, **kwargs))

    def debug(self, event: str, **kwargs):
        self._log_structured(logging.DEBUG, event, **kwargs)

    def info(self, event: str, **kwargs):
        self._log_structured(logging.INFO, event, **kwargs)

    def warning(self, event: str, **kwargs):
        self._log_structured(logging.WARNING, event, **kwargs)

    def error(self, event: str, **kwargs):
        self._log_structured(logging.ERROR, event, **kwargs)

    def exception(self, event: str, **kwargs):
        """Log exception with traceback."""
        if self.logger.isEnabledFor(logging.ERROR):
            self.logger.exception(self._payload("ERROR", event, exception=True, **kwargs))


def get_logger(component: str) -> StructuredLogger:
    """
    Get a structured logger for an engine component.

    Args:
        component: Component name, e.g. ``recurrence.processor``

    Returns:
        StructuredLogger instance
    """
    return StructuredLogger(component)
