"""Error taxonomy for the recurrence engine."""
from typing import Any, Dict, Optional


class RecurrenceError(Exception):
    """Base exception for recurrence engine errors"""
    code = "RECURRENCE_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, code: Optional[str] = None):
        self.code = code or self.code
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class InvalidRule(RecurrenceError):
    """Malformed period configuration."""
    code = "INVALID_RULE"


class RuleNotFound(RecurrenceError):
    code = "NOT_FOUND"


class PersistenceError(RecurrenceError):
    """Transient store failure; retried on the next scheduled tick."""
    code = "PERSISTENCE_ERROR"


class ConflictError(RecurrenceError):
    """Cursor compare-and-swap lost a race with another writer."""
    code = "CONFLICT"


class OverlapSkipped(RecurrenceError):
    """A run was requested while another run held the gate."""
    code = "SKIPPED_OVERLAP"
