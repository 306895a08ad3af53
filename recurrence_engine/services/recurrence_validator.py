"""Recurrence Validator."""
from datetime import datetime
from typing import Dict, Any, Iterable, Optional

from recurrence_engine.models.period import PeriodType, Weekday

MAX_PERIOD_VALUE = 365
MAX_WINDOW_DAYS = 365
MAX_PREVIEW_LIMIT = 100


def _result() -> Dict[str, Any]:
    return {
        "valid": True,
        "errors": [],
        "warnings": []
    }


class RecurrenceValidator:
    """Validate recurrence rule configuration before it is stored."""

    @staticmethod
    def validate_repeat_days(repeat_days: Optional[Iterable[str]]) -> Dict[str, Any]:
        """
        Validate weekday labels.

        Args:
            repeat_days: Weekday names, e.g. ["monday", "thursday"]

        Returns:
            Dict with validation result
        """
        result = _result()
        labels = [str(getattr(day, "value", day)).strip().lower() for day in (repeat_days or [])]
        known = {day.value for day in Weekday}

        for label in labels:
            if label not in known:
                result["valid"] = False
                result["errors"].append(f"Unknown repeat day '{label}', must be one of: {', '.join(d.value for d in Weekday)}")

        if len(set(labels)) != len(labels):
            result["warnings"].append("Duplicate repeat days were given and will be merged")

        return result

    @staticmethod
    def validate_rule_config(
        period_type: Any,
        period_value: Any,
        repeat_days: Optional[Iterable[str]],
        end_date: Optional[datetime],
        infinite_repeat: bool,
        now: datetime,
        require_future_end: bool = True,
    ) -> Dict[str, Any]:
        """
        Validate a complete rule configuration.

        Args:
            period_type: daily, weekly, monthly or yearly
            period_value: Repeat every N periods (1-365)
            repeat_days: Weekday names; required for weekly rules
            end_date: Exclusive end instant for finite rules
            infinite_repeat: Whether the rule repeats forever
            now: Reference instant for the end date check
            require_future_end: Reject an end date that is not after ``now``

        Returns:
            Dict with validation result
        """
        result = _result()

        try:
            kind = PeriodType(getattr(period_type, "value", period_type))
        except ValueError:
            result["valid"] = False
            result["errors"].append("Period type must be one of: daily, weekly, monthly, yearly")
            return result

        if isinstance(period_value, bool) or not isinstance(period_value, int):
            result["valid"] = False
            result["errors"].append("Period value must be an integer")
        elif period_value < 1:
            result["valid"] = False
            result["errors"].append("Period value must be at least 1")
        elif period_value > MAX_PERIOD_VALUE:
            result["valid"] = False
            result["errors"].append(f"Period value cannot exceed {MAX_PERIOD_VALUE}")

        days = list(repeat_days or [])
        if kind is PeriodType.WEEKLY:
            if not days:
                result["valid"] = False
                result["errors"].append("Weekly repeats must specify at least one day")
            else:
                days_result = RecurrenceValidator.validate_repeat_days(days)
                result["valid"] = result["valid"] and days_result["valid"]
                result["errors"].extend(days_result["errors"])
                result["warnings"].extend(days_result["warnings"])
        elif days:
            result["warnings"].append(f"Repeat days are ignored for {kind.value} repeats")

        if infinite_repeat:
            if end_date is not None:
                result["warnings"].append("End date is ignored for infinite repeats")
        elif end_date is None:
            result["valid"] = False
            result["errors"].append("Finite repeats require an end date; set infinite_repeat for open-ended repeats")
        elif require_future_end and end_date <= now:
            result["valid"] = False
            result["errors"].append("End date must be in the future")

        return result

    @staticmethod
    def validate_preview_window(window_days: int, limit: int) -> Dict[str, Any]:
        """
        Validate the bounds of an upcoming-occurrences preview.

        Args:
            window_days: Days ahead to look (1-365)
            limit: Maximum occurrences to return (1-100)

        Returns:
            Dict with validation result
        """
        result = _result()

        if not 1 <= window_days <= MAX_WINDOW_DAYS:
            result["valid"] = False
            result["errors"].append(f"Days must be between 1 and {MAX_WINDOW_DAYS}")

        if not 1 <= limit <= MAX_PREVIEW_LIMIT:
            result["valid"] = False
            result["errors"].append(f"Limit must be between 1 and {MAX_PREVIEW_LIMIT}")

        return result
