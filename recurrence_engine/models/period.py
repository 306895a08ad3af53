"""Period variants for recurrence rules.

Each period type carries only the fields it uses; weekday selection exists on
the weekly variant alone.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Tuple, Union

from recurrence_engine.errors import InvalidRule


class PeriodType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class Weekday(str, Enum):
    SUNDAY = "sunday"
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"

    @property
    def offset(self) -> int:
        """Days since Sunday (sunday=0 ... saturday=6)."""
        return _WEEKDAY_ORDER.index(self)

    @classmethod
    def from_offset(cls, offset: int) -> "Weekday":
        return _WEEKDAY_ORDER[offset % 7]

    @classmethod
    def of(cls, moment) -> "Weekday":
        """Weekday of a date or datetime."""
        # date.weekday() is Monday based
        return cls.from_offset(moment.weekday() + 1)


_WEEKDAY_ORDER = tuple(Weekday)


@dataclass(frozen=True)
class DailyPeriod:
    every: int


@dataclass(frozen=True)
class WeeklyPeriod:
    every: int
    days: Tuple[Weekday, ...] = ()

    @property
    def is_degraded(self) -> bool:
        """A weekly rule without weekdays falls back to the anchor's weekday."""
        return not self.days


@dataclass(frozen=True)
class MonthlyPeriod:
    every: int


@dataclass(frozen=True)
class YearlyPeriod:
    every: int


Period = Union[DailyPeriod, WeeklyPeriod, MonthlyPeriod, YearlyPeriod]


def parse_weekdays(labels: Optional[Iterable[str]]) -> Tuple[Weekday, ...]:
    """Normalize weekday labels to a deduplicated tuple ordered Sunday first."""
    days = set()
    for label in labels or ():
        try:
            days.add(Weekday(str(label).strip().lower()))
        except ValueError:
            raise InvalidRule(f"Unknown weekday: {label!r}", details={"field": "repeat_days"})
    return tuple(sorted(days, key=lambda day: day.offset))


def build_period(period_type, period_value: int, repeat_days: Optional[Iterable[str]] = None) -> Period:
    """Build the period variant for a stored rule.

    Raises:
        InvalidRule: unknown period type or weekday, or ``period_value < 1``
    """
    try:
        kind = PeriodType(period_type)
    except ValueError:
        raise InvalidRule(f"Unknown period type: {period_type!r}", details={"field": "period_type"})

    if period_value is None or int(period_value) < 1:
        raise InvalidRule(
            f"Period value must be at least 1, got {period_value!r}",
            details={"field": "period_value"}
        )
    every = int(period_value)

    if kind is PeriodType.DAILY:
        return DailyPeriod(every)
    if kind is PeriodType.WEEKLY:
        return WeeklyPeriod(every, parse_weekdays(repeat_days))
    if kind is PeriodType.MONTHLY:
        return MonthlyPeriod(every)
    return YearlyPeriod(every)
