"""
Occurrence Calculator

Expands a recurrence rule into the concrete due times that fall inside a time
window. Pure: reads the rule's attributes only, no I/O and no clock.

Candidates are always derived from the anchor (``anchor + k * period``) rather
than from the previous candidate, so month-end and leap-day clamping never
accumulates drift.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterator, List, Optional

from dateutil.relativedelta import relativedelta

from recurrence_engine.models.period import (
    DailyPeriod,
    MonthlyPeriod,
    Period,
    WeeklyPeriod,
    Weekday,
    YearlyPeriod,
)


@dataclass(frozen=True)
class Occurrence:
    """A computed due time for a rule, before it is materialized."""
    rule_id: Optional[int]
    due_at: datetime


def compute_occurrences(
    rule,
    from_: datetime,
    to: datetime,
    limit: int,
    include_from: bool = False,
) -> List[Occurrence]:
    """
    Compute the rule's occurrences inside ``(from_, to]``.

    Args:
        rule: RecurrenceRule (only attributes are read)
        from_: Lower bound, exclusive unless ``include_from`` is set
        to: Upper bound, inclusive
        limit: Maximum number of occurrences to return
        include_from: Treat ``from_`` as inclusive (first run of a rule, so the
            anchor itself can be materialized)

    Returns:
        Strictly increasing occurrences, at most ``limit`` of them. Nothing
        before the anchor, at or before ``last_materialized_at``, or at or
        after the end date of a finite rule is ever returned.
    """
    if limit <= 0 or to < from_:
        return []

    anchor = rule.anchor_date
    cursor = rule.last_materialized_at
    end = rule.effective_end
    floor = max(from_, anchor, cursor or anchor)

    occurrences: List[Occurrence] = []
    for candidate in _candidates(rule.period, anchor, floor):
        if candidate > to:
            break
        if end is not None and candidate >= end:
            break
        if candidate < anchor:
            continue
        if cursor is not None and candidate <= cursor:
            continue
        if candidate < from_ or (candidate == from_ and not include_from):
            continue
        occurrences.append(Occurrence(rule_id=rule.id, due_at=candidate))
        if len(occurrences) >= limit:
            break
    return occurrences


def _candidates(period: Period, anchor: datetime, floor: datetime) -> Iterator[datetime]:
    """Yield ascending candidates, starting no later than the first one >= ``floor``."""
    if isinstance(period, DailyPeriod):
        return _daily(period, anchor, floor)
    if isinstance(period, WeeklyPeriod):
        return _weekly(period, anchor, floor)
    if isinstance(period, MonthlyPeriod):
        return _by_months(period.every, anchor, _months_between(anchor, floor))
    if isinstance(period, YearlyPeriod):
        return _by_months(period.every * 12, anchor, _months_between(anchor, floor))
    raise TypeError(f"Unsupported period: {period!r}")


def _daily(period: DailyPeriod, anchor: datetime, floor: datetime) -> Iterator[datetime]:
    step = timedelta(days=period.every)
    k = max(0, (floor - anchor) // step)
    while True:
        yield anchor + k * step
        k += 1


def _weekly(period: WeeklyPeriod, anchor: datetime, floor: datetime) -> Iterator[datetime]:
    days = period.days or (Weekday.of(anchor),)
    week_zero = anchor.date() - timedelta(days=Weekday.of(anchor).offset)
    elapsed_weeks = (floor.date() - week_zero).days // 7
    week = max(0, (elapsed_weeks // period.every - 1) * period.every)
    time_of_day = anchor.time()
    while True:
        week_start = week_zero + timedelta(weeks=week)
        for day in days:
            yield datetime.combine(week_start + timedelta(days=day.offset), time_of_day)
        week += period.every


def _months_between(start: datetime, end: datetime) -> int:
    return (end.year - start.year) * 12 + (end.month - start.month)


def _by_months(step_months: int, anchor: datetime, elapsed_months: int) -> Iterator[datetime]:
    # relativedelta clamps the anchor's day to the end of shorter months
    k = max(0, elapsed_months // step_months - 1)
    while True:
        yield anchor + relativedelta(months=k * step_months)
        k += 1
