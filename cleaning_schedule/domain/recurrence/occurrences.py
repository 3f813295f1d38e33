"""
Occurrence generation for recurrence rules.

Everything here is a pure function of its arguments: no I/O, no clock, no
hidden counters. Calling `generate` twice with the same rule and window
returns the same list, so callers may run it concurrently across rules.

Series anchoring:
- daily/weekly/biweekly: the first date on or after the rule's start date
  falling on `day_of_week` (0=Sunday), then a fixed stride in days.
- monthly/quarterly/yearly: the start date's month, then a stride in
  months; each occurrence lands on `day_of_month` clamped to that month's
  length, computed per occurrence so February never shifts later months.
"""

from datetime import date, datetime, time, timedelta, timezone
from itertools import islice
from typing import Iterator, Optional, Union

from dateutil.relativedelta import relativedelta

from .entities import (
    MONTH_FREQUENCIES,
    WEEKDAY_FREQUENCIES,
    Frequency,
    Occurrence,
    RecurrenceRule,
    RuleStatus,
)
from .exceptions import InvalidRuleError

# Smallest datetime step; "after t" means "at or after t + TICK"
TICK = timedelta(microseconds=1)

MAX_DURATION_MINUTES = 24 * 60

Bound = Union[date, datetime]


def sunday_based_weekday(day: date) -> int:
    """Weekday number with 0=Sunday..6=Saturday"""
    return (day.weekday() + 1) % 7


def to_naive_utc(value: datetime) -> datetime:
    """Stored datetimes are naive UTC; an aware value is converted to match"""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_window_bound(value: Bound, upper: bool = False) -> datetime:
    """A bare date as a lower bound means its first instant, as an upper bound its last"""
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.max if upper else time.min)
    raise TypeError(f"Expected date or datetime, got {type(value).__name__}")


def validate_schedule(rule: RecurrenceRule) -> None:
    """
    Check the frequency/anchor combination, duration, time and dates of a rule.

    Raises:
        InvalidRuleError: describing the first problem found
    """
    if not isinstance(rule.frequency, Frequency):
        raise InvalidRuleError(f"Unknown frequency: {rule.frequency!r}")

    if rule.frequency.uses_day_of_week:
        if rule.day_of_month is not None:
            raise InvalidRuleError(f"{rule.frequency.value} rules are anchored by dayOfWeek, not dayOfMonth")
        if rule.day_of_week is None and rule.frequency != Frequency.DAILY:
            raise InvalidRuleError(f"{rule.frequency.value} rules require dayOfWeek")
        if rule.day_of_week is not None and not _is_int_in(rule.day_of_week, 0, 6):
            raise InvalidRuleError("dayOfWeek must be between 0 (Sunday) and 6 (Saturday)")
    else:
        if rule.day_of_week is not None:
            raise InvalidRuleError(f"{rule.frequency.value} rules are anchored by dayOfMonth, not dayOfWeek")
        if rule.day_of_month is None:
            raise InvalidRuleError(f"{rule.frequency.value} rules require dayOfMonth")
        if not _is_int_in(rule.day_of_month, 1, 31):
            raise InvalidRuleError("dayOfMonth must be between 1 and 31")

    if not _is_int_in(rule.duration_minutes, 1, MAX_DURATION_MINUTES):
        raise InvalidRuleError(f"durationMinutes must be between 1 and {MAX_DURATION_MINUTES}")

    if not isinstance(rule.time_of_day, time) or rule.time_of_day.tzinfo is not None:
        raise InvalidRuleError("timeOfDay must be a naive time of day")

    if isinstance(rule.start_date, datetime) or not isinstance(rule.start_date, date):
        raise InvalidRuleError("startDate must be a date")
    if rule.end_date is not None:
        if isinstance(rule.end_date, datetime) or not isinstance(rule.end_date, date):
            raise InvalidRuleError("endDate must be a date")
        if rule.start_date > rule.end_date:
            raise InvalidRuleError("startDate must be on or before endDate")


def _is_int_in(value, low: int, high: int) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and low <= value <= high


def _weekday_series(rule: RecurrenceRule, from_day: date) -> Iterator[date]:
    step = WEEKDAY_FREQUENCIES[rule.frequency]
    anchor = rule.start_date
    if rule.day_of_week is not None:
        anchor += timedelta(days=(rule.day_of_week - sunday_based_weekday(anchor)) % 7)

    if from_day <= anchor:
        current = anchor
    else:
        periods = -(-(from_day - anchor).days // step)
        current = anchor + timedelta(days=periods * step)

    while True:
        yield current
        current += timedelta(days=step)


def _month_series(rule: RecurrenceRule, from_day: date) -> Iterator[date]:
    step = MONTH_FREQUENCIES[rule.frequency]
    base = rule.start_date.replace(day=1)
    months_ahead = (from_day.year - base.year) * 12 + (from_day.month - base.month)
    period = max(0, -(-months_ahead // step))

    while True:
        # relativedelta clamps day=31 to the last day of shorter months
        current = base + relativedelta(months=period * step, day=rule.day_of_month)
        if current >= from_day:
            yield current
        period += 1


def _series(rule: RecurrenceRule, from_day: date) -> Iterator[date]:
    """Dates of the rule's series on or after `from_day`, unbounded"""
    if rule.frequency in WEEKDAY_FREQUENCIES:
        return _weekday_series(rule, from_day)
    return _month_series(rule, from_day)


def _iter_schedule(
    rule: RecurrenceRule, lower: datetime, upper: Optional[datetime]
) -> Iterator[Occurrence]:
    """
    Occurrences with lower <= start <= upper, clipped to the rule's dates.

    Ignores lifecycle status. With no upper bound and no end date the
    iterator is infinite; callers must take a bounded slice.
    """
    lower = max(lower, datetime.combine(rule.start_date, time.min))
    if rule.end_date is not None:
        last_instant = datetime.combine(rule.end_date, time.max)
        upper = last_instant if upper is None else min(upper, last_instant)
    if upper is not None and lower > upper:
        return

    duration = rule.duration
    for day in _series(rule, lower.date()):
        start = datetime.combine(day, rule.time_of_day)
        if upper is not None and start > upper:
            return
        if start < lower:
            continue
        yield Occurrence(rule_id=rule.id, scheduled_start=start, scheduled_end=start + duration)


def iter_occurrences(
    rule: RecurrenceRule, window_start: Bound, window_end: Bound, limit: Optional[int] = None
) -> Iterator[Occurrence]:
    """Lazy form of `generate`; each call starts a fresh iteration"""
    if rule.status != RuleStatus.ACTIVE:
        return iter(())

    lower = to_window_bound(window_start)
    upper = to_window_bound(window_end, upper=True)
    occurrences = _iter_schedule(rule, lower, upper)
    if limit is not None:
        occurrences = islice(occurrences, max(limit, 0))
    return occurrences


def generate(
    rule: RecurrenceRule, window_start: Bound, window_end: Bound, limit: Optional[int] = None
) -> list[Occurrence]:
    """
    Occurrences of an active rule inside the closed window [window_start, window_end].

    Returns an empty list for paused, completed and cancelled rules, and for
    windows that end before they start.
    """
    return list(iter_occurrences(rule, window_start, window_end, limit))


def next_occurrence(
    rule: RecurrenceRule, after: datetime, inclusive: bool = False
) -> Optional[Occurrence]:
    """
    First occurrence after `after` (at or after, when inclusive), bounded only by end date.

    Schedule arithmetic only: lifecycle status is not consulted, so the
    tracker and lifecycle manager can position pointers on paused rules.
    """
    after = to_naive_utc(after)
    lower = after if inclusive else after + TICK
    return next(_iter_schedule(rule, lower, None), None)


def first_occurrence(rule: RecurrenceRule) -> Optional[Occurrence]:
    return next_occurrence(rule, datetime.combine(rule.start_date, time.min), inclusive=True)
