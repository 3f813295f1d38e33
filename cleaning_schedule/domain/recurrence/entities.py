"""Recurrence domain entities - rules, occurrences and listing types"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Optional


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"

    @property
    def uses_day_of_week(self) -> bool:
        return self in WEEKDAY_FREQUENCIES

    @property
    def uses_day_of_month(self) -> bool:
        return self in MONTH_FREQUENCIES


# Fixed strides in days for the weekday-anchored family
WEEKDAY_FREQUENCIES = {
    Frequency.DAILY: 1,
    Frequency.WEEKLY: 7,
    Frequency.BIWEEKLY: 14,
}

# Strides in calendar months for the day-of-month family
MONTH_FREQUENCIES = {
    Frequency.MONTHLY: 1,
    Frequency.QUARTERLY: 3,
    Frequency.YEARLY: 12,
}


class ServiceType(str, Enum):
    REGULAR = "regular"
    DEEP = "deep"
    SPECIALIZED = "specialized"


class RuleStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RuleStatus.COMPLETED, RuleStatus.CANCELLED)


@dataclass
class RecurrenceRule:
    """A repeating service visit for one customer, optionally assigned to a team"""

    id: Optional[int]
    company_id: int
    customer_id: int
    team_id: Optional[int]
    frequency: Frequency
    time_of_day: time
    duration_minutes: int
    start_date: date
    service_type: ServiceType = ServiceType.REGULAR
    day_of_week: Optional[int] = None  # 0=Sunday..6=Saturday
    day_of_month: Optional[int] = None  # 1-31
    end_date: Optional[date] = None
    status: RuleStatus = RuleStatus.ACTIVE
    last_execution: Optional[datetime] = None
    next_execution: Optional[datetime] = None
    title: str = ""
    address: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @property
    def duration(self) -> timedelta:
        return timedelta(minutes=self.duration_minutes)


@dataclass(frozen=True)
class Occurrence:
    """One computed visit of a rule"""

    rule_id: Optional[int]
    scheduled_start: datetime
    scheduled_end: datetime


@dataclass(frozen=True)
class BusyInterval:
    """An existing commitment on a team's calendar, half-open [start, end)"""

    appointment_id: int
    team_id: int
    start: datetime
    end: datetime
    recurrence_id: Optional[int] = None

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start < end and start < self.end


@dataclass
class RuleFilters:
    status: Optional[RuleStatus] = None
    service_type: Optional[ServiceType] = None
    search: Optional[str] = None
    company_id: Optional[int] = None
    team_id: Optional[int] = None
    customer_id: Optional[int] = None
    start_date: Optional[date] = None  # rules still running on/after this date
    end_date: Optional[date] = None  # rules starting on/before this date


@dataclass(frozen=True)
class Pagination:
    page: int = 1
    page_size: int = 10

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


@dataclass
class PagedResult:
    """Page envelope in the shape the dashboard consumes"""

    results: list
    current_page: int
    page_count: int
    page_size: int
    total_items: int
    first_row_on_page: int
    last_row_on_page: int

    @classmethod
    def build(cls, results: list, total_items: int, pagination: Pagination) -> "PagedResult":
        page_count = max(1, -(-total_items // pagination.page_size))
        first_row = pagination.offset + 1 if results else 0
        last_row = pagination.offset + len(results)
        return cls(
            results=results,
            current_page=pagination.page,
            page_count=page_count,
            page_size=pagination.page_size,
            total_items=total_items,
            first_row_on_page=first_row,
            last_row_on_page=last_row,
        )


@dataclass
class ScheduleBatch:
    """Outcome of materializing a window of occurrences"""

    scheduled: list = field(default_factory=list)  # (Occurrence, appointment id)
    skipped: list = field(default_factory=list)  # occurrences already on the calendar
    conflicts: list = field(default_factory=list)  # ConflictError per rejected occurrence
